import csv
from datetime import date
from io import StringIO

import pytest

from csv_utils import export_occurrences, parse_amount, sanitize_csv_value
from models import RecurrenceType, Transaction, TransactionType
from occurrences import Persisted, Virtual


def test_parse_amount_accepts_both_decimal_styles():
    assert parse_amount("1.234,56") == 123456
    assert parse_amount("1234.56") == 123456
    assert parse_amount("R$ 45,90") == 4590
    assert parse_amount("10") == 1000
    assert parse_amount("12.5") == 1250


def test_parse_amount_reads_grouping_dots_as_thousands():
    assert parse_amount("1.500") == 150000
    assert parse_amount("R$ 2.000") == 200000
    assert parse_amount("2.000.000") == 200000000
    assert parse_amount("1.500,5") == 150050


def test_parse_amount_rejects_malformed_values():
    for bad in ("abc", "0", "-5,00", "NaN", "1234.567", "10,505", "1,2,3", ""):
        with pytest.raises(ValueError):
            parse_amount(bad)


def test_sanitize_csv_value():
    assert sanitize_csv_value("=SUM(A1:A2)") == "\t=SUM(A1:A2)"
    assert sanitize_csv_value("https://example.com") == "\thttps://example.com"
    assert sanitize_csv_value("  Mercado ") == "Mercado"
    assert sanitize_csv_value("") == ""


def test_export_marks_generated_rows():
    installment = Transaction(
        id="i1",
        user_id=1,
        account_id="a1",
        tag_id="t1",
        description="TV (1/3)",
        date=date(2024, 3, 10),
        amount_cents=3333,
        type=TransactionType.expense,
        recurrence_type=RecurrenceType.installment,
        installment_total=3,
        installment_current=1,
        hide_from_reports=False,
        is_paid=True,
    )
    template = Transaction(
        id="r1",
        user_id=1,
        account_id="a1",
        tag_id=None,
        description="=Aluguel",
        date=date(2024, 1, 5),
        amount_cents=150000,
        type=TransactionType.expense,
        recurrence_type=RecurrenceType.recurring,
        hide_from_reports=True,
        is_paid=False,
    )

    text = export_occurrences(
        [Virtual(template, date(2024, 3, 5)), Persisted(installment)],
        tag_names={"t1": "Casa"},
        account_names={"a1": "Nubank"},
    )
    rows = list(csv.reader(StringIO(text)))

    assert rows[0][0] == "Date"
    assert rows[1] == [
        "2024-03-05",
        "\t=Aluguel",
        "expense",
        "1500.00",
        "Nubank",
        "Uncategorized",
        "recurring",
        "",
        "0",
        "1",
    ]
    assert rows[2] == [
        "2024-03-10",
        "TV (1/3)",
        "expense",
        "33.33",
        "Nubank",
        "Casa",
        "installment",
        "1/3",
        "1",
        "0",
    ]
