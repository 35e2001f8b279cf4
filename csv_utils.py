import csv
import re
from io import StringIO
from typing import Mapping, Sequence

from aggregation import UNCATEGORIZED
from occurrences import Occurrence


EXPORT_HEADER = [
    "Date",
    "Description",
    "Type",
    "Amount",
    "Account",
    "Tag",
    "Recurrence",
    "Installment",
    "Paid",
    "Generated",
]


def sanitize_csv_value(value: str) -> str:
    """
    Prefix values a spreadsheet would run as a formula or link with a tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


THOUSANDS_ONLY = re.compile(r"\d{1,3}(\.\d{3})+")


def parse_amount(value: str) -> int:
    """
    Cents from an amount typed in either ``1.234,56`` or ``1234.56`` form,
    with or without the ``R$`` prefix.

    With a comma every dot is a thousands separator. Without one, dots that
    group digits in threes (``1.500``, ``2.000.000``) are thousands
    separators too. More than two fraction digits are rejected.
    """
    clean = value.strip().replace("R$", "").replace("$", "").replace(" ", "")
    if "," in clean:
        whole, _, fraction = clean.rpartition(",")
        whole = whole.replace(".", "")
    elif THOUSANDS_ONLY.fullmatch(clean):
        whole, fraction = clean.replace(".", ""), ""
    else:
        whole, _, fraction = clean.partition(".")
    if not re.fullmatch(r"\d+", whole) or not re.fullmatch(r"\d{0,2}", fraction):
        raise ValueError(f"Invalid amount: {value!r}")
    cents = int(whole) * 100 + int(fraction.ljust(2, "0"))
    if cents <= 0:
        raise ValueError("Amount must be positive")
    return cents


def format_amount(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_occurrences(
    occurrences: Sequence[Occurrence],
    *,
    tag_names: Mapping[str, str],
    account_names: Mapping[str, str],
) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for occ in occurrences:
        installment = ""
        if occ.installment_total:
            installment = f"{occ.installment_current}/{occ.installment_total}"
        writer.writerow(
            [
                occ.date.isoformat(),
                sanitize_csv_value(occ.description),
                occ.type.value,
                format_amount(occ.amount_cents),
                sanitize_csv_value(account_names.get(occ.account_id, "")),
                sanitize_csv_value(tag_names.get(occ.tag_id or "", UNCATEGORIZED)),
                occ.recurrence_type.value,
                installment,
                "1" if occ.is_paid else "0",
                "1" if occ.is_virtual else "0",
            ]
        )
    return output.getvalue()
