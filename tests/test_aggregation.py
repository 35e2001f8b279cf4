from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from aggregation import (
    by_tag,
    commitments,
    history,
    month_label,
    monthly_totals,
    spending_alerts,
    spent_by_goal,
)
from database import Base
from dates import month_end, parse_month_key
from models import Account, RecurrenceType, Transaction, TransactionType, new_id
from occurrences import Persisted, Virtual
from periods import Period
from recurrence import SeriesExpander, virtual_occurrences
from repository import TransactionRepository
from schemas import InstallmentTransactionIn, RecurringTransactionIn


def _row(**overrides) -> Transaction:
    values = {
        "id": new_id(),
        "user_id": 1,
        "account_id": "acc",
        "tag_id": None,
        "goal_id": None,
        "description": "Row",
        "date": date(2024, 3, 10),
        "amount_cents": 1000,
        "type": TransactionType.expense,
        "recurrence_type": RecurrenceType.single,
        "parent_transaction_id": None,
        "installment_total": None,
        "installment_current": None,
        "hide_from_reports": False,
        "is_paid": False,
        "materialized_through": None,
        "series_end_date": None,
    }
    values.update(overrides)
    return Transaction(**values)


def _template(**overrides) -> Transaction:
    values = {
        "recurrence_type": RecurrenceType.recurring,
        "hide_from_reports": True,
        "date": date(2024, 1, 15),
        "amount_cents": 5000,
    }
    values.update(overrides)
    return _row(**values)


def test_monthly_totals_count_paid_income_and_all_expenses():
    template = _template(amount_cents=99999)
    occurrences = [
        Persisted(_row(type=TransactionType.income, amount_cents=200000, is_paid=True)),
        Persisted(_row(type=TransactionType.income, amount_cents=50000)),
        Persisted(_row(amount_cents=3000, is_paid=True)),
        Persisted(_row(amount_cents=2000)),
        Persisted(_row(amount_cents=9999, hide_from_reports=True)),
        Persisted(template),
    ]

    totals = monthly_totals(occurrences)

    assert totals.income_cents == 200000
    assert totals.expense_cents == 5000
    assert totals.expense_paid_cents == 3000
    assert totals.expense_unpaid_cents == 2000
    assert totals.balance_cents == 195000
    assert monthly_totals(list(reversed(occurrences))) == totals


def test_virtual_occurrences_count_as_unpaid_expenses():
    template = _template()
    totals = monthly_totals([Virtual(template, date(2024, 3, 15))])
    assert totals.expense_unpaid_cents == 5000
    assert totals.expense_paid_cents == 0


def test_by_tag_groups_expenses_with_uncategorized_fallback():
    occurrences = [
        Persisted(_row(tag_id="t1", amount_cents=3000)),
        Persisted(_row(tag_id="t1", amount_cents=1000)),
        Persisted(_row(tag_id=None, amount_cents=5000)),
        Persisted(_row(tag_id="gone", amount_cents=500)),
        Persisted(_row(tag_id="t1", type=TransactionType.income, amount_cents=7000)),
    ]
    result = by_tag(occurrences, {"t1": "Mercado"})
    assert result == {"Uncategorized": 5500, "Mercado": 4000}
    assert list(result) == ["Uncategorized", "Mercado"]


def test_spent_by_goal_ignores_unassigned_and_hidden_rows():
    occurrences = [
        Persisted(_row(goal_id="2", amount_cents=65000)),
        Persisted(_row(goal_id="2", amount_cents=100, hide_from_reports=True)),
        Persisted(_row(goal_id=None, amount_cents=300)),
    ]
    assert spent_by_goal(occurrences) == {"2": 65000}


def test_history_buckets_are_zero_filled_and_ordered():
    months = ["2024-03", "2024-01", "2024-02"]
    occurrences = [
        Persisted(_row(date=date(2024, 1, 5), amount_cents=700)),
        Persisted(
            _row(
                date=date(2024, 3, 1),
                type=TransactionType.income,
                amount_cents=1500,
                is_paid=True,
            )
        ),
        Persisted(_row(date=date(2023, 12, 31), amount_cents=999)),
    ]
    points = history(occurrences, months)
    assert [p.month for p in points] == ["2024-01", "2024-02", "2024-03"]
    assert [p.label for p in points] == ["jan", "fev", "mar"]
    assert [(p.income_cents, p.expense_cents) for p in points] == [
        (0, 700),
        (0, 0),
        (1500, 0),
    ]
    assert month_label("2024-12") == "dez"


def _replicate(templates, months):
    """Every template in every listed month from its start on, stored or not."""
    first_year, first_month = parse_month_key(min(months))
    last_year, last_month = parse_month_key(max(months))
    start = date(first_year, first_month, 1)
    end = month_end(date(last_year, last_month, 1))
    replicated = []
    for template in templates:
        replicated.extend(
            virtual_occurrences(template, start, end, include_materialized=True)
        )
    return replicated


def test_template_counts_in_months_without_stored_rows():
    template = _template()
    months = ["2023-12", "2024-01", "2024-02", "2024-03"]
    points = history(_replicate([template], months), months)
    assert [p.expense_cents for p in points] == [0, 5000, 5000, 5000]


def test_history_matches_template_replication_whether_materialized_or_not():
    months = ["2023-12", "2024-01", "2024-02", "2024-03", "2024-04", "2024-05"]
    window = Period("history", date(2023, 12, 1), date(2024, 5, 31))

    for horizon in (0, 2, 24):
        engine = create_engine("sqlite:///:memory:")
        Base.metadata.create_all(engine)
        with Session(engine) as session:
            account = Account(user_id=1, name="Carteira")
            session.add(account)
            session.commit()
            expander = SeriesExpander(
                TransactionRepository(session), 1, horizon_months=horizon
            )
            template = expander.expand(
                RecurringTransactionIn(
                    description="Aluguel",
                    date=date(2024, 1, 15),
                    amount_cents=5000,
                    type=TransactionType.expense,
                    account_id=account.id,
                )
            )[0]

            stored = history(expander.effective_occurrences(window), months)
            replicated = history(_replicate([template], months), months)

            assert stored == replicated
            assert stored[0].expense_cents == 0
            assert stored[3].month == "2024-03"
            assert stored[3].expense_cents == 5000


def test_commitments_split_recurring_and_installments():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        account = Account(user_id=1, name="Carteira")
        session.add(account)
        session.commit()
        expander = SeriesExpander(TransactionRepository(session), 1, horizon_months=1)
        expander.expand(
            RecurringTransactionIn(
                description="Academia",
                date=date(2024, 1, 5),
                amount_cents=9000,
                type=TransactionType.expense,
                account_id=account.id,
            )
        )
        expander.expand(
            InstallmentTransactionIn(
                description="Celular",
                date=date(2024, 2, 10),
                amount_cents=30000,
                type=TransactionType.expense,
                account_id=account.id,
                installment_total=2,
            )
        )
        months = ["2024-01", "2024-02", "2024-03", "2024-04"]
        window = Period("history", date(2024, 1, 1), date(2024, 4, 30))

        points = commitments(expander.effective_occurrences(window), months)

        assert [(p.recurring_cents, p.installment_cents) for p in points] == [
            (9000, 0),
            (9000, 15000),
            (9000, 15000),
            (9000, 0),
        ]


def test_spending_alerts_fire_once_per_month():
    almost = monthly_totals(
        [
            Persisted(
                _row(type=TransactionType.income, amount_cents=100000, is_paid=True)
            ),
            Persisted(_row(amount_cents=95000)),
        ]
    )
    alerts = spending_alerts("2024-03", almost)
    assert [a.kind for a in alerts] == ["almost"]
    assert alerts[0].key == "goal_2024-03_almost"
    assert spending_alerts("2024-03", almost, {"goal_2024-03_almost"}) == []

    over = monthly_totals(
        [
            Persisted(
                _row(type=TransactionType.income, amount_cents=100000, is_paid=True)
            ),
            Persisted(_row(amount_cents=100000)),
        ]
    )
    assert [a.key for a in spending_alerts("2024-03", over)] == [
        "goal_2024-03_almost",
        "goal_2024-03_hit",
    ]
    remaining = spending_alerts("2024-03", over, {"goal_2024-03_almost"})
    assert [a.kind for a in remaining] == ["exceeded"]


def test_spending_alerts_need_expenses():
    income = Persisted(
        _row(type=TransactionType.income, amount_cents=1000, is_paid=True)
    )
    assert spending_alerts("2024-03", monthly_totals([income])) == []
    below = monthly_totals([income, Persisted(_row(amount_cents=100))])
    assert spending_alerts("2024-03", below) == []
