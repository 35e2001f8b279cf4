"""
Reductions over occurrence sets.

Every function here is pure: it never touches the store and gives the same
result for any ordering of its input. Occurrences flagged
``hide_from_reports`` (recurring templates included) never count.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from dates import month_key, parse_month_key
from models import RecurrenceType, TransactionType
from occurrences import Occurrence


UNCATEGORIZED = "Uncategorized"
MONTH_LABELS = (
    "jan",
    "fev",
    "mar",
    "abr",
    "mai",
    "jun",
    "jul",
    "ago",
    "set",
    "out",
    "nov",
    "dez",
)
ALMOST_THRESHOLD_PERCENT = 90


@dataclass(frozen=True)
class MonthlyTotals:
    income_cents: int
    expense_cents: int
    expense_paid_cents: int
    expense_unpaid_cents: int

    @property
    def balance_cents(self) -> int:
        return self.income_cents - self.expense_cents


@dataclass(frozen=True)
class HistoryPoint:
    month: str
    label: str
    income_cents: int
    expense_cents: int


@dataclass(frozen=True)
class CommitmentPoint:
    month: str
    recurring_cents: int
    installment_cents: int


@dataclass(frozen=True)
class SpendingAlert:
    key: str
    kind: str
    message: str


def reportable(occurrences: Iterable[Occurrence]) -> list[Occurrence]:
    return [o for o in occurrences if not o.hide_from_reports]


def counts_as_income(occurrence: Occurrence) -> bool:
    return occurrence.type == TransactionType.income and occurrence.is_paid


def monthly_totals(occurrences: Iterable[Occurrence]) -> MonthlyTotals:
    """Paid income against all expenses, paid and unpaid."""
    income = 0
    paid = 0
    unpaid = 0
    for occ in reportable(occurrences):
        if occ.type == TransactionType.expense:
            if occ.is_paid:
                paid += occ.amount_cents
            else:
                unpaid += occ.amount_cents
        elif counts_as_income(occ):
            income += occ.amount_cents
    return MonthlyTotals(
        income_cents=income,
        expense_cents=paid + unpaid,
        expense_paid_cents=paid,
        expense_unpaid_cents=unpaid,
    )


def by_tag(
    occurrences: Iterable[Occurrence], tag_names: Mapping[str, str]
) -> dict[str, int]:
    totals: dict[str, int] = {}
    for occ in reportable(occurrences):
        if occ.type != TransactionType.expense:
            continue
        name = tag_names.get(occ.tag_id or "", UNCATEGORIZED)
        totals[name] = totals.get(name, 0) + occ.amount_cents
    return dict(sorted(totals.items(), key=lambda item: (-item[1], item[0])))


def spent_by_goal(occurrences: Iterable[Occurrence]) -> dict[str, int]:
    totals: dict[str, int] = {}
    for occ in reportable(occurrences):
        if occ.type != TransactionType.expense or not occ.goal_id:
            continue
        totals[occ.goal_id] = totals.get(occ.goal_id, 0) + occ.amount_cents
    return totals


def month_label(key: str) -> str:
    _, month = parse_month_key(key)
    return MONTH_LABELS[month - 1]


def history(
    occurrences: Iterable[Occurrence], months: Sequence[str]
) -> list[HistoryPoint]:
    """One bucket per month key, oldest first, zero when nothing happened."""
    income = {key: 0 for key in months}
    expenses = {key: 0 for key in months}
    for occ in reportable(occurrences):
        key = month_key(occ.date)
        if key not in income:
            continue
        if occ.type == TransactionType.expense:
            expenses[key] += occ.amount_cents
        elif counts_as_income(occ):
            income[key] += occ.amount_cents
    return [
        HistoryPoint(
            month=key,
            label=month_label(key),
            income_cents=income[key],
            expense_cents=expenses[key],
        )
        for key in sorted(months)
    ]


def commitments(
    occurrences: Iterable[Occurrence], months: Sequence[str]
) -> list[CommitmentPoint]:
    recurring = {key: 0 for key in months}
    installments = {key: 0 for key in months}
    for occ in reportable(occurrences):
        key = month_key(occ.date)
        if key not in recurring:
            continue
        if occ.recurrence_type == RecurrenceType.recurring:
            recurring[key] += occ.amount_cents
        elif occ.recurrence_type == RecurrenceType.installment:
            installments[key] += occ.amount_cents
    return [
        CommitmentPoint(
            month=key,
            recurring_cents=recurring[key],
            installment_cents=installments[key],
        )
        for key in sorted(months)
    ]


def spending_alerts(
    month: str,
    totals: MonthlyTotals,
    already_sent: Optional[set[str]] = None,
) -> list[SpendingAlert]:
    """
    Alerts due for a month: "almost" once expenses reach 90% of income,
    "exceeded" once they reach income. Keys in ``already_sent`` are skipped,
    so each alert fires at most once per month.
    """
    already_sent = already_sent or set()
    if totals.expense_cents <= 0:
        return []

    alerts = []
    expenses = totals.expense_cents * 100
    if expenses >= totals.income_cents * ALMOST_THRESHOLD_PERCENT:
        alerts.append(
            SpendingAlert(
                key=f"goal_{month}_almost",
                kind="almost",
                message="Expenses are close to this month's income.",
            )
        )
    if totals.expense_cents >= totals.income_cents:
        alerts.append(
            SpendingAlert(
                key=f"goal_{month}_hit",
                kind="exceeded",
                message="Expenses have reached this month's income.",
            )
        )
    return [alert for alert in alerts if alert.key not in already_sent]
