"""
Occurrences are what reports and listings work on.

A ``Persisted`` occurrence wraps a stored row. A ``Virtual`` occurrence is a
recurring template's appearance in a month that has no stored instance; it
lives only for the duration of one read. Both expose the same read-only
attributes so aggregation never needs to know which one it holds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Union

from dates import month_key
from models import RecurrenceType, Transaction, TransactionType


@dataclass(frozen=True)
class Persisted:
    transaction: Transaction

    is_virtual = False

    @property
    def id(self) -> str:
        return self.transaction.id

    @property
    def origin_id(self) -> Optional[str]:
        return None

    @property
    def date(self) -> date:
        return self.transaction.date

    @property
    def amount_cents(self) -> int:
        return self.transaction.amount_cents

    @property
    def type(self) -> TransactionType:
        return self.transaction.type

    @property
    def recurrence_type(self) -> RecurrenceType:
        return self.transaction.recurrence_type

    @property
    def description(self) -> str:
        return self.transaction.description

    @property
    def account_id(self) -> str:
        return self.transaction.account_id

    @property
    def tag_id(self) -> Optional[str]:
        return self.transaction.tag_id

    @property
    def goal_id(self) -> Optional[str]:
        return self.transaction.goal_id

    @property
    def is_paid(self) -> bool:
        return self.transaction.is_paid

    @property
    def hide_from_reports(self) -> bool:
        return self.transaction.hide_from_reports

    @property
    def installment_total(self) -> Optional[int]:
        return self.transaction.installment_total

    @property
    def installment_current(self) -> Optional[int]:
        return self.transaction.installment_current

    @property
    def parent_transaction_id(self) -> Optional[str]:
        return self.transaction.parent_transaction_id


@dataclass(frozen=True)
class Virtual:
    origin: Transaction
    effective_date: date

    is_virtual = True
    # Never stored, so never paid and never hidden.
    is_paid = False
    hide_from_reports = False
    installment_total = None
    installment_current = None

    @property
    def id(self) -> str:
        return f"{self.origin.id}_{self.month}"

    @property
    def month(self) -> str:
        return month_key(self.effective_date)

    @property
    def origin_id(self) -> str:
        return self.origin.id

    @property
    def date(self) -> date:
        return self.effective_date

    @property
    def amount_cents(self) -> int:
        return self.origin.amount_cents

    @property
    def type(self) -> TransactionType:
        return self.origin.type

    @property
    def recurrence_type(self) -> RecurrenceType:
        return RecurrenceType.recurring

    @property
    def description(self) -> str:
        return self.origin.description

    @property
    def account_id(self) -> str:
        return self.origin.account_id

    @property
    def tag_id(self) -> Optional[str]:
        return self.origin.tag_id

    @property
    def goal_id(self) -> Optional[str]:
        return self.origin.goal_id

    @property
    def parent_transaction_id(self) -> str:
        return self.origin.id


Occurrence = Union[Persisted, Virtual]


@dataclass(frozen=True)
class OccurrenceRef:
    """
    Points at one occurrence: a stored row by id, or a recurring template's
    occurrence in ``month`` (``YYYY-MM``) when ``month`` is set.
    """

    transaction_id: str
    month: Optional[str] = None


def sort_newest_first(occurrences: list[Occurrence]) -> list[Occurrence]:
    return sorted(occurrences, key=lambda o: (o.date, o.id), reverse=True)


def to_dict(occurrence: Occurrence) -> dict[str, object]:
    return {
        "id": occurrence.id,
        "virtual": occurrence.is_virtual,
        "origin_id": occurrence.origin_id,
        "date": occurrence.date.isoformat(),
        "description": occurrence.description,
        "amount_cents": occurrence.amount_cents,
        "type": occurrence.type.value,
        "recurrence_type": occurrence.recurrence_type.value,
        "account_id": occurrence.account_id,
        "tag_id": occurrence.tag_id,
        "goal_id": occurrence.goal_id,
        "is_paid": occurrence.is_paid,
        "hide_from_reports": occurrence.hide_from_reports,
        "installment_total": occurrence.installment_total,
        "installment_current": occurrence.installment_current,
        "parent_transaction_id": occurrence.parent_transaction_id,
    }
