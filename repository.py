from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ConstraintViolation, NotFound, ValidationError
from models import RecurrenceType, Transaction, TransactionType


logger = logging.getLogger(__name__)

# Columns a partial update may touch. Series shape (recurrence type,
# installment counters, parent) is fixed at creation.
UPDATABLE_FIELDS = frozenset(
    {
        "description",
        "date",
        "amount_cents",
        "type",
        "account_id",
        "tag_id",
        "goal_id",
        "hide_from_reports",
        "is_paid",
        "materialized_through",
        "series_end_date",
    }
)


@dataclass
class TransactionFilter:
    user_id: int
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    type: Optional[TransactionType] = None
    recurrence_type: Optional[RecurrenceType] = None
    recurrence_type_not: Optional[RecurrenceType] = None
    parent_transaction_id: Optional[str] = None
    parent_transaction_id_is_null: Optional[bool] = None
    ids: Optional[Sequence[str]] = None
    tag_id: Optional[str] = None
    account_id: Optional[str] = None
    goal_id: Optional[str] = None
    description_contains: Optional[str] = None
    is_paid: Optional[bool] = None
    hide_from_reports: Optional[bool] = None

    def clauses(self) -> list[Any]:
        where: list[Any] = [Transaction.user_id == self.user_id]
        if self.date_from is not None:
            where.append(Transaction.date >= self.date_from)
        if self.date_to is not None:
            where.append(Transaction.date <= self.date_to)
        if self.type is not None:
            where.append(Transaction.type == self.type)
        if self.recurrence_type is not None:
            where.append(Transaction.recurrence_type == self.recurrence_type)
        if self.recurrence_type_not is not None:
            where.append(Transaction.recurrence_type != self.recurrence_type_not)
        if self.parent_transaction_id is not None:
            where.append(
                Transaction.parent_transaction_id == self.parent_transaction_id
            )
        if self.parent_transaction_id_is_null is True:
            where.append(Transaction.parent_transaction_id.is_(None))
        elif self.parent_transaction_id_is_null is False:
            where.append(Transaction.parent_transaction_id.is_not(None))
        if self.ids is not None:
            where.append(Transaction.id.in_(list(self.ids)))
        if self.tag_id:
            where.append(Transaction.tag_id == self.tag_id)
        if self.account_id:
            where.append(Transaction.account_id == self.account_id)
        if self.goal_id:
            where.append(Transaction.goal_id == self.goal_id)
        if self.description_contains:
            like = f"%{self.description_contains.strip().lower()}%"
            where.append(func.lower(Transaction.description).like(like))
        if self.is_paid is not None:
            where.append(Transaction.is_paid.is_(self.is_paid))
        if self.hide_from_reports is not None:
            where.append(Transaction.hide_from_reports.is_(self.hide_from_reports))
        return where


class TransactionRepository:
    """
    Row-level access to the transactions table.

    Every write commits on success and rolls back on failure, so a failed
    ``insert_many`` leaves nothing behind.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, transaction_id: str, user_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != user_id:
            raise NotFound("Transaction not found")
        return txn

    def query(
        self, filters: TransactionFilter, *, order_by_date_desc: bool = True
    ) -> list[Transaction]:
        stmt = select(Transaction).where(*filters.clauses())
        if order_by_date_desc:
            stmt = stmt.order_by(Transaction.date.desc(), Transaction.id.desc())
        else:
            stmt = stmt.order_by(Transaction.date.asc(), Transaction.id.asc())
        return list(self.session.scalars(stmt).all())

    def insert_one(self, txn: Transaction) -> Transaction:
        self.session.add(txn)
        self._commit()
        self.session.refresh(txn)
        return txn

    def insert_many(self, txns: Iterable[Transaction]) -> list[Transaction]:
        rows = list(txns)
        self.session.add_all(rows)
        self._commit()
        return rows

    def update_by_id(
        self, transaction_id: str, user_id: int, fields: dict[str, Any]
    ) -> Transaction:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}"
            )
        txn = self.get(transaction_id, user_id)
        for name, value in fields.items():
            setattr(txn, name, value)
        self._commit()
        self.session.refresh(txn)
        return txn

    def delete_by_id(self, transaction_id: str, user_id: int) -> None:
        txn = self.get(transaction_id, user_id)
        self.session.delete(txn)
        self._commit()

    def delete_where(self, filters: TransactionFilter) -> int:
        result = self.session.execute(
            delete(Transaction)
            .where(*filters.clauses())
            .execution_options(synchronize_session="fetch")
        )
        self._commit()
        return result.rowcount or 0

    def _commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning(f"transaction_write_rejected: error={exc.orig}")
            raise ConstraintViolation(str(exc.orig)) from exc
        except Exception:
            self.session.rollback()
            raise
