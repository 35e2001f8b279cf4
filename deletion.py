import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from errors import NotDeletable, ValidationError
from models import Transaction
from occurrences import OccurrenceRef
from recurrence import SeriesExpander
from repository import TransactionFilter


logger = logging.getLogger(__name__)


class DeletionScope(str, Enum):
    only_this = "only_this"
    entire_series = "entire_series"
    this_and_future = "this_and_future"


@dataclass(frozen=True)
class DeletionResult:
    scope: DeletionScope
    deleted: int


class DeletionPolicy:
    """
    Resolves how far a delete request reaches into a series.

    Series members (rows with a parent) need an explicit scope. A recurring
    template is the root of its series, so deleting it takes the whole
    series. Virtual occurrences have nothing to delete.
    """

    def __init__(self, expander: SeriesExpander) -> None:
        self.expander = expander
        self.repository = expander.repository
        self.user_id = expander.user_id

    def delete(
        self, ref: OccurrenceRef, scope: Optional[DeletionScope] = None
    ) -> DeletionResult:
        occurrence = self.expander.resolve(ref)
        if occurrence.is_virtual:
            raise NotDeletable(
                "This occurrence is generated from a recurring transaction; "
                "delete the recurring transaction or one of its stored occurrences"
            )
        txn = occurrence.transaction

        if txn.is_recurring_template:
            result = self._entire_series(txn.id)
        elif txn.parent_transaction_id is None:
            if txn.series_id is None or scope in (None, DeletionScope.only_this):
                result = self._only_this(txn)
            else:
                # Installment seed: it is the first row, so "this and future"
                # is the whole series too.
                result = self._entire_series(txn.id, scope=scope)
        elif scope is None:
            raise ValidationError(
                "Choose a scope: only_this, entire_series or this_and_future"
            )
        elif scope == DeletionScope.only_this:
            result = self._only_this(txn)
        elif scope == DeletionScope.entire_series:
            result = self._entire_series(txn.parent_transaction_id)
        else:
            result = self._this_and_future(txn)

        logger.info(
            f"transaction_deleted: id={txn.id} scope={result.scope.value} "
            f"rows={result.deleted}"
        )
        return result

    def _only_this(self, txn: Transaction) -> DeletionResult:
        self.repository.delete_by_id(txn.id, self.user_id)
        return DeletionResult(scope=DeletionScope.only_this, deleted=1)

    def _entire_series(
        self, series_id: str, scope: DeletionScope = DeletionScope.entire_series
    ) -> DeletionResult:
        members = self.repository.delete_where(
            TransactionFilter(user_id=self.user_id, parent_transaction_id=series_id)
        )
        root = self.repository.delete_where(
            TransactionFilter(user_id=self.user_id, ids=[series_id])
        )
        return DeletionResult(scope=scope, deleted=members + root)

    def _this_and_future(self, txn: Transaction) -> DeletionResult:
        series_id = txn.parent_transaction_id
        cutoff = txn.date
        deleted = self.repository.delete_where(
            TransactionFilter(
                user_id=self.user_id,
                parent_transaction_id=series_id,
                date_from=cutoff,
            )
        )
        roots = self.repository.query(
            TransactionFilter(user_id=self.user_id, ids=[series_id])
        )
        if roots and roots[0].is_recurring_template:
            # Stop virtual continuation past the cutoff as well.
            self.repository.update_by_id(
                series_id,
                self.user_id,
                {"series_end_date": cutoff - timedelta(days=1)},
            )
        return DeletionResult(scope=DeletionScope.this_and_future, deleted=deleted)
