import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional, Union

from config import get_settings
from dates import (
    iter_months,
    month_end,
    month_start,
    months_between,
    parse_month_key,
    shift_months,
)
from errors import NotFound, PartialSeriesFailure, ValidationError
from models import RecurrenceType, Transaction, TransactionType, new_id
from occurrences import (
    Occurrence,
    OccurrenceRef,
    Persisted,
    Virtual,
    sort_newest_first,
)
from periods import Period
from repository import TransactionFilter, TransactionRepository
from schemas import (
    InstallmentTransactionIn,
    RecurringTransactionIn,
    SingleTransactionIn,
)


logger = logging.getLogger(__name__)

TransactionInput = Union[
    SingleTransactionIn, InstallmentTransactionIn, RecurringTransactionIn
]


@dataclass
class ListingFilters:
    type: Optional[TransactionType] = None
    tag_id: Optional[str] = None
    account_id: Optional[str] = None
    goal_id: Optional[str] = None
    query: Optional[str] = None
    is_paid: Optional[bool] = None


def split_amount(total_cents: int, parts: int) -> list[int]:
    """Even split in cents; the last part takes the remainder."""
    if parts < 1:
        raise ValueError("Cannot split into fewer than one part")
    base = total_cents // parts
    amounts = [base] * parts
    amounts[-1] += total_cents - base * parts
    return amounts


def single_row(data: SingleTransactionIn, user_id: int) -> Transaction:
    return Transaction(
        id=new_id(),
        user_id=user_id,
        account_id=data.account_id,
        tag_id=data.tag_id,
        goal_id=data.goal_id,
        description=data.description,
        date=data.date,
        amount_cents=data.amount_cents,
        type=data.type,
        recurrence_type=RecurrenceType.single,
        hide_from_reports=data.hide_from_reports,
        is_paid=data.is_paid,
    )


def installment_rows(
    data: InstallmentTransactionIn, user_id: int
) -> list[Transaction]:
    total = data.installment_total
    if data.amount_cents < total:
        raise ValidationError(
            f"Amount is too small to split into {total} installments"
        )
    series_id = new_id()
    rows = []
    for index, amount in enumerate(split_amount(data.amount_cents, total)):
        rows.append(
            Transaction(
                id=series_id if index == 0 else new_id(),
                user_id=user_id,
                account_id=data.account_id,
                tag_id=data.tag_id,
                goal_id=data.goal_id,
                description=f"{data.description} ({index + 1}/{total})",
                date=shift_months(data.date, index),
                amount_cents=amount,
                type=data.type,
                recurrence_type=RecurrenceType.installment,
                installment_total=total,
                installment_current=index + 1,
                parent_transaction_id=None if index == 0 else series_id,
                hide_from_reports=False,
                is_paid=data.is_paid if index == 0 else False,
            )
        )
    return rows


def template_row(data: RecurringTransactionIn, user_id: int) -> Transaction:
    # The template only describes the commitment; it is never reported on
    # and never paid itself.
    return Transaction(
        id=new_id(),
        user_id=user_id,
        account_id=data.account_id,
        tag_id=data.tag_id,
        goal_id=data.goal_id,
        description=data.description,
        date=data.date,
        amount_cents=data.amount_cents,
        type=data.type,
        recurrence_type=RecurrenceType.recurring,
        hide_from_reports=True,
        is_paid=False,
    )


def instance_row(template: Transaction, index: int) -> Transaction:
    return Transaction(
        id=new_id(),
        user_id=template.user_id,
        account_id=template.account_id,
        tag_id=template.tag_id,
        goal_id=template.goal_id,
        description=template.description,
        date=shift_months(template.date, index),
        amount_cents=template.amount_cents,
        type=template.type,
        recurrence_type=RecurrenceType.recurring,
        parent_transaction_id=template.id,
        hide_from_reports=False,
        is_paid=False,
    )


def occurrence_dates(template: Transaction, start: date, end: date) -> Iterator[date]:
    """Dates of a recurring template's occurrences that fall in ``[start, end]``."""
    first = max(start, template.date)
    for month in iter_months(first, end):
        occurs_on = shift_months(template.date, months_between(template.date, month))
        if template.series_end_date and occurs_on > template.series_end_date:
            return
        if start <= occurs_on <= end:
            yield occurs_on


def is_materialized(template: Transaction, occurs_on: date) -> bool:
    through = template.materialized_through
    return through is not None and month_start(occurs_on) <= through


def virtual_occurrences(
    template: Transaction,
    start: date,
    end: date,
    *,
    include_materialized: bool = False,
) -> list[Virtual]:
    """
    A template's virtual occurrences in a window.

    Months the template has already written instance rows for are skipped
    unless ``include_materialized`` is set, which replicates the template
    across every month it is active regardless of what is stored.
    """
    return [
        Virtual(template, occurs_on)
        for occurs_on in occurrence_dates(template, start, end)
        if include_materialized or not is_materialized(template, occurs_on)
    ]


class SeriesExpander:
    def __init__(
        self,
        repository: TransactionRepository,
        user_id: int,
        *,
        horizon_months: Optional[int] = None,
    ) -> None:
        self.repository = repository
        self.user_id = user_id
        if horizon_months is None:
            horizon_months = get_settings().recurring_horizon_months
        self.horizon_months = horizon_months

    def expand(self, data: TransactionInput) -> list[Transaction]:
        if isinstance(data, InstallmentTransactionIn):
            rows = self.repository.insert_many(installment_rows(data, self.user_id))
            logger.info(
                f"series_created: type=installment series_id={rows[0].id} "
                f"rows={len(rows)}"
            )
            return rows
        if isinstance(data, RecurringTransactionIn):
            return self._create_recurring(data)
        return [self.repository.insert_one(single_row(data, self.user_id))]

    def _create_recurring(self, data: RecurringTransactionIn) -> list[Transaction]:
        template = self.repository.insert_one(template_row(data, self.user_id))
        horizon = self.horizon_months
        if data.is_paid:
            horizon = max(horizon, 1)
        if horizon == 0:
            logger.info(f"series_created: type=recurring template_id={template.id}")
            return [template]

        try:
            instances = self.extend_horizon(
                template,
                shift_months(template.date, horizon - 1),
                first_is_paid=data.is_paid,
            )
        except Exception as exc:
            logger.exception(
                f"series_partial_failure: template_id={template.id} horizon={horizon}"
            )
            raise PartialSeriesFailure(template.id, exc) from exc

        logger.info(
            f"series_created: type=recurring template_id={template.id} "
            f"instances={len(instances)}"
        )
        return [template, *instances]

    def extend_horizon(
        self,
        template: Transaction,
        through: date,
        *,
        first_is_paid: bool = False,
    ) -> list[Transaction]:
        """
        Write instance rows for every month up to ``through``'s month that the
        template has not materialized yet, and advance its horizon. The rows
        and the new horizon are committed together.
        """
        if not template.is_recurring_template:
            raise ValidationError("Only recurring templates can be materialized")

        if template.materialized_through is None:
            first_index = 0
        else:
            materialized = months_between(template.date, template.materialized_through)
            first_index = materialized + 1
        last_index = months_between(template.date, through)

        rows = []
        for index in range(first_index, last_index + 1):
            row = instance_row(template, index)
            if template.series_end_date and row.date > template.series_end_date:
                break
            if index == 0 and first_is_paid:
                row.is_paid = True
            rows.append(row)
        if not rows:
            return []

        template.materialized_through = month_start(rows[-1].date)
        return self.repository.insert_many(rows)

    def templates(
        self, end: date, filters: Optional[ListingFilters] = None
    ) -> list[Transaction]:
        """Recurring templates started on or before ``end``."""
        query = self._filter(filters or ListingFilters())
        query.recurrence_type = RecurrenceType.recurring
        query.parent_transaction_id_is_null = True
        query.date_to = end
        return self.repository.query(query, order_by_date_desc=False)

    def effective_occurrences(
        self, period: Period, filters: Optional[ListingFilters] = None
    ) -> list[Occurrence]:
        """
        Stored rows in the window plus the virtual occurrences of every
        recurring template active in it, newest first. Templates themselves
        are never part of the result.
        """
        filters = filters or ListingFilters()
        query = self._filter(filters)
        query.date_from = period.start
        query.date_to = period.end
        if filters.is_paid is not None:
            query.is_paid = filters.is_paid

        occurrences: list[Occurrence] = [
            Persisted(row)
            for row in self.repository.query(query)
            if not row.is_recurring_template
        ]
        # Virtual occurrences are unpaid by definition.
        if filters.is_paid is not True:
            for template in self.templates(period.end, filters):
                occurrences.extend(
                    virtual_occurrences(template, period.start, period.end)
                )
        return sort_newest_first(occurrences)

    def _filter(self, filters: ListingFilters) -> TransactionFilter:
        return TransactionFilter(
            user_id=self.user_id,
            type=filters.type,
            tag_id=filters.tag_id,
            account_id=filters.account_id,
            goal_id=filters.goal_id,
            description_contains=filters.query,
        )

    def resolve(self, ref: OccurrenceRef) -> Occurrence:
        """
        The occurrence a reference points at. A month reference resolves to
        the stored instance when the month is materialized and to a virtual
        occurrence otherwise.
        """
        row = self.repository.get(ref.transaction_id, self.user_id)
        if ref.month is None:
            return Persisted(row)
        if not row.is_recurring_template:
            raise ValidationError("Month references need a recurring template")

        year, month = parse_month_key(ref.month)
        target = date(year, month, 1)
        occurs_on = shift_months(row.date, months_between(row.date, target))
        if target < month_start(row.date) or (
            row.series_end_date and occurs_on > row.series_end_date
        ):
            raise NotFound(f"Recurring transaction has no occurrence in {ref.month}")
        if not is_materialized(row, occurs_on):
            return Virtual(row, occurs_on)

        instances = self.repository.query(
            TransactionFilter(
                user_id=self.user_id,
                parent_transaction_id=row.id,
                date_from=target,
                date_to=month_end(target),
            ),
            order_by_date_desc=False,
        )
        if not instances:
            raise NotFound(f"Occurrence in {ref.month} was deleted")
        return Persisted(instances[0])
