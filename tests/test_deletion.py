from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from deletion import DeletionPolicy, DeletionScope
from errors import NotDeletable, NotFound, ValidationError
from models import Account, TransactionType
from occurrences import OccurrenceRef
from periods import month_period
from recurrence import SeriesExpander
from repository import TransactionFilter, TransactionRepository
from schemas import (
    InstallmentTransactionIn,
    RecurringTransactionIn,
    SingleTransactionIn,
)


def _expander(session: Session, horizon: int = 12) -> tuple[SeriesExpander, Account]:
    account = Account(user_id=1, name="Carteira")
    session.add(account)
    session.commit()
    expander = SeriesExpander(
        TransactionRepository(session), 1, horizon_months=horizon
    )
    return expander, account


def _installments(expander: SeriesExpander, account: Account):
    return expander.expand(
        InstallmentTransactionIn(
            description="Sofá",
            date=date(2024, 1, 10),
            amount_cents=90000,
            type=TransactionType.expense,
            account_id=account.id,
            installment_total=3,
        )
    )


def _monthly_rent(expander: SeriesExpander, account: Account):
    return expander.expand(
        RecurringTransactionIn(
            description="Aluguel",
            date=date(2024, 1, 1),
            amount_cents=150000,
            type=TransactionType.expense,
            account_id=account.id,
        )
    )


def _stored_ids(expander: SeriesExpander) -> set[str]:
    return {row.id for row in expander.repository.query(TransactionFilter(user_id=1))}


def test_series_member_requires_scope():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session)
        rows = _installments(expander, account)

        with pytest.raises(ValidationError):
            DeletionPolicy(expander).delete(OccurrenceRef(rows[1].id))
        assert len(_stored_ids(expander)) == 3


def test_only_this_removes_one_installment():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session)
        rows = _installments(expander, account)
        ids = [row.id for row in rows]

        result = DeletionPolicy(expander).delete(
            OccurrenceRef(ids[1]), DeletionScope.only_this
        )

        assert result.deleted == 1
        assert _stored_ids(expander) == {ids[0], ids[2]}


def test_entire_series_from_a_member_removes_seed_and_members():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session)
        rows = _installments(expander, account)
        expander.expand(
            SingleTransactionIn(
                description="Café",
                date=date(2024, 1, 10),
                amount_cents=800,
                type=TransactionType.expense,
                account_id=account.id,
            )
        )

        result = DeletionPolicy(expander).delete(
            OccurrenceRef(rows[2].id), DeletionScope.entire_series
        )

        assert result.deleted == 3
        assert len(_stored_ids(expander)) == 1


def test_seed_without_scope_deletes_only_the_seed():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session)
        rows = _installments(expander, account)
        ids = [row.id for row in rows]

        DeletionPolicy(expander).delete(OccurrenceRef(ids[0]))

        assert _stored_ids(expander) == {ids[1], ids[2]}


def test_this_and_future_keeps_earlier_instances_and_stops_virtuals():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session, horizon=12)
        template, *instances = _monthly_rent(expander, account)
        template_id = template.id
        earlier = {row.id for row in instances[:5]}

        result = DeletionPolicy(expander).delete(
            OccurrenceRef(template_id, "2024-06"), DeletionScope.this_and_future
        )

        assert result.deleted == 7
        assert _stored_ids(expander) == earlier | {template_id}
        stored_template = expander.repository.get(template_id, 1)
        assert stored_template.series_end_date == date(2024, 5, 31)
        assert expander.effective_occurrences(month_period(2024, 7)) == []
        assert expander.effective_occurrences(month_period(2025, 3)) == []
        may = expander.effective_occurrences(month_period(2024, 5))
        assert [o.is_virtual for o in may] == [False]


def test_this_and_future_past_horizon_needs_a_stored_occurrence():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session, horizon=12)
        template = _monthly_rent(expander, account)[0]

        with pytest.raises(NotDeletable):
            DeletionPolicy(expander).delete(
                OccurrenceRef(template.id, "2025-03"), DeletionScope.this_and_future
            )


def test_deleting_template_removes_whole_series():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session, horizon=4)
        template = _monthly_rent(expander, account)[0]

        result = DeletionPolicy(expander).delete(OccurrenceRef(template.id))

        assert result.scope == DeletionScope.entire_series
        assert result.deleted == 5
        assert _stored_ids(expander) == set()
        assert expander.effective_occurrences(month_period(2024, 8)) == []


def test_only_this_on_an_instance_leaves_a_gap():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        expander, account = _expander(session, horizon=12)
        template = _monthly_rent(expander, account)[0]
        ref = OccurrenceRef(template.id, "2024-03")

        DeletionPolicy(expander).delete(ref, DeletionScope.only_this)

        assert expander.effective_occurrences(month_period(2024, 3)) == []
        assert len(expander.effective_occurrences(month_period(2024, 4))) == 1
        with pytest.raises(NotFound):
            expander.resolve(ref)
