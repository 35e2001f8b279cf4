from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def new_id() -> str:
    return str(uuid4())


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class RecurrenceType(str, Enum):
    single = "single"
    recurring = "recurring"
    installment = "installment"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(50), nullable=False)


class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


DEFAULT_GOALS = [
    ("1", "Liberdade Financeira"),
    ("2", "Custos Fixos"),
    ("3", "Conforto"),
    ("4", "Metas"),
    ("5", "Prazeres"),
    ("6", "Conhecimento"),
]


class GoalConfig(Base, TimestampMixin):
    __tablename__ = "goal_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    goal_id: Mapped[str] = mapped_column(ForeignKey("goals.id"), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    goal: Mapped["Goal"] = relationship("Goal")

    __table_args__ = (
        UniqueConstraint("user_id", "goal_id", name="uq_goal_config_user_goal"),
        CheckConstraint(
            "percentage >= 0 AND percentage <= 100", name="ck_goal_config_percentage"
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    tag_id: Mapped[Optional[str]] = mapped_column(ForeignKey("tags.id"))
    goal_id: Mapped[Optional[str]] = mapped_column(ForeignKey("goals.id"))
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    recurrence_type: Mapped[RecurrenceType] = mapped_column(
        SAEnum(RecurrenceType), nullable=False, default=RecurrenceType.single
    )
    installment_total: Mapped[Optional[int]] = mapped_column(Integer)
    installment_current: Mapped[Optional[int]] = mapped_column(Integer)
    # Series id: installment seed id or recurring template id. Not a foreign
    # key, a series member may outlive its seed row.
    parent_transaction_id: Mapped[Optional[str]] = mapped_column(String(36))
    hide_from_reports: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Recurring templates only.
    materialized_through: Mapped[Optional[date]] = mapped_column(Date)
    series_end_date: Mapped[Optional[date]] = mapped_column(Date)

    account: Mapped["Account"] = relationship("Account")
    tag: Mapped[Optional["Tag"]] = relationship("Tag")
    goal: Mapped[Optional["Goal"]] = relationship("Goal")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_recurrence", "user_id", "recurrence_type"),
        Index("ix_transactions_parent_date", "parent_transaction_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "installment_total IS NULL OR installment_total >= 2",
            name="ck_transactions_installment_total",
        ),
    )

    @property
    def is_recurring_template(self) -> bool:
        return (
            self.recurrence_type == RecurrenceType.recurring
            and self.parent_transaction_id is None
        )

    @property
    def series_id(self) -> Optional[str]:
        """Id shared by every row of this row's series, None for singles."""
        if self.parent_transaction_id:
            return self.parent_transaction_id
        if self.recurrence_type == RecurrenceType.single:
            return None
        return self.id
