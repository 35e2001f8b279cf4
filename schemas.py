import datetime as dt
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType


class TransactionBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str = Field(..., min_length=1, max_length=200)
    date: dt.date
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    account_id: str = Field(..., min_length=1)
    tag_id: Optional[str] = None
    goal_id: Optional[str] = None
    is_paid: bool = False

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        clean = value.strip()
        if not clean:
            raise ValueError("Description cannot be empty")
        return clean


class SingleTransactionIn(TransactionBase):
    recurrence_type: Literal["single"] = "single"
    hide_from_reports: bool = False


class InstallmentTransactionIn(TransactionBase):
    """``amount_cents`` is the total; it is split across the installments."""

    recurrence_type: Literal["installment"] = "installment"
    installment_total: int = Field(..., ge=2, le=420)


class RecurringTransactionIn(TransactionBase):
    recurrence_type: Literal["recurring"] = "recurring"


TransactionIn = Annotated[
    Union[SingleTransactionIn, InstallmentTransactionIn, RecurringTransactionIn],
    Field(discriminator="recurrence_type"),
]


class TransactionForm(BaseModel):
    """Transaction input as typed by a person: amount as text, e.g. ``1.234,56``."""

    model_config = ConfigDict(extra="forbid")

    description: str
    date: dt.date
    amount: str
    type: TransactionType
    account_id: str
    tag_id: Optional[str] = None
    goal_id: Optional[str] = None
    is_paid: bool = False
    hide_from_reports: bool = False
    recurrence_type: Literal["single", "installment", "recurring"] = "single"
    installment_total: Optional[int] = None


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    account_id: Optional[str] = None
    tag_id: Optional[str] = None
    goal_id: Optional[str] = None
    hide_from_reports: Optional[bool] = None
    is_paid: Optional[bool] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TagIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)


class GoalPercentageIn(BaseModel):
    goal_id: str
    percentage: Decimal = Field(..., ge=0, le=100, decimal_places=2)


class GoalConfigIn(BaseModel):
    items: list[GoalPercentageIn]


class PaidIn(BaseModel):
    is_paid: bool
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")


class BankNotificationIn(BaseModel):
    package: str
    title: str = ""
    text: str = ""
    amount: Optional[Decimal] = Field(default=None, gt=0)
    merchant: Optional[str] = None
