import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import AccountType, RecurringInterval, TransactionStatus, TransactionType


class UserIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=120)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType = AccountType.current
    balance: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    is_default: bool = False


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int
    type: TransactionType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=60)
    date: dt.date
    description: Optional[str] = Field(default=None, max_length=200)
    receipt_url: Optional[str] = Field(default=None, max_length=500)
    is_recurring: bool = False
    recurring_interval: Optional[RecurringInterval] = None

    @model_validator(mode="after")
    def _interval_required_when_recurring(self) -> "TransactionIn":
        if self.is_recurring and self.recurring_interval is None:
            raise ValueError("Recurring interval is required for recurring transactions")
        return self


class BudgetIn(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    balance: Decimal
    is_default: bool


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    type: TransactionType
    amount: Decimal
    category: str
    date: dt.date
    description: Optional[str]
    is_recurring: bool
    recurring_interval: Optional[RecurringInterval]
    next_recurring_date: Optional[dt.date]
    last_processed_date: Optional[dt.datetime]
    status: TransactionStatus


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    last_alert_sent: Optional[dt.datetime]


class CurrentBudgetOut(BaseModel):
    budget: Optional[BudgetOut]
    current_expenses: Decimal
