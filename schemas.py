from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import (
    AccountType,
    CurrencyPlacement,
    DateFormat,
    NumberFormat,
    TrackingKind,
)


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    currency_code: str = Field(default="TTD", min_length=3, max_length=3)
    currency_placement: CurrencyPlacement = CurrencyPlacement.before
    number_format: NumberFormat = NumberFormat.comma_dot
    date_format: DateFormat = DateFormat.dmy

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Budget name is required")
        return value

    @field_validator("currency_code")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()


class BudgetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    currency_placement: Optional[CurrencyPlacement] = None
    number_format: Optional[NumberFormat] = None
    date_format: Optional[DateFormat] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    opening_balance_cents: int = 0
    opening_date: Optional[date] = None
    interest_rate: Optional[float] = Field(default=None, ge=0)
    monthly_payment_cents: Optional[int] = Field(default=None, ge=0)
    original_balance_cents: Optional[int] = Field(default=None, ge=0)
    loan_start_date: Optional[date] = None


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    balance_cents: Optional[int] = None
    interest_rate: Optional[float] = Field(default=None, ge=0)
    monthly_payment_cents: Optional[int] = Field(default=None, ge=0)
    original_balance_cents: Optional[int] = Field(default=None, ge=0)
    loan_start_date: Optional[date] = None


class TrackingAccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: TrackingKind
    value_cents: int = Field(default=0, ge=0)


class CategoryGroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    order: int = 0


class CategoryIn(BaseModel):
    group_id: int
    name: str = Field(..., min_length=1, max_length=100)
    goal_cents: Optional[int] = Field(default=None, ge=0)
    order: int = 0


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    group_id: Optional[int] = None
    goal_cents: Optional[int] = Field(default=None, ge=0)
    order: Optional[int] = None


class TransactionIn(BaseModel):
    account_id: int
    date: date
    payee: str = Field(..., min_length=1, max_length=200)
    amount_cents: int
    category_id: Optional[int] = None
    memo: Optional[str] = Field(default=None, max_length=500)
    cleared: bool = False


class AssignmentIn(BaseModel):
    category_id: int
    amount_cents: int


class MoveMoneyIn(BaseModel):
    from_category_id: int
    to_category_id: int
    amount_cents: int


def _check_goals(value: Optional[dict[int, int]]) -> Optional[dict[int, int]]:
    if value and any(amount < 0 for amount in value.values()):
        raise ValueError("Template goals must be non-negative")
    return value


class BudgetTemplateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=120)
    goals: dict[int, int] = Field(default_factory=dict)
    is_default: bool = False

    @field_validator("goals")
    @classmethod
    def validate_goals(cls, value):
        return _check_goals(value)


class BudgetTemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    goals: Optional[dict[int, int]] = None
    is_default: Optional[bool] = None

    @field_validator("goals")
    @classmethod
    def validate_goals(cls, value):
        return _check_goals(value)


class SaveTemplateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    is_default: bool = False


class PayoffSimulationIn(BaseModel):
    new_monthly_payment_cents: Optional[int] = Field(default=None, gt=0)
    extra_payment_cents: int = Field(default=0, ge=0)
