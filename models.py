from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountType(str, Enum):
    checking = "checking"
    savings = "savings"
    credit = "credit"
    loan = "loan"


# balances of these count towards Ready to Assign
BUDGET_ACCOUNT_TYPES = (AccountType.checking, AccountType.savings)
# balance, rate and payment may be edited directly on these
STATEMENT_ACCOUNT_TYPES = (AccountType.credit, AccountType.loan)


class TrackingKind(str, Enum):
    asset = "asset"
    liability = "liability"


class CurrencyPlacement(str, Enum):
    before = "before"
    after = "after"


class NumberFormat(str, Enum):
    comma_dot = "1,234.56"
    dot_comma = "1.234,56"
    space_dot = "1 234.56"
    space_comma = "1 234,56"


class DateFormat(str, Enum):
    dmy = "DD/MM/YYYY"
    mdy = "MM/DD/YYYY"
    iso = "YYYY-MM-DD"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)
    currency_placement: Mapped[CurrencyPlacement] = mapped_column(
        SAEnum(CurrencyPlacement),
        default=CurrencyPlacement.before,
        nullable=False,
    )
    number_format: Mapped[NumberFormat] = mapped_column(
        SAEnum(NumberFormat, values_callable=_enum_values, name="numberformat"),
        default=NumberFormat.comma_dot,
        nullable=False,
    )
    date_format: Mapped[DateFormat] = mapped_column(
        SAEnum(DateFormat, values_callable=_enum_values, name="dateformat"),
        default=DateFormat.dmy,
        nullable=False,
    )


class LedgerState(Base):
    """Single row holding the active budget and the month being viewed."""

    __tablename__ = "ledger_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    active_budget_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budgets.id", ondelete="SET NULL")
    )
    current_year: Mapped[int] = mapped_column(Integer, nullable=False)
    current_month: Mapped[int] = mapped_column(Integer, nullable=False)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    interest_rate: Mapped[Optional[float]] = mapped_column(Float)
    monthly_payment_cents: Mapped[Optional[int]] = mapped_column(Integer)
    original_balance_cents: Mapped[Optional[int]] = mapped_column(Integer)
    loan_start_date: Mapped[Optional[date]] = mapped_column(Date)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account", cascade="all, delete"
    )

    __table_args__ = (Index("ix_accounts_budget_type", "budget_id", "type"),)


class TrackingAccount(Base, TimestampMixin):
    __tablename__ = "tracking_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[TrackingKind] = mapped_column(SAEnum(TrackingKind), nullable=False)
    value_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("value_cents >= 0", name="ck_tracking_value_positive"),
    )


class CategoryGroup(Base, TimestampMixin):
    __tablename__ = "category_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    categories: Mapped[list["Category"]] = relationship(
        "Category",
        back_populates="group",
        cascade="all, delete",
        order_by="Category.order",
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    group_id: Mapped[int] = mapped_column(
        ForeignKey("category_groups.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    goal_cents: Mapped[Optional[int]] = mapped_column(Integer)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    group: Mapped["CategoryGroup"] = relationship(
        "CategoryGroup", back_populates="categories"
    )

    __table_args__ = (Index("ix_categories_budget_group", "budget_id", "group_id"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    payee: Mapped[str] = mapped_column(String(200), nullable=False)
    # Plain integer: a deleted category leaves this pointing at a dangling id.
    category_id: Mapped[Optional[int]] = mapped_column(Integer)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    memo: Mapped[Optional[str]] = mapped_column(Text)
    cleared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_opening_balance: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_budget_date", "budget_id", "date"),
        Index(
            "ix_transactions_budget_category_date", "budget_id", "category_id", "date"
        ),
        Index("ix_transactions_account", "account_id"),
    )


class CategoryAssignment(Base, TimestampMixin):
    __tablename__ = "category_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "budget_id",
            "year",
            "month",
            "category_id",
            name="uq_assignment_budget_month_category",
        ),
        Index("ix_assignment_budget_month", "budget_id", "year", "month"),
    )


class BudgetTemplate(Base, TimestampMixin):
    __tablename__ = "budget_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    goals: Mapped[list["BudgetTemplateGoal"]] = relationship(
        "BudgetTemplateGoal",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="BudgetTemplateGoal.id",
    )

    def goal_map(self) -> dict[int, int]:
        return {goal.category_id: goal.amount_cents for goal in self.goals}


class BudgetTemplateGoal(Base):
    __tablename__ = "budget_template_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("budget_templates.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    template: Mapped["BudgetTemplate"] = relationship(
        "BudgetTemplate", back_populates="goals"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_template_goal_amount_positive"),
        UniqueConstraint(
            "template_id", "category_id", name="uq_template_goal_category"
        ),
    )
