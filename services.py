from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session, selectinload

from amortization import (
    LoanProjection,
    AmortizationRow,
    PayoffComparison,
    compute_amortization,
    compute_original_schedule,
    loan_progress_percent,
    simulate_payoff,
)
from config import get_settings
from models import (
    BUDGET_ACCOUNT_TYPES,
    STATEMENT_ACCOUNT_TYPES,
    Account,
    AccountType,
    Budget,
    BudgetTemplate,
    BudgetTemplateGoal,
    Category,
    CategoryAssignment,
    CategoryGroup,
    LedgerState,
    TrackingAccount,
    TrackingKind,
    Transaction,
)
from months import Month, local_today
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    BudgetTemplateIn,
    BudgetTemplateUpdate,
    BudgetUpdate,
    CategoryGroupIn,
    CategoryIn,
    CategoryUpdate,
    PayoffSimulationIn,
    TrackingAccountIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)

OPENING_BALANCE_PAYEE = "Starting Balance"


class LedgerError(ValueError):
    pass


class LedgerValidationError(LedgerError):
    pass


class InvariantViolation(LedgerError):
    pass


class NothingToAssign(LedgerError):
    pass


def cents_to_units(cents: int) -> float:
    return cents / 100


def units_to_cents(value: float) -> int:
    return int((Decimal(str(value)) * 100).quantize(Decimal("1"), ROUND_HALF_UP))


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield session
        session.flush()
        session.commit()
    except Exception:
        session.rollback()
        raise


def ledger_state(session: Session) -> LedgerState:
    state = session.get(LedgerState, 1)
    if state is None:
        month = Month.current()
        state = LedgerState(
            id=1,
            active_budget_id=None,
            current_year=month.year,
            current_month=month.month,
        )
        session.add(state)
        session.flush()
    return state


def get_active_budget_id(session: Session) -> Optional[int]:
    state = session.get(LedgerState, 1)
    return state.active_budget_id if state else None


def _sync_loan_status(account: Account) -> None:
    """Close a loan once it is paid off, reopen it if it is owed again."""
    if account.type != AccountType.loan:
        return
    if account.balance_cents >= 0 and account.is_active:
        account.is_active = False
        logger.info(
            f"loan_auto_closed: account_id={account.id} "
            f"balance_cents={account.balance_cents}"
        )
    elif account.balance_cents < 0 and not account.is_active:
        account.is_active = True
        logger.info(
            f"loan_reopened: account_id={account.id} "
            f"balance_cents={account.balance_cents}"
        )


class BudgetWorkspaceService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Budget]:
        stmt = select(Budget).order_by(Budget.created_at, Budget.id)
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Optional[Budget]:
        return self.session.get(Budget, budget_id)

    def active(self) -> Optional[Budget]:
        budget_id = get_active_budget_id(self.session)
        return self.get(budget_id) if budget_id is not None else None

    def create(self, data: BudgetIn) -> Budget:
        with unit_of_work(self.session):
            budget = Budget(
                name=data.name,
                currency_code=data.currency_code,
                currency_placement=data.currency_placement,
                number_format=data.number_format,
                date_format=data.date_format,
            )
            self.session.add(budget)
            self.session.flush()
            ledger_state(self.session).active_budget_id = budget.id
        logger.info(f"budget_created: budget_id={budget.id} name={budget.name!r}")
        return budget

    def ensure_default(self) -> Budget:
        active = self.active()
        if active:
            return active
        budgets = self.list_all()
        if budgets:
            return self.switch(budgets[0].id)
        settings = get_settings()
        return self.create(
            BudgetIn(name="My Budget", currency_code=settings.default_currency)
        )

    def switch(self, budget_id: int) -> Optional[Budget]:
        budget = self.get(budget_id)
        if not budget:
            return None
        with unit_of_work(self.session):
            ledger_state(self.session).active_budget_id = budget.id
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Optional[Budget]:
        budget = self.get(budget_id)
        if not budget:
            return None
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "currency_code" in changes:
            changes["currency_code"] = changes["currency_code"].upper()
        with unit_of_work(self.session):
            for key, value in changes.items():
                setattr(budget, key, value)
        return budget

    def delete(self, budget_id: int) -> Optional[bool]:
        budget = self.get(budget_id)
        if not budget:
            return None
        remaining = [b for b in self.list_all() if b.id != budget_id]
        if not remaining:
            raise InvariantViolation("Cannot delete the last budget")

        with unit_of_work(self.session):
            scoped = (
                CategoryAssignment,
                Transaction,
                Account,
                TrackingAccount,
                Category,
                CategoryGroup,
            )
            for model in scoped:
                self.session.execute(delete(model).where(model.budget_id == budget_id))
            state = ledger_state(self.session)
            if state.active_budget_id == budget_id:
                state.active_budget_id = remaining[0].id
            self.session.delete(budget)
        logger.info(f"budget_deleted: budget_id={budget_id}")
        return True

    def current_month(self) -> Month:
        state = self.session.get(LedgerState, 1)
        if state is None:
            return Month.current()
        return Month(state.current_year, state.current_month)

    def set_month(self, month: Month) -> Month:
        with unit_of_work(self.session):
            state = ledger_state(self.session)
            state.current_year = month.year
            state.current_month = month.month
        return month

    def next_month(self) -> Month:
        return self.set_month(self.current_month().next())

    def previous_month(self) -> Month:
        return self.set_month(self.current_month().previous())


class AccountService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def list_all(self, include_inactive: bool = True) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.budget_id == self.budget_id)
            .order_by(Account.type, Account.name, Account.id)
        )
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Optional[Account]:
        account = self.session.get(Account, account_id)
        if not account or account.budget_id != self.budget_id:
            return None
        return account

    def balance(self, account_id: int) -> int:
        account = self.get(account_id)
        return account.balance_cents if account else 0

    def create(self, data: AccountIn) -> Account:
        if self.budget_id is None:
            raise LedgerValidationError("No active budget")
        is_statement = data.type in STATEMENT_ACCOUNT_TYPES
        if not is_statement and (
            data.interest_rate is not None or data.monthly_payment_cents is not None
        ):
            raise LedgerValidationError(
                "Interest rate and payment apply to credit and loan accounts only"
            )
        if data.type != AccountType.loan and (
            data.original_balance_cents is not None or data.loan_start_date is not None
        ):
            raise LedgerValidationError("Loan terms apply to loan accounts only")

        opened_on = data.opening_date or local_today()
        original = data.original_balance_cents
        loan_start = data.loan_start_date
        if data.type == AccountType.loan:
            if original is None and data.opening_balance_cents:
                original = abs(data.opening_balance_cents)
            loan_start = loan_start or opened_on

        with unit_of_work(self.session):
            account = Account(
                budget_id=self.budget_id,
                name=data.name.strip(),
                type=data.type,
                balance_cents=0,
                is_active=True,
                interest_rate=data.interest_rate,
                monthly_payment_cents=data.monthly_payment_cents,
                original_balance_cents=original,
                loan_start_date=loan_start,
            )
            self.session.add(account)
            self.session.flush()
            if data.opening_balance_cents:
                opening = Transaction(
                    budget_id=self.budget_id,
                    account_id=account.id,
                    date=opened_on,
                    payee=OPENING_BALANCE_PAYEE,
                    category_id=None,
                    amount_cents=data.opening_balance_cents,
                    cleared=True,
                    is_opening_balance=True,
                )
                TransactionService(self.session, self.budget_id)._post(opening)
        logger.info(
            f"account_created: account_id={account.id} type={account.type.value} "
            f"opening_balance_cents={data.opening_balance_cents}"
        )
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Optional[Account]:
        account = self.get(account_id)
        if not account:
            return None
        changes = data.model_dump(exclude_unset=True)
        statement_fields = {"balance_cents", "interest_rate", "monthly_payment_cents"}
        loan_fields = {"original_balance_cents", "loan_start_date"}
        is_statement = account.type in STATEMENT_ACCOUNT_TYPES
        if statement_fields & changes.keys() and not is_statement:
            raise LedgerValidationError(
                "Balance, rate and payment are editable on credit and loan accounts"
            )
        if loan_fields & changes.keys() and account.type != AccountType.loan:
            raise LedgerValidationError("Loan terms apply to loan accounts only")
        if "name" in changes and not changes["name"]:
            raise LedgerValidationError("Account name is required")

        with unit_of_work(self.session):
            if changes.get("name"):
                account.name = changes["name"].strip()
            for key in ("interest_rate", "monthly_payment_cents", *loan_fields):
                if key in changes:
                    setattr(account, key, changes[key])
            if changes.get("balance_cents") is not None:
                # Statement correction: the only write to balance outside posting.
                logger.info(
                    f"balance_override: account_id={account.id} "
                    f"from={account.balance_cents} to={changes['balance_cents']}"
                )
                account.balance_cents = changes["balance_cents"]
                _sync_loan_status(account)
        return account

    def delete(self, account_id: int) -> Optional[bool]:
        account = self.get(account_id)
        if not account:
            return None
        with unit_of_work(self.session):
            # transactions go with it
            self.session.delete(account)
        logger.info(f"account_deleted: account_id={account_id}")
        return True


class TrackingAccountService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def list_all(self) -> list[TrackingAccount]:
        stmt = (
            select(TrackingAccount)
            .where(TrackingAccount.budget_id == self.budget_id)
            .order_by(TrackingAccount.kind, TrackingAccount.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, tracking_id: int) -> Optional[TrackingAccount]:
        item = self.session.get(TrackingAccount, tracking_id)
        if not item or item.budget_id != self.budget_id:
            return None
        return item

    def create(self, data: TrackingAccountIn) -> TrackingAccount:
        if self.budget_id is None:
            raise LedgerValidationError("No active budget")
        with unit_of_work(self.session):
            item = TrackingAccount(
                budget_id=self.budget_id,
                name=data.name.strip(),
                kind=data.kind,
                value_cents=data.value_cents,
            )
            self.session.add(item)
        return item

    def update(
        self, tracking_id: int, data: TrackingAccountIn
    ) -> Optional[TrackingAccount]:
        item = self.get(tracking_id)
        if not item:
            return None
        with unit_of_work(self.session):
            item.name = data.name.strip()
            item.kind = data.kind
            item.value_cents = data.value_cents
        return item

    def delete(self, tracking_id: int) -> Optional[bool]:
        item = self.get(tracking_id)
        if not item:
            return None
        with unit_of_work(self.session):
            self.session.delete(item)
        return True


class CategoryService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def list_groups(self) -> list[CategoryGroup]:
        stmt = (
            select(CategoryGroup)
            .options(selectinload(CategoryGroup.categories))
            .where(CategoryGroup.budget_id == self.budget_id)
            .order_by(CategoryGroup.order, CategoryGroup.id)
        )
        return self.session.scalars(stmt).all()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .join(CategoryGroup, Category.group_id == CategoryGroup.id)
            .where(Category.budget_id == self.budget_id)
            .order_by(
                CategoryGroup.order, CategoryGroup.id, Category.order, Category.id
            )
        )
        return self.session.scalars(stmt).all()

    def get_group(self, group_id: int) -> Optional[CategoryGroup]:
        group = self.session.get(CategoryGroup, group_id)
        if not group or group.budget_id != self.budget_id:
            return None
        return group

    def get(self, category_id: int) -> Optional[Category]:
        category = self.session.get(Category, category_id)
        if not category or category.budget_id != self.budget_id:
            return None
        return category

    def create_group(self, data: CategoryGroupIn) -> CategoryGroup:
        if self.budget_id is None:
            raise LedgerValidationError("No active budget")
        with unit_of_work(self.session):
            group = CategoryGroup(
                budget_id=self.budget_id, name=data.name.strip(), order=data.order
            )
            self.session.add(group)
        return group

    def update_group(
        self, group_id: int, data: CategoryGroupIn
    ) -> Optional[CategoryGroup]:
        group = self.get_group(group_id)
        if not group:
            return None
        with unit_of_work(self.session):
            group.name = data.name.strip()
            group.order = data.order
        return group

    def delete_group(self, group_id: int) -> Optional[bool]:
        group = self.get_group(group_id)
        if not group:
            return None
        member_ids = self.session.scalars(
            select(Category.id).where(Category.group_id == group.id)
        ).all()
        with unit_of_work(self.session):
            if member_ids:
                self.session.execute(
                    delete(CategoryAssignment).where(
                        CategoryAssignment.budget_id == self.budget_id,
                        CategoryAssignment.category_id.in_(member_ids),
                    )
                )
            self.session.delete(group)
        logger.info(
            f"category_group_deleted: group_id={group_id} categories={len(member_ids)}"
        )
        return True

    def create(self, data: CategoryIn) -> Category:
        if not self.get_group(data.group_id):
            raise LedgerValidationError("Category group not found")
        with unit_of_work(self.session):
            category = Category(
                budget_id=self.budget_id,
                group_id=data.group_id,
                name=data.name.strip(),
                goal_cents=data.goal_cents,
                order=data.order,
            )
            self.session.add(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Optional[Category]:
        category = self.get(category_id)
        if not category:
            return None
        changes = data.model_dump(exclude_unset=True)
        if changes.get("group_id") is not None and not self.get_group(
            changes["group_id"]
        ):
            raise LedgerValidationError("Category group not found")
        with unit_of_work(self.session):
            if changes.get("name"):
                category.name = changes["name"].strip()
            if changes.get("group_id") is not None:
                category.group = self.get_group(changes["group_id"])
            if changes.get("order") is not None:
                category.order = changes["order"]
            if "goal_cents" in changes:
                category.goal_cents = changes["goal_cents"]
        return category

    def move(self, category_id: int, group_id: int) -> Optional[Category]:
        return self.update(category_id, CategoryUpdate(group_id=group_id))

    def set_goal(
        self, category_id: int, goal_cents: Optional[int]
    ) -> Optional[Category]:
        if goal_cents is not None and goal_cents < 0:
            raise LedgerValidationError("Goal must be non-negative")
        return self.update(category_id, CategoryUpdate(goal_cents=goal_cents))

    def delete(self, category_id: int) -> Optional[bool]:
        category = self.get(category_id)
        if not category:
            return None
        # Transactions keep their category_id; lookups treat it as uncategorized.
        with unit_of_work(self.session):
            self.session.execute(
                delete(CategoryAssignment).where(
                    CategoryAssignment.budget_id == self.budget_id,
                    CategoryAssignment.category_id == category.id,
                )
            )
            self.session.delete(category)
        return True


class TransactionService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def get(self, transaction_id: int) -> Optional[Transaction]:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.budget_id != self.budget_id:
            return None
        return txn

    def list_for_account(self, account_id: int) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.budget_id == self.budget_id,
                Transaction.account_id == account_id,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def list_for_month(self, month: Month) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.budget_id == self.budget_id,
                Transaction.date.between(month.start, month.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return self.session.scalars(stmt).all()

    def _account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.budget_id != self.budget_id:
            raise LedgerValidationError("Account not found")
        return account

    def _check_category(self, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        category = self.session.get(Category, category_id)
        if not category or category.budget_id != self.budget_id:
            raise LedgerValidationError("Category not found")

    def _post(self, txn: Transaction) -> Transaction:
        account = self._account(txn.account_id)
        self.session.add(txn)
        account.balance_cents += txn.amount_cents
        _sync_loan_status(account)
        self.session.flush()
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        self._account(data.account_id)
        self._check_category(data.category_id)
        with unit_of_work(self.session):
            txn = self._post(
                Transaction(
                    budget_id=self.budget_id,
                    account_id=data.account_id,
                    date=data.date,
                    payee=data.payee.strip(),
                    category_id=data.category_id,
                    amount_cents=data.amount_cents,
                    memo=data.memo,
                    cleared=data.cleared,
                )
            )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Optional[Transaction]:
        txn = self.get(transaction_id)
        if not txn:
            return None
        new_account = self._account(data.account_id)
        if data.category_id != txn.category_id:
            self._check_category(data.category_id)

        with unit_of_work(self.session):
            old_account = self._account(txn.account_id)
            old_account.balance_cents -= txn.amount_cents
            new_account.balance_cents += data.amount_cents

            txn.account = new_account
            txn.date = data.date
            txn.payee = data.payee.strip()
            txn.category_id = data.category_id
            txn.amount_cents = data.amount_cents
            txn.memo = data.memo
            txn.cleared = data.cleared

            _sync_loan_status(old_account)
            if new_account is not old_account:
                _sync_loan_status(new_account)
        return txn

    def set_cleared(self, transaction_id: int, cleared: bool) -> Optional[Transaction]:
        txn = self.get(transaction_id)
        if not txn:
            return None
        with unit_of_work(self.session):
            txn.cleared = cleared
        return txn

    def delete(self, transaction_id: int) -> Optional[bool]:
        txn = self.get(transaction_id)
        if not txn:
            return None
        with unit_of_work(self.session):
            account = self._account(txn.account_id)
            account.balance_cents -= txn.amount_cents
            _sync_loan_status(account)
            self.session.delete(txn)
        return True


@dataclass(frozen=True)
class CategoryMonth:
    category_id: int
    group_id: int
    name: str
    goal_cents: Optional[int]
    assigned_cents: int
    activity_cents: int

    @property
    def available_cents(self) -> int:
        return self.assigned_cents + self.activity_cents


@dataclass(frozen=True)
class GroupTotals:
    group_id: int
    assigned_cents: int
    activity_cents: int
    available_cents: int


class LedgerService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def account_balance(self, account_id: int) -> int:
        return AccountService(self.session, self.budget_id).balance(account_id)

    def _assignment_row(
        self, month: Month, category_id: int
    ) -> Optional[CategoryAssignment]:
        return self.session.scalar(
            select(CategoryAssignment).where(
                CategoryAssignment.budget_id == self.budget_id,
                CategoryAssignment.year == month.year,
                CategoryAssignment.month == month.month,
                CategoryAssignment.category_id == category_id,
            )
        )

    def assigned(self, month: Month, category_id: int) -> int:
        row = self._assignment_row(month, category_id)
        return row.amount_cents if row else 0

    def assignments_for_month(self, month: Month) -> dict[int, int]:
        rows = self.session.execute(
            select(
                CategoryAssignment.category_id, CategoryAssignment.amount_cents
            ).where(
                CategoryAssignment.budget_id == self.budget_id,
                CategoryAssignment.year == month.year,
                CategoryAssignment.month == month.month,
            )
        ).all()
        return {row.category_id: row.amount_cents for row in rows}

    def category_activity(self, month: Month, category_id: int) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                Transaction.budget_id == self.budget_id,
                Transaction.category_id == category_id,
                Transaction.date.between(month.start, month.end),
            )
        ).scalar_one()
        return int(total or 0)

    def activity_by_category(self, month: Month) -> dict[int, int]:
        rows = self.session.execute(
            select(
                Transaction.category_id,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.budget_id == self.budget_id,
                Transaction.category_id.isnot(None),
                Transaction.date.between(month.start, month.end),
            )
            .group_by(Transaction.category_id)
        ).all()
        return {row.category_id: int(row.total) for row in rows}

    def category_available(self, month: Month, category_id: int) -> int:
        # No carry-forward: each month stands on its own.
        return self.assigned(month, category_id) + self.category_activity(
            month, category_id
        )

    def ready_to_assign(self, month: Month) -> int:
        cash = self.session.execute(
            select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                Account.budget_id == self.budget_id,
                Account.is_active.is_(True),
                Account.type.in_(BUDGET_ACCOUNT_TYPES),
            )
        ).scalar_one()
        total_assigned = self.session.execute(
            select(func.coalesce(func.sum(CategoryAssignment.amount_cents), 0)).where(
                CategoryAssignment.budget_id == self.budget_id,
                CategoryAssignment.year == month.year,
                CategoryAssignment.month == month.month,
            )
        ).scalar_one()
        return int(cash or 0) - int(total_assigned or 0)

    def net_worth(self) -> int:
        accounts_total = self.session.execute(
            select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                Account.budget_id == self.budget_id
            )
        ).scalar_one()
        tracking = self.session.execute(
            select(
                TrackingAccount.kind,
                func.coalesce(func.sum(TrackingAccount.value_cents), 0).label("total"),
            )
            .where(TrackingAccount.budget_id == self.budget_id)
            .group_by(TrackingAccount.kind)
        ).all()
        by_kind = {row.kind: int(row.total) for row in tracking}
        return (
            int(accounts_total or 0)
            + by_kind.get(TrackingKind.asset, 0)
            - by_kind.get(TrackingKind.liability, 0)
        )

    def month_summary(self, month: Month) -> list[CategoryMonth]:
        assigned = self.assignments_for_month(month)
        activity = self.activity_by_category(month)
        return [
            CategoryMonth(
                category_id=category.id,
                group_id=category.group_id,
                name=category.name,
                goal_cents=category.goal_cents,
                assigned_cents=assigned.get(category.id, 0),
                activity_cents=activity.get(category.id, 0),
            )
            for category in CategoryService(self.session, self.budget_id).list_all()
        ]

    def group_totals(self, month: Month, group_id: int) -> GroupTotals:
        rows = [row for row in self.month_summary(month) if row.group_id == group_id]
        assigned = sum(row.assigned_cents for row in rows)
        activity = sum(row.activity_cents for row in rows)
        return GroupTotals(
            group_id=group_id,
            assigned_cents=assigned,
            activity_cents=activity,
            available_cents=assigned + activity,
        )

    def _category_exists(self, category_id: int) -> bool:
        categories = CategoryService(self.session, self.budget_id)
        return categories.get(category_id) is not None

    def _put_assignment(
        self, month: Month, category_id: int, amount_cents: int
    ) -> CategoryAssignment:
        row = self._assignment_row(month, category_id)
        if row is None:
            row = CategoryAssignment(
                budget_id=self.budget_id,
                year=month.year,
                month=month.month,
                category_id=category_id,
                amount_cents=amount_cents,
            )
            self.session.add(row)
        else:
            row.amount_cents = amount_cents
        self.session.flush()
        return row

    def set_category_assignment(
        self, month: Month, category_id: int, amount_cents: int
    ) -> Optional[CategoryAssignment]:
        if not self._category_exists(category_id):
            return None
        with unit_of_work(self.session):
            row = self._put_assignment(month, category_id, amount_cents)
        return row

    def move_money(
        self,
        from_category_id: int,
        to_category_id: int,
        amount_cents: int,
        month: Month,
    ) -> Optional[bool]:
        # Overdrawing the source is allowed here; callers check category_available.
        if not (
            self._category_exists(from_category_id)
            and self._category_exists(to_category_id)
        ):
            return None
        if from_category_id == to_category_id:
            return True
        source = self.assigned(month, from_category_id)
        target = self.assigned(month, to_category_id)
        with unit_of_work(self.session):
            self._put_assignment(month, from_category_id, source - amount_cents)
            self._put_assignment(month, to_category_id, target + amount_cents)
        logger.info(
            f"money_moved: month={month} from={from_category_id} "
            f"to={to_category_id} amount_cents={amount_cents}"
        )
        return True


UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class MonthlyTrend:
    month: Month
    income_cents: int
    expense_cents: int

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    @property
    def savings_rate(self) -> float:
        if self.income_cents <= 0:
            return 0.0
        return self.net_cents / self.income_cents * 100


@dataclass(frozen=True)
class CategorySpending:
    category_id: Optional[int]
    name: str
    amount_cents: int


@dataclass(frozen=True)
class GroupBudgetVsActual:
    group_id: int
    name: str
    budget_cents: int
    actual_cents: int

    @property
    def percent(self) -> float:
        if self.budget_cents <= 0:
            return 0.0
        return min(self.actual_cents / self.budget_cents * 100, 100.0)


class ReportService:
    """Income, spending and goal tracking over the transaction log."""

    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def monthly_trends(self, end: Month, months: int = 6) -> list[MonthlyTrend]:
        if months < 1:
            raise LedgerValidationError("Report range must cover at least one month")
        periods = [end.shift(offset) for offset in range(1 - months, 1)]
        rows = self.session.execute(
            select(
                func.strftime("%Y", Transaction.date).label("year"),
                func.strftime("%m", Transaction.date).label("month"),
                func.coalesce(
                    func.sum(
                        case(
                            (Transaction.amount_cents > 0, Transaction.amount_cents),
                            else_=0,
                        )
                    ),
                    0,
                ).label("income"),
                func.coalesce(
                    func.sum(
                        case(
                            (Transaction.amount_cents < 0, -Transaction.amount_cents),
                            else_=0,
                        )
                    ),
                    0,
                ).label("expenses"),
            )
            .where(
                Transaction.budget_id == self.budget_id,
                Transaction.date.between(periods[0].start, end.end),
            )
            .group_by("year", "month")
        ).all()
        totals = {
            Month(int(row.year), int(row.month)): (int(row.income), int(row.expenses))
            for row in rows
        }
        return [MonthlyTrend(month, *totals.get(month, (0, 0))) for month in periods]

    def _spent_by_category(self, month: Month) -> dict[Optional[int], int]:
        rows = self.session.execute(
            select(
                Transaction.category_id,
                func.coalesce(func.sum(-Transaction.amount_cents), 0).label("spent"),
            )
            .where(
                Transaction.budget_id == self.budget_id,
                Transaction.amount_cents < 0,
                Transaction.date.between(month.start, month.end),
            )
            .group_by(Transaction.category_id)
        ).all()
        return {row.category_id: int(row.spent) for row in rows}

    def spending_by_category(
        self, month: Month, limit: int = 8
    ) -> list[CategorySpending]:
        names = {
            category.id: category.name
            for category in CategoryService(self.session, self.budget_id).list_all()
        }
        totals: dict[Optional[int], int] = {}
        for category_id, spent in self._spent_by_category(month).items():
            # dangling ids count as uncategorized
            key = category_id if category_id in names else None
            totals[key] = totals.get(key, 0) + spent
        items = [
            CategorySpending(
                category_id=key,
                name=names[key] if key is not None else UNCATEGORIZED,
                amount_cents=amount,
            )
            for key, amount in totals.items()
        ]
        items.sort(key=lambda item: item.amount_cents, reverse=True)
        return items[:limit]

    def group_budget_vs_actual(self, month: Month) -> list[GroupBudgetVsActual]:
        spent = self._spent_by_category(month)
        results = []
        for group in CategoryService(self.session, self.budget_id).list_groups():
            budget = sum(c.goal_cents or 0 for c in group.categories)
            if budget <= 0:
                continue
            results.append(
                GroupBudgetVsActual(
                    group_id=group.id,
                    name=group.name,
                    budget_cents=budget,
                    actual_cents=sum(spent.get(c.id, 0) for c in group.categories),
                )
            )
        return results


class LoanService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def _loan(self, account_id: int) -> Optional[Account]:
        account = AccountService(self.session, self.budget_id).get(account_id)
        if not account or account.type not in STATEMENT_ACCOUNT_TYPES:
            return None
        if account.interest_rate is None or not account.monthly_payment_cents:
            return None
        return account

    def projection(
        self, account_id: int, start_date: Optional[date] = None
    ) -> Optional[LoanProjection]:
        account = self._loan(account_id)
        if not account:
            return None
        return compute_amortization(
            cents_to_units(account.balance_cents),
            account.interest_rate,
            cents_to_units(account.monthly_payment_cents),
            start_date,
        )

    def original_schedule(self, account_id: int) -> list[AmortizationRow]:
        account = self._loan(account_id)
        if not account or not account.original_balance_cents:
            return []
        if not account.loan_start_date:
            return []
        return compute_original_schedule(
            cents_to_units(account.original_balance_cents),
            account.interest_rate,
            cents_to_units(account.monthly_payment_cents),
            account.loan_start_date,
        )

    def progress(self, account_id: int) -> float:
        account = AccountService(self.session, self.budget_id).get(account_id)
        if not account or not account.original_balance_cents:
            return 0.0
        return loan_progress_percent(
            cents_to_units(account.balance_cents),
            cents_to_units(account.original_balance_cents),
        )

    def simulate(
        self,
        account_id: int,
        data: PayoffSimulationIn,
        start_date: Optional[date] = None,
    ) -> Optional[PayoffComparison]:
        account = self._loan(account_id)
        if not account:
            return None
        new_payment = (
            cents_to_units(data.new_monthly_payment_cents)
            if data.new_monthly_payment_cents is not None
            else None
        )
        return simulate_payoff(
            cents_to_units(account.balance_cents),
            account.interest_rate,
            cents_to_units(account.monthly_payment_cents),
            new_monthly_payment=new_payment,
            extra_payment=cents_to_units(data.extra_payment_cents),
            start_date=start_date,
        )


class BudgetTemplateService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)

    def list_all(self) -> list[BudgetTemplate]:
        stmt = (
            select(BudgetTemplate)
            .options(selectinload(BudgetTemplate.goals))
            .order_by(BudgetTemplate.is_default.desc(), BudgetTemplate.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, template_id: int) -> Optional[BudgetTemplate]:
        return self.session.get(BudgetTemplate, template_id)

    def default(self) -> Optional[BudgetTemplate]:
        return self.session.scalar(
            select(BudgetTemplate).where(BudgetTemplate.is_default.is_(True))
        )

    def _clear_default(self, keep_id: Optional[int] = None) -> None:
        for tmpl in self.session.scalars(
            select(BudgetTemplate).where(BudgetTemplate.is_default.is_(True))
        ):
            if tmpl.id != keep_id:
                tmpl.is_default = False

    @staticmethod
    def _goal_rows(goals: dict[int, int]) -> list[BudgetTemplateGoal]:
        return [
            BudgetTemplateGoal(category_id=category_id, amount_cents=amount)
            for category_id, amount in goals.items()
        ]

    def create(self, data: BudgetTemplateIn) -> BudgetTemplate:
        with unit_of_work(self.session):
            if data.is_default:
                self._clear_default()
            tmpl = BudgetTemplate(
                name=data.name.strip(),
                is_default=data.is_default,
                goals=self._goal_rows(data.goals),
            )
            self.session.add(tmpl)
        return tmpl

    def update(
        self, template_id: int, data: BudgetTemplateUpdate
    ) -> Optional[BudgetTemplate]:
        tmpl = self.get(template_id)
        if not tmpl:
            return None
        with unit_of_work(self.session):
            if data.name:
                tmpl.name = data.name.strip()
            if data.goals is not None:
                tmpl.goals.clear()
                self.session.flush()
                tmpl.goals.extend(self._goal_rows(data.goals))
            if data.is_default is not None:
                if data.is_default:
                    self._clear_default(keep_id=tmpl.id)
                tmpl.is_default = data.is_default
        return tmpl

    def delete(self, template_id: int) -> Optional[bool]:
        tmpl = self.get(template_id)
        if not tmpl:
            return None
        with unit_of_work(self.session):
            self.session.delete(tmpl)
        return True

    def save_current_as_template(
        self, name: str, is_default: bool = False
    ) -> BudgetTemplate:
        goals = {
            category.id: category.goal_cents
            for category in CategoryService(self.session, self.budget_id).list_all()
            if category.goal_cents and category.goal_cents > 0
        }
        return self.create(
            BudgetTemplateIn(name=name, goals=goals, is_default=is_default)
        )

    def apply(self, template_id: int, month: Month) -> Optional[dict[int, int]]:
        """Replace the month's assignments with the template goals (destructive)."""
        tmpl = self.get(template_id)
        if not tmpl or self.budget_id is None:
            return None
        category_ids = {
            category.id
            for category in CategoryService(self.session, self.budget_id).list_all()
        }
        applied = {
            category_id: amount
            for category_id, amount in tmpl.goal_map().items()
            if category_id in category_ids
        }
        with unit_of_work(self.session):
            self.session.execute(
                delete(CategoryAssignment).where(
                    CategoryAssignment.budget_id == self.budget_id,
                    CategoryAssignment.year == month.year,
                    CategoryAssignment.month == month.month,
                )
            )
            for category_id, amount in applied.items():
                self.session.add(
                    CategoryAssignment(
                        budget_id=self.budget_id,
                        year=month.year,
                        month=month.month,
                        category_id=category_id,
                        amount_cents=amount,
                    )
                )
        logger.info(
            f"template_applied: template_id={template_id} month={month} "
            f"categories={len(applied)} skipped={len(tmpl.goals) - len(applied)}"
        )
        return applied
