"""Versioned, serializable picture of the whole ledger.

A snapshot either loads completely or not at all: a version mismatch or a
payload that does not validate is discarded, never partially migrated.
"""

import logging
from datetime import date
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models import (
    BUDGET_ACCOUNT_TYPES,
    Account,
    AccountType,
    Budget,
    BudgetTemplate,
    BudgetTemplateGoal,
    Category,
    CategoryAssignment,
    CategoryGroup,
    CurrencyPlacement,
    DateFormat,
    LedgerState,
    NumberFormat,
    TrackingAccount,
    TrackingKind,
    Transaction,
)
from months import Month
from services import ledger_state, unit_of_work

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BudgetRecord(_Record):
    id: int
    name: str
    currency_code: str
    currency_placement: CurrencyPlacement
    number_format: NumberFormat
    date_format: DateFormat


class AccountRecord(_Record):
    id: int
    budget_id: int
    name: str
    type: AccountType
    balance_cents: int
    is_active: bool
    interest_rate: Optional[float] = None
    monthly_payment_cents: Optional[int] = None
    original_balance_cents: Optional[int] = None
    loan_start_date: Optional[date] = None


class TrackingAccountRecord(_Record):
    id: int
    budget_id: int
    name: str
    kind: TrackingKind
    value_cents: int


class CategoryGroupRecord(_Record):
    id: int
    budget_id: int
    name: str
    order: int = 0


class CategoryRecord(_Record):
    id: int
    budget_id: int
    group_id: int
    name: str
    goal_cents: Optional[int] = None
    order: int = 0


class TransactionRecord(_Record):
    id: int
    budget_id: int
    account_id: int
    date: date
    payee: str
    category_id: Optional[int] = None
    amount_cents: int
    memo: Optional[str] = None
    cleared: bool = False
    is_opening_balance: bool = False


class AssignmentRecord(BaseModel):
    budget_id: int
    month: str
    category_id: int
    amount_cents: int


class TemplateRecord(BaseModel):
    id: int
    name: str
    is_default: bool = False
    goals: dict[int, int] = {}


class LedgerSnapshot(BaseModel):
    version: int
    budgets: list[BudgetRecord]
    accounts: list[AccountRecord] = []
    tracking_accounts: list[TrackingAccountRecord] = []
    category_groups: list[CategoryGroupRecord] = []
    categories: list[CategoryRecord] = []
    transactions: list[TransactionRecord] = []
    assignments: list[AssignmentRecord] = []
    templates: list[TemplateRecord] = []
    active_budget_id: Optional[int] = None
    current_month: str


class SnapshotService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _all(self, model, *options) -> list:
        stmt = select(model).options(*options).order_by(model.id)
        return self.session.scalars(stmt).all()

    def export(self) -> LedgerSnapshot:
        state = self.session.get(LedgerState, 1)
        month = (
            Month(state.current_year, state.current_month) if state else Month.current()
        )
        return LedgerSnapshot(
            version=SNAPSHOT_VERSION,
            budgets=[BudgetRecord.model_validate(b) for b in self._all(Budget)],
            accounts=[AccountRecord.model_validate(a) for a in self._all(Account)],
            tracking_accounts=[
                TrackingAccountRecord.model_validate(t)
                for t in self._all(TrackingAccount)
            ],
            category_groups=[
                CategoryGroupRecord.model_validate(g) for g in self._all(CategoryGroup)
            ],
            categories=[CategoryRecord.model_validate(c) for c in self._all(Category)],
            transactions=[
                TransactionRecord.model_validate(t) for t in self._all(Transaction)
            ],
            assignments=[
                AssignmentRecord(
                    budget_id=row.budget_id,
                    month=str(Month(row.year, row.month)),
                    category_id=row.category_id,
                    amount_cents=row.amount_cents,
                )
                for row in self._all(CategoryAssignment)
            ],
            templates=[
                TemplateRecord(
                    id=tmpl.id,
                    name=tmpl.name,
                    is_default=tmpl.is_default,
                    goals=tmpl.goal_map(),
                )
                for tmpl in self._all(
                    BudgetTemplate, selectinload(BudgetTemplate.goals)
                )
            ],
            active_budget_id=state.active_budget_id if state else None,
            current_month=str(month),
        )

    def export_json(self) -> str:
        return self.export().model_dump_json(indent=2)

    def load_json(self, text: str) -> bool:
        try:
            snapshot = LedgerSnapshot.model_validate_json(text)
        except ValidationError as exc:
            logger.warning(
                f"snapshot_discarded: reason=invalid errors={exc.error_count()}"
            )
            return False
        return self.load(snapshot)

    def load(self, data: Union[LedgerSnapshot, dict[str, Any]]) -> bool:
        if isinstance(data, LedgerSnapshot):
            version = data.version
        else:
            version = data.get("version")
        if version != SNAPSHOT_VERSION:
            logger.warning(
                f"snapshot_discarded: reason=version_mismatch "
                f"found={version} expected={SNAPSHOT_VERSION}"
            )
            return False
        try:
            snapshot = (
                data
                if isinstance(data, LedgerSnapshot)
                else LedgerSnapshot.model_validate(data)
            )
            month = Month.parse(snapshot.current_month)
            assignment_months = [Month.parse(a.month) for a in snapshot.assignments]
        except (ValidationError, ValueError) as exc:
            logger.warning(f"snapshot_discarded: reason=invalid detail={exc}")
            return False
        reason = self._discard_reason(snapshot)
        if reason:
            logger.warning(f"snapshot_discarded: reason={reason}")
            return False

        budget_ids = {b.id for b in snapshot.budgets}
        active_id = snapshot.active_budget_id
        if active_id not in budget_ids:
            active_id = snapshot.budgets[0].id

        try:
            self._replace(snapshot, assignment_months, active_id, month)
        except IntegrityError as exc:
            logger.warning(f"snapshot_discarded: reason=integrity detail={exc.orig}")
            return False

        logger.info(
            f"snapshot_loaded: budgets={len(snapshot.budgets)} "
            f"transactions={len(snapshot.transactions)}"
        )
        return True

    @staticmethod
    def _discard_reason(snapshot: LedgerSnapshot) -> Optional[str]:
        """Why ``snapshot`` cannot be loaded as a consistent ledger, if at all."""
        if not snapshot.budgets:
            return "no_budgets"
        if sum(1 for t in snapshot.templates if t.is_default) > 1:
            return "multiple_default_templates"

        budget_ids = {b.id for b in snapshot.budgets}
        scoped = (
            *snapshot.accounts,
            *snapshot.tracking_accounts,
            *snapshot.category_groups,
            *snapshot.categories,
            *snapshot.transactions,
            *snapshot.assignments,
        )
        if any(row.budget_id not in budget_ids for row in scoped):
            return "unknown_budget"

        group_budgets = {g.id: g.budget_id for g in snapshot.category_groups}
        if any(
            group_budgets.get(c.group_id) != c.budget_id for c in snapshot.categories
        ):
            return "unknown_group"

        account_budgets = {a.id: a.budget_id for a in snapshot.accounts}
        if any(
            account_budgets.get(t.account_id) != t.budget_id
            for t in snapshot.transactions
        ):
            return "unknown_account"

        posted: dict[int, int] = {}
        for txn in snapshot.transactions:
            posted[txn.account_id] = posted.get(txn.account_id, 0) + txn.amount_cents
        for account in snapshot.accounts:
            # credit and loan balances may carry a statement override
            if account.type not in BUDGET_ACCOUNT_TYPES:
                continue
            if account.balance_cents != posted.get(account.id, 0):
                return f"balance_mismatch account_id={account.id}"
        return None

    def _replace(
        self,
        snapshot: LedgerSnapshot,
        assignment_months: list[Month],
        active_id: int,
        month: Month,
    ) -> None:
        with unit_of_work(self.session):
            self._clear()
            self.session.add_all(Budget(**b.model_dump()) for b in snapshot.budgets)
            self.session.flush()
            self.session.add_all(
                CategoryGroup(**g.model_dump()) for g in snapshot.category_groups
            )
            self.session.add_all(Account(**a.model_dump()) for a in snapshot.accounts)
            self.session.add_all(
                TrackingAccount(**t.model_dump()) for t in snapshot.tracking_accounts
            )
            self.session.flush()
            self.session.add_all(Category(**c.model_dump()) for c in snapshot.categories)
            self.session.add_all(
                Transaction(**t.model_dump()) for t in snapshot.transactions
            )
            self.session.add_all(
                CategoryAssignment(
                    budget_id=a.budget_id,
                    year=m.year,
                    month=m.month,
                    category_id=a.category_id,
                    amount_cents=a.amount_cents,
                )
                for a, m in zip(snapshot.assignments, assignment_months)
            )
            for tmpl in snapshot.templates:
                self.session.add(
                    BudgetTemplate(
                        id=tmpl.id,
                        name=tmpl.name,
                        is_default=tmpl.is_default,
                        goals=[
                            BudgetTemplateGoal(category_id=cid, amount_cents=amount)
                            for cid, amount in tmpl.goals.items()
                        ],
                    )
                )
            state = ledger_state(self.session)
            state.active_budget_id = active_id
            state.current_year = month.year
            state.current_month = month.month

    def _clear(self) -> None:
        self.session.execute(delete(LedgerState))
        for model in (
            BudgetTemplateGoal,
            BudgetTemplate,
            CategoryAssignment,
            Transaction,
            Account,
            TrackingAccount,
            Category,
            CategoryGroup,
            Budget,
        ):
            self.session.execute(delete(model))
        self.session.flush()
        self.session.expunge_all()
