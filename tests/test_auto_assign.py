from datetime import date

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from auto_assign import Allocation, AutoAssignService, plan_auto_assign
from database import Base, enable_sqlite_pragmas
from models import AccountType
from months import Month
from schemas import AccountIn, BudgetIn, CategoryGroupIn, CategoryIn, TransactionIn
from services import (
    AccountService,
    BudgetWorkspaceService,
    CategoryMonth,
    CategoryService,
    LedgerService,
    NothingToAssign,
    TransactionService,
)

JUNE = Month(2025, 6)


def row(category_id, assigned=0, activity=0, goal=None) -> CategoryMonth:
    return CategoryMonth(
        category_id=category_id,
        group_id=1,
        name=f"cat-{category_id}",
        goal_cents=goal,
        assigned_cents=assigned,
        activity_cents=activity,
    )


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_overspent_first_then_least_funded_goals() -> None:
    categories = [
        row(1, activity=-1_000),
        row(2, assigned=5_000, goal=10_000),
        row(3, activity=-3_000),
        row(4, goal=4_000),
    ]

    allocations = plan_auto_assign(10_000, categories)

    assert allocations == [
        Allocation(3, 3_000, "overspent"),
        Allocation(1, 1_000, "overspent"),
        Allocation(4, 4_000, "goal"),
        Allocation(2, 2_000, "goal"),
    ]


def test_pool_runs_out_during_overspent_pass() -> None:
    allocations = plan_auto_assign(
        2_000, [row(1, activity=-3_000), row(2, goal=1_000)]
    )

    assert allocations == [Allocation(1, 2_000, "overspent")]


def test_covered_category_can_still_receive_its_goal() -> None:
    allocations = plan_auto_assign(10_000, [row(1, activity=-2_000, goal=5_000)])

    assert allocations == [
        Allocation(1, 2_000, "overspent"),
        Allocation(1, 3_000, "goal"),
    ]


def test_ties_keep_category_order() -> None:
    allocations = plan_auto_assign(
        1_500, [row(7, goal=1_000), row(3, goal=1_000)]
    )

    assert allocations == [
        Allocation(7, 1_000, "goal"),
        Allocation(3, 500, "goal"),
    ]


def test_funded_goals_and_empty_pool_allocate_nothing() -> None:
    assert plan_auto_assign(5_000, [row(1, assigned=2_000, goal=2_000)]) == []
    assert plan_auto_assign(0, [row(1, activity=-100)]) == []


def test_run_writes_assignments_and_drains_ready_to_assign() -> None:
    session = make_session()
    BudgetWorkspaceService(session).create(BudgetIn(name="Auto"))
    main = AccountService(session).create(
        AccountIn(
            name="Main",
            type=AccountType.checking,
            opening_balance_cents=20_000,
            opening_date=date(2025, 6, 1),
        )
    )
    categories = CategoryService(session)
    group = categories.create_group(CategoryGroupIn(name="Spending"))
    groceries = categories.create(
        CategoryIn(group_id=group.id, name="Groceries", goal_cents=30_000)
    )
    dining = categories.create(CategoryIn(group_id=group.id, name="Dining"))
    TransactionService(session).create(
        TransactionIn(
            account_id=main.id,
            date=date(2025, 6, 3),
            payee="Bistro",
            amount_cents=-5_000,
            category_id=dining.id,
        )
    )

    service = AutoAssignService(session)
    assert [a.category_id for a in service.preview(JUNE)] == [dining.id, groceries.id]

    result = service.run(JUNE)

    ledger = LedgerService(session)
    assert result.total_cents == 15_000
    assert result.category_count == 2
    assert ledger.assigned(JUNE, dining.id) == 5_000
    assert ledger.assigned(JUNE, groceries.id) == 10_000
    assert ledger.category_available(JUNE, dining.id) == 0
    assert ledger.ready_to_assign(JUNE) == 0

    with pytest.raises(NothingToAssign):
        service.run(JUNE)
    assert service.preview(JUNE) == []
