from datetime import date

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from database import Base, enable_sqlite_pragmas
from models import AccountType, TrackingKind
from months import Month
from schemas import (
    AccountIn,
    BudgetIn,
    BudgetTemplateIn,
    CategoryGroupIn,
    CategoryIn,
    TrackingAccountIn,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetWorkspaceService,
    BudgetTemplateService,
    CategoryService,
    LedgerService,
    TrackingAccountService,
    TransactionService,
)
from snapshot import SNAPSHOT_VERSION, SnapshotService

MAY = Month(2025, 5)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session) -> None:
    workspace = BudgetWorkspaceService(session)
    workspace.create(BudgetIn(name="Archive"))
    workspace.create(BudgetIn(name="Family", currency_code="usd"))
    workspace.set_month(MAY)

    main = AccountService(session).create(
        AccountIn(
            name="Main",
            type=AccountType.checking,
            opening_balance_cents=80_000,
            opening_date=date(2025, 5, 1),
        )
    )
    AccountService(session).create(
        AccountIn(
            name="Car",
            type=AccountType.loan,
            opening_balance_cents=-400_000,
            opening_date=date(2024, 1, 1),
            interest_rate=7.5,
            monthly_payment_cents=12_000,
        )
    )
    TrackingAccountService(session).create(
        TrackingAccountIn(name="House", kind=TrackingKind.asset, value_cents=900_000)
    )
    categories = CategoryService(session)
    group = categories.create_group(CategoryGroupIn(name="Bills"))
    power = categories.create(
        CategoryIn(group_id=group.id, name="Power", goal_cents=6_000)
    )
    LedgerService(session).set_category_assignment(MAY, power.id, 6_000)
    TransactionService(session).create(
        TransactionIn(
            account_id=main.id,
            date=date(2025, 5, 9),
            payee="Utility",
            amount_cents=-4_500,
            category_id=power.id,
            memo="April bill",
            cleared=True,
        )
    )
    BudgetTemplateService(session).create(
        BudgetTemplateIn(name="Base", goals={power.id: 6_000}, is_default=True)
    )


def test_round_trip_restores_the_same_ledger() -> None:
    source = make_session()
    seed(source)
    exported = SnapshotService(source).export()
    text = SnapshotService(source).export_json()

    target = make_session()
    BudgetWorkspaceService(target).create(BudgetIn(name="Scratch"))
    assert SnapshotService(target).load_json(text) is True

    assert SnapshotService(target).export().model_dump() == exported.model_dump()
    workspace = BudgetWorkspaceService(target)
    assert [b.name for b in workspace.list_all()] == ["Archive", "Family"]
    assert workspace.active().name == "Family"
    assert workspace.current_month() == MAY

    before = LedgerService(source)
    after = LedgerService(target)
    assert after.ready_to_assign(MAY) == before.ready_to_assign(MAY)
    assert after.net_worth() == before.net_worth()
    assert BudgetTemplateService(target).default().name == "Base"


def test_version_mismatch_is_discarded() -> None:
    source = make_session()
    seed(source)
    payload = SnapshotService(source).export().model_dump(mode="json")
    payload["version"] = SNAPSHOT_VERSION + 1

    target = make_session()
    BudgetWorkspaceService(target).create(BudgetIn(name="Keep me"))

    assert SnapshotService(target).load(payload) is False
    assert [b.name for b in BudgetWorkspaceService(target).list_all()] == ["Keep me"]


def test_invalid_payloads_are_discarded() -> None:
    session = make_session()
    BudgetWorkspaceService(session).create(BudgetIn(name="Keep me"))
    snapshots = SnapshotService(session)

    assert snapshots.load_json("{not json") is False
    assert snapshots.load({"version": SNAPSHOT_VERSION, "budgets": []}) is False
    assert (
        snapshots.load(
            {
                "version": SNAPSHOT_VERSION,
                "budgets": [],
                "current_month": "2025-05",
            }
        )
        is False
    )
    assert (
        snapshots.load(
            {
                "version": SNAPSHOT_VERSION,
                "budgets": [
                    {
                        "id": 1,
                        "name": "X",
                        "currency_code": "TTD",
                        "currency_placement": "before",
                        "number_format": "1,234.56",
                        "date_format": "DD/MM/YYYY",
                    }
                ],
                "current_month": "2025-13",
            }
        )
        is False
    )
    assert [b.name for b in BudgetWorkspaceService(session).list_all()] == ["Keep me"]


def test_unknown_active_budget_falls_back_to_first() -> None:
    source = make_session()
    seed(source)
    payload = SnapshotService(source).export().model_dump(mode="json")
    payload["active_budget_id"] = 999

    target = make_session()
    assert SnapshotService(target).load(payload) is True
    assert BudgetWorkspaceService(target).active().name == "Archive"


def exported_payload() -> dict:
    source = make_session()
    seed(source)
    return SnapshotService(source).export().model_dump(mode="json")


def assert_discarded_and_untouched(payload: dict) -> None:
    target = make_session()
    BudgetWorkspaceService(target).create(BudgetIn(name="Keep"))

    assert SnapshotService(target).load(payload) is False
    assert [b.name for b in BudgetWorkspaceService(target).list_all()] == ["Keep"]
    assert BudgetWorkspaceService(target).active().name == "Keep"


def test_transaction_on_unknown_account_is_discarded() -> None:
    payload = exported_payload()
    payload["transactions"][0]["account_id"] = 99

    assert_discarded_and_untouched(payload)


def test_rows_in_unknown_budget_or_group_are_discarded() -> None:
    payload = exported_payload()
    payload["accounts"][0]["budget_id"] = 42
    assert_discarded_and_untouched(payload)

    payload = exported_payload()
    payload["categories"][0]["group_id"] = 42
    assert_discarded_and_untouched(payload)


def test_budget_account_balance_must_match_its_transactions() -> None:
    payload = exported_payload()
    main = next(a for a in payload["accounts"] if a["type"] == "checking")
    main["balance_cents"] = 500_000

    assert_discarded_and_untouched(payload)


def test_loan_balance_may_differ_from_its_transactions() -> None:
    payload = exported_payload()
    loan = next(a for a in payload["accounts"] if a["type"] == "loan")
    loan["balance_cents"] = -350_000

    target = make_session()
    assert SnapshotService(target).load(payload) is True
    assert AccountService(target).balance(loan["id"]) == -350_000


def test_rows_rejected_by_the_database_are_discarded() -> None:
    payload = exported_payload()
    payload["tracking_accounts"][0]["value_cents"] = -1

    assert_discarded_and_untouched(payload)
