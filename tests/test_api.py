from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, enable_sqlite_pragmas, get_db
from main import app


def make_client() -> TestClient:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def seed_budget(client: TestClient) -> dict:
    budget = client.post("/api/budgets", json={"name": "B1", "currency_code": "ttd"})
    assert budget.status_code == 201
    account = client.post(
        "/api/accounts",
        json={
            "name": "Main",
            "type": "checking",
            "opening_balance_cents": 100_000,
            "opening_date": "2025-03-01",
        },
    )
    assert account.status_code == 201
    group = client.post("/api/category-groups", json={"name": "Everyday"})
    category = client.post(
        "/api/categories",
        json={
            "group_id": group.json()["id"],
            "name": "Groceries",
            "goal_cents": 30_000,
        },
    )
    assert category.status_code == 201
    return {
        "budget": budget.json(),
        "account": account.json(),
        "category": category.json(),
    }


def test_month_flow_over_http() -> None:
    client = make_client()
    try:
        seeded = seed_budget(client)
        assert seeded["budget"]["currency_code"] == "TTD"
        assert seeded["account"]["balance_cents"] == 100_000
        category_id = seeded["category"]["id"]

        resp = client.put(
            "/api/months/2025-03/assignments",
            json={"category_id": category_id, "amount_cents": 30_000},
        )
        assert resp.status_code == 200
        resp = client.get("/api/months/2025-03/ready-to-assign")
        assert resp.json() == {"ready_to_assign_cents": 70_000}

        resp = client.post(
            "/api/transactions",
            json={
                "account_id": seeded["account"]["id"],
                "date": "2025-03-05",
                "payee": "Market",
                "amount_cents": -12_000,
                "category_id": category_id,
            },
        )
        assert resp.status_code == 201

        resp = client.get(f"/api/months/2025-03/categories/{category_id}")
        assert resp.json() == {
            "assigned_cents": 30_000,
            "activity_cents": -12_000,
            "available_cents": 18_000,
        }

        summary = client.get("/api/months/2025-03").json()
        assert summary["ready_to_assign_cents"] == 58_000
        assert summary["categories"][0]["available_cents"] == 18_000
        assert summary["groups"][0]["assigned_cents"] == 30_000

        txns = client.get("/api/months/2025-03/transactions").json()
        assert [t["payee"] for t in txns] == ["Market", "Starting Balance"]
    finally:
        app.dependency_overrides.clear()


def test_errors_map_to_status_codes() -> None:
    client = make_client()
    try:
        seeded = seed_budget(client)

        assert client.get("/api/months/2025-13").status_code == 400
        resp = client.put(
            "/api/months/2025-03/assignments",
            json={"category_id": 9_999, "amount_cents": 100},
        )
        assert resp.status_code == 404
        resp = client.put(
            f"/api/accounts/{seeded['account']['id']}",
            json={"balance_cents": 5},
        )
        assert resp.status_code == 400
        resp = client.delete(f"/api/budgets/{seeded['budget']['id']}")
        assert resp.status_code == 400

        resp = client.post("/api/months/2025-03/auto-assign")
        assert resp.status_code == 200
        assert resp.json()["total_cents"] == 30_000
        resp = client.put(
            "/api/months/2025-03/assignments",
            json={"category_id": seeded["category"]["id"], "amount_cents": 100_000},
        )
        assert resp.status_code == 200
        assert client.post("/api/months/2025-03/auto-assign").status_code == 400
    finally:
        app.dependency_overrides.clear()


def test_loan_projection_endpoint() -> None:
    client = make_client()
    try:
        seed_budget(client)
        loan = client.post(
            "/api/accounts",
            json={
                "name": "Car",
                "type": "loan",
                "opening_balance_cents": -500_000,
                "opening_date": "2025-01-01",
                "interest_rate": 12.0,
                "monthly_payment_cents": 50_000,
            },
        ).json()

        resp = client.get(
            f"/api/accounts/{loan['id']}/projection", params={"start": "2025-02-01"}
        )
        assert resp.status_code == 200
        body = resp.json()
        first = body["projection"]["schedule"][0]
        assert round(first["interest"], 2) == 50.00
        assert round(first["balance"], 2) == 4550.00
        assert body["progress_percent"] == 0

        client.put(
            f"/api/accounts/{loan['id']}", json={"monthly_payment_cents": 1_000}
        )
        resp = client.get(f"/api/accounts/{loan['id']}/projection")
        assert resp.status_code == 400
    finally:
        app.dependency_overrides.clear()


def test_snapshot_import_rejects_other_versions() -> None:
    client = make_client()
    try:
        seed_budget(client)
        snapshot = client.get("/api/snapshot").json()
        assert snapshot["version"] == 1

        snapshot["version"] = 2
        assert client.post("/api/snapshot", json=snapshot).status_code == 409
        snapshot["version"] = 1
        assert client.post("/api/snapshot", json=snapshot).status_code == 200
        assert len(client.get("/api/budgets").json()["items"]) == 1
    finally:
        app.dependency_overrides.clear()


def test_report_endpoints() -> None:
    client = make_client()
    try:
        seeded = seed_budget(client)
        client.post(
            "/api/transactions",
            json={
                "account_id": seeded["account"]["id"],
                "date": "2025-03-05",
                "payee": "Market",
                "amount_cents": -12_000,
                "category_id": seeded["category"]["id"],
            },
        )

        resp = client.get(
            "/api/reports/trends", params={"end": "2025-03", "months": 3}
        )
        assert resp.status_code == 200
        march = resp.json()[-1]
        assert march["month"] == "2025-03"
        assert march["income_cents"] == 100_000
        assert march["net_cents"] == 88_000
        assert march["savings_rate"] == 88.0
        resp = client.get("/api/reports/trends", params={"months": 0})
        assert resp.status_code == 422

        spending = client.get("/api/reports/2025-03/spending").json()
        assert spending == [
            {
                "category_id": seeded["category"]["id"],
                "name": "Groceries",
                "amount_cents": 12_000,
            }
        ]
        groups = client.get("/api/reports/2025-03/groups").json()
        assert groups[0]["budget_cents"] == 30_000
        assert groups[0]["percent"] == 40.0
        assert client.get("/api/reports/2025-13/groups").status_code == 400
    finally:
        app.dependency_overrides.clear()
