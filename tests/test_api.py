import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app, headers={"X-User-Id": "alice"})
    finally:
        app.dependency_overrides.clear()


def _account(client, name, balance, **extra):
    resp = client.post(
        "/api/accounts", json={"name": name, "type": "bank", "balance": balance, **extra}
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def _balance(client, account_id):
    accounts = client.get("/api/accounts", params={"include_archived": True}).json()
    return next(a["balance"] for a in accounts if a["id"] == account_id)


def test_save_edit_delete_round_trip(client) -> None:
    a = _account(client, "Bank", 1000)
    b = _account(client, "Wallet", 500)
    food = client.post("/api/categories", json={"name": "Food", "type": "expense"}).json()

    payload = {
        "type": "expense",
        "date": "2025-01-10",
        "amount": 200,
        "category_id": food["id"],
        "source_account_id": a,
    }
    created = client.post("/api/transactions", json=payload)
    assert created.status_code == 201
    txn_id = created.json()["id"]
    assert _balance(client, a) == 800

    resp = client.put(f"/api/transactions/{txn_id}", json={**payload, "amount": 300})
    assert resp.status_code == 200
    assert _balance(client, a) == 700

    detail = client.get(f"/api/transactions/{txn_id}").json()
    assert detail["category_name"] == "Food"
    assert detail["category_label"] == "Food"

    assert client.delete(f"/api/transactions/{txn_id}").status_code == 204
    assert _balance(client, a) == 1000

    transfer = {
        "type": "transfer",
        "date": "2025-01-11",
        "amount": 100,
        "source_account_id": a,
        "target_account_id": b,
    }
    assert client.post("/api/transactions", json=transfer).status_code == 201
    assert (_balance(client, a), _balance(client, b)) == (900, 600)

    listed = client.get(
        "/api/transactions",
        params={"period": "custom", "start": "2025-01-01", "end": "2025-01-31"},
    ).json()
    assert [t["type"] for t in listed] == ["transfer"]


def test_validation_errors_map_to_status_codes(client) -> None:
    a = _account(client, "Bank", 1000, start_date="2025-02-01")

    resp = client.post(
        "/api/transactions",
        json={
            "type": "transfer",
            "date": "2025-02-10",
            "amount": 10,
            "source_account_id": a,
            "target_account_id": a,
        },
    )
    assert resp.status_code == 400

    resp = client.post(
        "/api/transactions",
        json={
            "type": "transfer",
            "date": "2025-02-10",
            "amount": 10,
            "source_account_id": a,
            "target_account_id": 999,
        },
    )
    assert resp.status_code == 404

    resp = client.post(
        "/api/transactions",
        json={
            "type": "transfer",
            "date": "2025-01-10",
            "amount": 10,
            "source_account_id": a,
            "target_account_id": _account(client, "Wallet", 0),
        },
    )
    assert resp.status_code == 400
    assert "Bank" in resp.json()["detail"]
    assert _balance(client, a) == 1000


def test_recurring_run_and_history(client) -> None:
    a = _account(client, "Bank", 10_000)
    rent = client.post("/api/categories", json={"name": "Rent", "type": "expense"}).json()
    rule = client.post(
        "/api/recurring",
        json={
            "amount": 1000,
            "category_id": rent["id"],
            "source_account_id": a,
            "day": 1,
            "next_due_date": "2024-01-01",
            "end_date": "2024-02-15",
        },
    )
    assert rule.status_code == 201

    assert client.post("/api/recurring/run").json() == {"created": 2}
    assert client.post("/api/recurring/run").json() == {"created": 0}
    assert _balance(client, a) == 8_000

    history = client.get(
        "/api/assets/history", params={"start": "2024-01-01", "end": "2024-01-02"}
    ).json()
    assert [p["balance"] for p in history[str(a)]] == [9_000, 9_000]
    assert client.get("/api/assets/history").status_code == 400


def test_users_are_isolated(client) -> None:
    _account(client, "Bank", 1000)
    resp = client.get("/api/accounts", headers={"X-User-Id": "bob"})
    assert resp.json() == []


@pytest.mark.parametrize("year", [0, 10000])
def test_out_of_range_years_are_rejected(client, year) -> None:
    resp = client.get("/api/analysis/categories", params={"year": year, "month": 1})
    assert resp.status_code == 422
    resp = client.get("/api/assets/history", params={"year": year, "month": 1})
    assert resp.status_code == 422


def test_last_representable_month_is_empty(client) -> None:
    _account(client, "Bank", 1000)
    resp = client.get("/api/analysis/categories", params={"year": 9999, "month": 12})
    assert resp.status_code == 200
    assert resp.json() == []
