import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("FINANCE_DATABASE_URL", "sqlite:///:memory:")

from database import Base  # noqa: E402
from main import app, get_db  # noqa: E402


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _post_expense(client, when: str, amount: float, description: str):
    response = client.post(
        "/api/finance/transactions",
        json={
            "occurred_at": when,
            "amount": -amount,
            "type": "expense",
            "description": description,
        },
    )
    assert response.status_code == 201
    return response.json()


def test_transactions_roundtrip(client) -> None:
    created = _post_expense(client, "2024-03-05T10:00:00", 12.5, "Rimi Tartu")

    assert created["category"] == "Groceries"
    listing = client.get("/api/finance/transactions").json()
    assert [item["id"] for item in listing["items"]] == [created["id"]]

    assert client.delete(f"/api/finance/transactions/{created['id']}").status_code == 204
    assert client.delete("/api/finance/transactions/missing").status_code == 404


def test_budget_analysis_endpoint(client) -> None:
    _post_expense(client, "2024-03-05T10:00:00", 90, "Wolt order")
    client.put(
        "/api/finance/category-limits",
        json={"category": "Dining", "monthly_limit": 100, "alert_threshold": 80},
    )

    rows = client.get(
        "/api/finance/budget-analysis", params={"date": "2024-03-20T12:00:00"}
    ).json()

    assert rows[0]["category"] == "Dining"
    assert rows[0]["alert_level"] == "warning"
    assert rows[0]["period"]["label"] == "2024-03"
    alerts = client.get(
        "/api/finance/budget-alerts", params={"date": "2024-03-20T12:00:00"}
    ).json()
    assert len(alerts) == 1


def test_bad_input_maps_to_400(client) -> None:
    assert client.get("/api/finance/forecast", params={"months": 0}).status_code == 400
    assert (
        client.get("/api/finance/summary", params={"date": "someday"}).status_code
        == 400
    )
    assert (
        client.get("/api/finance/check-duplicates", params={"threshold": -1}).status_code
        == 400
    )


def test_check_duplicates_accepts_posted_transactions(client) -> None:
    payload = {
        "transactions": [
            {"id": "a", "date": "2024-05-10", "amount": -20, "description": "Bolt"},
            {"id": "b", "date": "2024-05-10", "amount": -20, "description": "Bolt"},
        ]
    }

    result = client.post("/api/finance/check-duplicates", json=payload).json()

    assert result["total_duplicates"] == 1
    assert result["alerts"][0]["transaction"]["id"] == "a"


def test_analytics_endpoints_handle_empty_data(client) -> None:
    streak = client.get("/api/finance/savings-streak").json()
    subscriptions = client.get("/api/finance/subscriptions").json()
    forecast = client.get("/api/finance/forecast", params={"period": "quarter"}).json()

    assert streak["current_streak"] == 0
    assert subscriptions["suggestions"] == []
    assert forecast["predicted_expenses"] == 0
    assert client.post("/api/finance/bill-matches").json() == []


def test_csv_import_and_export(client) -> None:
    content = "Date,Amount,Description\n2024-03-05,-4.20,Coffee\n"

    preview = client.post(
        "/api/finance/import/preview",
        files={"file": ("bank.csv", content, "text/csv")},
    ).json()
    committed = client.post(
        "/api/finance/import/commit",
        files={"file": ("bank.csv", content, "text/csv")},
    ).json()
    export = client.get("/api/finance/export.csv")

    assert preview["errors"] == []
    assert committed == {"imported": 1}
    assert "Coffee" in export.text


def test_csv_upload_with_wrong_encoding_is_rejected(client) -> None:
    content = "Date,Amount\n2024-03-05,-4.20\n".encode("utf-16")

    for endpoint in ("/api/finance/import/preview", "/api/finance/import/commit"):
        response = client.post(
            endpoint, files={"file": ("bank.csv", content, "text/csv")}
        )
        assert response.status_code == 400


def test_recurring_mark_paid(client) -> None:
    created = client.post(
        "/api/finance/recurring",
        json={"name": "Rent", "amount": 700, "due_date": "2024-01-31"},
    ).json()

    paid = client.post(
        f"/api/finance/recurring/{created['id']}/paid",
        params={"payment_date": "2024-01-31"},
    ).json()

    assert paid["due_date"] == "2024-02-29"
    assert paid["is_paid"] is True
