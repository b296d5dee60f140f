from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from inbox_categorizer.app import create_app
from inbox_categorizer.main import app

USER = "user-1"


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    # Entering the client runs the lifespan, which wires fresh in-memory storage.
    with TestClient(app) as test_client:
        yield test_client


def _tx(tx_id: str, **overrides) -> dict:
    payload = {
        "id": tx_id,
        "user_id": USER,
        "date": "2024-01-01T09:00:00Z",
        "amount": -42.0,
        "description_raw": "",
        "merchant_name": "",
        "account_name": "Everyday",
    }
    payload.update(overrides)
    return payload


def test_classify_with_inline_rules(client: TestClient) -> None:
    response = client.post("/api/classify", json={
        "transaction": _tx("1", merchant_name="Countdown Petone"),
        "rules": [{"id": "r1", "pattern": "countdown", "category": "Groceries", "category_type": "expense"}],
    })

    assert response.status_code == 200
    data = response.json()
    assert data["inbox_state"] == "auto_classified"
    assert data["classification_source"] == "rule"
    assert data["category"] == "Groceries"
    assert data["confidence"] == 1.0


def test_classify_uses_stored_rules(client: TestClient) -> None:
    response = client.put(f"/api/users/{USER}/rules", json={
        "rules": [{"pattern": "shell", "category": "Fuel"}],
    })
    assert response.json() == {"status": "success", "count": 1}

    response = client.post("/api/classify", json={"transaction": _tx("1", merchant_name="Shell Tawa")})

    assert response.status_code == 200
    assert response.json()["category"] == "Fuel"


def test_classify_without_anything_known(client: TestClient) -> None:
    response = client.post("/api/classify", json={"transaction": _tx("1", merchant_name="Cafe")})

    assert response.status_code == 200
    data = response.json()
    assert data["inbox_state"] == "unclassified"
    assert data["category"] == "Uncategorised"


def test_classify_rejects_invalid_threshold(client: TestClient) -> None:
    response = client.post("/api/classify", json={"transaction": _tx("1"), "threshold": 0})
    assert response.status_code == 422


def test_detect_transfers(client: TestClient) -> None:
    response = client.post("/api/transfers/detect", json={"transactions": [
        _tx("b", amount=50.0, account_name="Savings", description_raw="Transfer to savings"),
        _tx("a", amount=-50.0, account_name="Checking", description_raw="Transfer to savings"),
        _tx("c", amount=-9.5, description_raw="Cafe"),
    ]})

    assert response.status_code == 200
    assert response.json() == {"transfer_ids": ["a", "b"]}


def test_inbox_flow(client: TestClient) -> None:
    response = client.post(f"/api/users/{USER}/transactions", json={"transactions": [
        _tx("1", merchant_name="Cafe Bastille", date="2024-01-03T09:00:00Z"),
        _tx("2", merchant_name="Cafe Bastille", date="2024-01-02T09:00:00Z"),
        _tx("3", merchant_name="Cafe Bastille"),
    ]})
    assert response.json() == {"status": "success", "stored": 3}

    inbox = client.get(f"/api/users/{USER}/inbox", params={"per_page": 2}).json()
    assert inbox["total"] == 3
    assert [tx["id"] for tx in inbox["transactions"]] == ["1", "2"]

    response = client.post(
        f"/api/users/{USER}/inbox/1/confirm", json={"category": "Dining", "category_type": "expense"}
    )
    assert response.status_code == 200
    outcome = response.json()
    assert outcome["transaction"]["inbox_state"] == "cleared"
    assert outcome["model_retrained"] is True
    assert outcome["reclassified"] == 2

    stats = client.get(f"/api/users/{USER}/inbox/stats").json()
    assert stats["to_clear_count"] == 0
    assert stats["streak"] == 1

    response = client.post(f"/api/users/{USER}/inbox/reprocess", json={})
    assert response.json() == {"status": "success", "reprocessed": 0}


def test_confirm_unknown_transaction(client: TestClient) -> None:
    response = client.post(f"/api/users/{USER}/inbox/missing/confirm", json={"category": "Dining"})
    assert response.status_code == 404


def test_reprocess_validation(client: TestClient) -> None:
    response = client.post(f"/api/users/{USER}/inbox/reprocess", json={
        "start_date": "2024-02-01T00:00:00Z",
        "end_date": "2024-01-01T00:00:00Z",
    })
    assert response.status_code == 422

    response = client.post(f"/api/users/{USER}/inbox/reprocess", json={"threshold": 1.5})
    assert response.status_code == 422


def test_train_endpoint(client: TestClient) -> None:
    response = client.post(f"/api/users/{USER}/train", params={"force": True})
    assert response.status_code == 409

    assert client.post(f"/api/users/{USER}/train").json()["retrained"] is False

    client.post(f"/api/users/{USER}/transactions", json={"transactions": [
        _tx("1", merchant_name="Cafe Bastille", category="Dining", category_confirmed=True,
            confirmed_at="2024-01-01T10:00:00Z", inbox_state="cleared", classification_source="user"),
    ]})
    data = client.post(f"/api/users/{USER}/train").json()
    assert data == {"retrained": True, "model_version": 1, "training_label_count": 1}

    data = client.post(f"/api/users/{USER}/train", params={"force": True}).json()
    assert data["model_version"] == 2


def test_services_missing_without_lifespan() -> None:
    bare_client = TestClient(create_app())
    response = bare_client.post("/api/classify", json={"transaction": _tx("1")})
    assert response.status_code == 500
