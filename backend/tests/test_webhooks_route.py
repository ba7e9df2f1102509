from unittest.mock import MagicMock, patch

import pytest

from marketplace.limiter import PAYMENT

PAYLOAD = {"user_id": "user-1", "amount": 25.0, "provider": "moonpay", "external_id": "pay_123"}


@pytest.fixture
def db():
    db = MagicMock()
    with patch("marketplace.routes.webhooks.supabase_service", db):
        yield db


def test_onramp_credits_balance_without_csrf(client, db):
    response = client.post("/api/webhooks/onramp", json=PAYLOAD)

    assert response.status_code == 200
    assert response.json() == {"ok": True}

    topup = db.record_topup.call_args.args[0]
    assert topup["status"] == "succeeded"
    assert topup["provider"] == "moonpay"
    assert topup["crypto_currency"] == "USDC"
    assert topup["crypto_amount"] == 25.0
    db.credit_balance.assert_called_once_with("user-1", 25.0, "pay_123")


def test_onramp_defaults_provider(client, db):
    client.post("/api/webhooks/onramp", json={"user_id": "user-1", "amount": 10})

    assert db.record_topup.call_args.args[0]["provider"] == "onramp"
    db.credit_balance.assert_called_once_with("user-1", 10.0, "onramp")


def test_onramp_per_user_limit(client, db):
    for _ in range(PAYMENT.max_requests):
        assert client.post("/api/webhooks/onramp", json=PAYLOAD).status_code == 200

    response = client.post("/api/webhooks/onramp", json=PAYLOAD)
    assert response.status_code == 429
    assert db.credit_balance.call_count == PAYMENT.max_requests

    other = client.post("/api/webhooks/onramp", json={**PAYLOAD, "user_id": "user-2"})
    assert other.status_code == 200


def test_onramp_rejects_non_positive_amount(client, db):
    response = client.post("/api/webhooks/onramp", json={"user_id": "user-1", "amount": 0})
    assert response.status_code == 422
    db.credit_balance.assert_not_called()


def test_onramp_database_failure(client, db):
    db.credit_balance.side_effect = RuntimeError("rpc failed")
    response = client.post("/api/webhooks/onramp", json=PAYLOAD)
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to credit balance"
