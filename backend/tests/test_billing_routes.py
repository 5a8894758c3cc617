from __future__ import annotations

from puretools.models.credit import TransactionType
from puretools.services.credits import CreditsService


def _seed(db_session, user_id: int) -> None:
    service = CreditsService(db_session)
    service.add_credits(user_id=user_id, amount=150, type=TransactionType.PURCHASE, description="Credit purchase - popular")
    service.add_credits(user_id=user_id, amount=10, type=TransactionType.BONUS, description="Welcome bonus credits")
    service.use_credits(user_id=user_id, amount=6, tool_type="generate_image", description="Image", metadata={"size": "1024x1024"})


def test_balance(client, db_session, users):
    user, _ = users
    _seed(db_session, user.id)

    res = client.get("/billing/credits/balance")

    assert res.status_code == 200
    body = res.json()
    assert body["balance"] == 154
    assert body["total_purchased"] == 150
    assert body["total_bonus"] == 10
    assert body["total_used"] == 6
    assert body["total_refunded"] == 0
    assert body["as_of"]


def test_transactions_are_scoped_and_paginated(client, db_session, users):
    user, other = users
    _seed(db_session, user.id)
    CreditsService(db_session).add_credits(
        user_id=other.id, amount=99, type=TransactionType.BONUS, description="not yours"
    )

    res = client.get("/billing/credits/transactions", params={"limit": 2})

    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 3
    assert body["limit"] == 2
    assert body["offset"] == 0
    assert len(body["transactions"]) == 2
    newest = body["transactions"][0]
    assert newest["type"] == "USAGE"
    assert newest["amount"] == -6
    assert newest["metadata"] == {"size": "1024x1024"}


def test_transactions_limit_is_bounded(client):
    res = client.get("/billing/credits/transactions", params={"limit": 1000})

    assert res.status_code == 422
    assert res.json()["error"] == "VALIDATION_ERROR"


def test_usage_stats(client, db_session, users):
    user, _ = users
    _seed(db_session, user.id)

    res = client.get("/billing/usage", params={"days": 7})

    assert res.status_code == 200
    body = res.json()
    assert body["days"] == 7
    assert body["total_credits_used"] == 6
    assert body["by_tool"] == {"generate_image": 6}
    assert len(body["daily"]) == 1


def test_packages_are_public(anonymous_client):
    res = anonymous_client.get("/billing/packages")

    assert res.status_code == 200
    packages = res.json()
    assert [p["id"] for p in packages] == ["starter", "popular", "pro"]
    assert packages[0]["display_price"] == "4,99 €"
    assert packages[1]["popular"] is True


def test_balance_requires_auth(anonymous_client):
    res = anonymous_client.get("/billing/credits/balance")

    assert res.status_code == 401
