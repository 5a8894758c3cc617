from __future__ import annotations

import json
from types import SimpleNamespace

from puretools.core import config as app_config
from puretools.models.credit import CreditTransaction
from puretools.models.promo import PromoCode, PromoCodeType
from puretools.services import stripe as stripe_module
from puretools.services.stripe import StripeWebhookError


def _event_payload(user_id: int, credits: int, event_id: str = "evt_test", session_id: str = "cs_test_123") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_status": "paid",
                "amount_total": 999,
                "metadata": {
                    "user_id": str(user_id),
                    "package_id": "popular",
                    "credits": str(credits),
                },
            }
        },
    }


def test_webhook_valid_signature_applies_credit(client, db_session, users, monkeypatch):
    app_config.settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    user, _ = users
    event = _event_payload(user.id, 150, "evt_valid")
    payload_bytes = json.dumps(event).encode("utf-8")

    def _fake_parse(self, payload, signature):
        assert signature == "valid"
        return event

    monkeypatch.setattr(stripe_module.StripeService, "parse_event", _fake_parse, raising=False)

    resp = client.post(
        "/billing/stripe/webhook",
        content=payload_bytes,
        headers={"stripe-signature": "valid"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "credits_applied": True}

    rows = db_session.query(CreditTransaction).all()
    assert len(rows) == 1
    assert rows[0].amount == 150
    assert rows[0].details["stripe_event_id"] == "evt_valid"


def test_webhook_invalid_signature_rejected(client, db_session, monkeypatch):
    app_config.settings.STRIPE_WEBHOOK_SECRET = "whsec_test"

    def _fake_parse(self, payload, signature):
        raise StripeWebhookError("bad signature")

    monkeypatch.setattr(stripe_module.StripeService, "parse_event", _fake_parse, raising=False)

    resp = client.post(
        "/billing/stripe/webhook",
        content=b"{}",
        headers={"stripe-signature": "invalid"},
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "INVALID_SIGNATURE"
    assert body["message"] == "Invalid signature"
    assert body["details"] == {"reason": "bad signature"}
    assert db_session.query(CreditTransaction).count() == 0


def test_webhook_missing_signature_rejected(anonymous_client):
    app_config.settings.STRIPE_WEBHOOK_SECRET = "whsec_test"

    resp = anonymous_client.post("/billing/stripe/webhook", content=b"{}")

    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_SIGNATURE"


def test_webhook_duplicate_event_ignored(client, db_session, users, monkeypatch):
    user, _ = users
    event = _event_payload(user.id, 150, "evt_dupe")
    payload_bytes = json.dumps(event).encode("utf-8")

    monkeypatch.setattr(stripe_module.StripeService, "parse_event", lambda self, payload, signature: event, raising=False)

    first = client.post("/billing/stripe/webhook", content=payload_bytes, headers={"stripe-signature": "ignored"})
    assert first.status_code == 200
    assert first.json()["credits_applied"] is True

    again = client.post("/billing/stripe/webhook", content=payload_bytes, headers={"stripe-signature": "ignored"})
    assert again.status_code == 200
    assert again.json()["credits_applied"] is False

    assert db_session.query(CreditTransaction).count() == 1


def test_webhook_is_public_endpoint(anonymous_client, monkeypatch):
    def _fake_parse(self, payload, signature):
        return {"id": "evt_public", "type": "checkout.session.completed", "data": {"object": {}}}

    def _fake_process(self, event, raw_payload):
        return True

    monkeypatch.setattr(stripe_module.StripeService, "parse_event", _fake_parse, raising=False)
    monkeypatch.setattr(stripe_module.StripeService, "process_event", _fake_process, raising=False)

    resp = anonymous_client.post(
        "/billing/stripe/webhook",
        content=b"{}",
        headers={"stripe-signature": "anything"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "credits_applied": True}


class _FakeCheckoutStripe:
    def __init__(self):
        self.sessions: list[dict] = []
        fake = self

        class _Customer:
            def create(self, **kwargs):
                return {"id": "cus_route"}

        class _Session:
            def create(self, **kwargs):
                fake.sessions.append(kwargs)
                return {"id": "cs_route", "url": "https://checkout.example.test/cs_route"}

        self.Customer = _Customer()
        self.checkout = SimpleNamespace(Session=_Session())


def _patch_stripe(monkeypatch) -> _FakeCheckoutStripe:
    fake = _FakeCheckoutStripe()
    original_init = stripe_module.StripeService.__init__

    def _init(self, db, stripe_client=None):
        original_init(self, db, stripe_client=fake)

    monkeypatch.setattr(stripe_module.StripeService, "__init__", _init)
    app_config.settings.STRIPE_SECRET_KEY = "sk_test"
    return fake


def test_checkout_route_creates_session(client, monkeypatch):
    fake = _patch_stripe(monkeypatch)

    resp = client.post("/billing/stripe/checkout", json={"package_id": "Popular", "language": "de"})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["checkout_session_id"] == "cs_route"
    assert body["checkout_url"] == "https://checkout.example.test/cs_route"
    assert body["credits"] == 150
    assert body["amount"] == 999
    assert body["discount_amount"] == 0
    assert "/de/dashboard" in fake.sessions[0]["success_url"]


def test_checkout_route_applies_discount_code(client, db_session, monkeypatch):
    fake = _patch_stripe(monkeypatch)
    db_session.add(PromoCode(code="SAVE20", type=PromoCodeType.DISCOUNT_PERCENT.value, value=20))
    db_session.commit()

    resp = client.post("/billing/stripe/checkout", json={"package_id": "popular", "promo_code": "save20"})

    assert resp.status_code == 200, resp.text
    assert resp.json()["discount_amount"] == 200
    assert resp.json()["amount"] == 799
    assert fake.sessions[0]["metadata"]["discount_amount"] == "200"


def test_checkout_route_rejects_bad_promo(client, db_session, monkeypatch):
    _patch_stripe(monkeypatch)
    db_session.add(
        PromoCode(code="BIGSPEND", type=PromoCodeType.DISCOUNT_FIXED.value, value=500, min_purchase=2000)
    )
    db_session.commit()

    unknown = client.post("/billing/stripe/checkout", json={"package_id": "starter", "promo_code": "NOPE"})
    assert unknown.status_code == 400
    assert unknown.json()["error"] == "INVALID_CODE"

    too_small = client.post(
        "/billing/stripe/checkout",
        json={"package_id": "starter", "promo_code": "BIGSPEND", "language": "de"},
    )
    assert too_small.status_code == 400
    assert too_small.json()["error"] == "MIN_PURCHASE_NOT_MET"
    assert too_small.json()["message"] == "Mindestbestellwert nicht erreicht"


def test_checkout_route_rejects_unknown_package(client):
    resp = client.post("/billing/stripe/checkout", json={"package_id": "enterprise"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "VALIDATION_ERROR"
