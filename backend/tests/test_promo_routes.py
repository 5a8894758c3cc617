from __future__ import annotations

from puretools.models.promo import PromoCode, PromoCodeType


def _add_promo(db_session, **fields) -> PromoCode:
    promo = PromoCode(**fields)
    db_session.add(promo)
    db_session.commit()
    return promo


def test_redeem_route(client, db_session):
    _add_promo(db_session, code="WELCOME50", type=PromoCodeType.CREDITS.value, value=50)

    res = client.post("/promo/redeem", json={"code": " welcome50 "})

    assert res.status_code == 200, res.text
    assert res.json() == {
        "success": True,
        "credits": 50,
        "new_balance": 50,
        "message": "50 credits have been added to your account!",
    }


def test_redeem_route_localized_error(client, db_session):
    _add_promo(db_session, code="WELCOME50", type=PromoCodeType.CREDITS.value, value=50)
    client.post("/promo/redeem", json={"code": "WELCOME50"})

    res = client.post("/promo/redeem", json={"code": "WELCOME50", "language": "de-DE"})

    assert res.status_code == 400
    assert res.json() == {"error": "ALREADY_USED", "message": "Du hast diesen Promo-Code bereits verwendet"}


def test_redeem_route_unknown_language_falls_back_to_english(client):
    res = client.post("/promo/redeem", json={"code": "MISSING", "language": "fr"})

    assert res.status_code == 400
    assert res.json()["message"] == "Invalid promo code"


def test_validate_route_with_discount_preview(client, db_session):
    _add_promo(db_session, code="SAVE20", type=PromoCodeType.DISCOUNT_PERCENT.value, value=20, description="20% off")

    res = client.post("/promo/validate", json={"code": "save20", "purchase_amount": 999})

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["valid"] is True
    assert body["promo_code"] == {"code": "SAVE20", "type": "discount_percent", "value": 20, "description": "20% off"}
    assert body["discount_amount"] == 200


def test_validate_route_credits_code_has_no_discount(client, db_session):
    _add_promo(db_session, code="WELCOME50", type=PromoCodeType.CREDITS.value, value=50)

    res = client.post("/promo/validate", json={"code": "WELCOME50", "purchase_amount": 999})

    assert res.status_code == 200
    assert res.json()["discount_amount"] is None


def test_validate_route_inactive(client, db_session):
    _add_promo(db_session, code="OLD", type=PromoCodeType.CREDITS.value, value=5, is_active=False)

    res = client.post("/promo/validate", json={"code": "OLD"})

    assert res.status_code == 400
    assert res.json()["error"] == "CODE_INACTIVE"


def test_blank_code_is_a_validation_error(client):
    res = client.post("/promo/redeem", json={"code": "   "})

    assert res.status_code == 422
