from __future__ import annotations

import pytest

from puretools.core.errors import CreditErrorCode
from puretools.models.credit import TransactionType, UsageLog
from puretools.services.ai_tools import MeteredAIService
from puretools.services.credits import CreditsService
from puretools.services.pricing import OperationKind


def _fund(db_session, user_id: int, amount: int) -> None:
    CreditsService(db_session).add_credits(user_id=user_id, amount=amount, type=TransactionType.BONUS, description="Seed")


def test_run_charges_quoted_price(db_session, users):
    user, _ = users
    _fund(db_session, user.id, 10)

    metered = MeteredAIService(db_session).run(
        user_id=user.id,
        operation=OperationKind.IMAGE_STANDARD,
        quantity=1,
        tool_type="generate_image",
        description="Image generation: test",
        call=lambda: "image",
    )

    assert metered.result == "image"
    assert metered.credits_used == 6
    assert metered.new_balance == 4
    assert metered.error is None
    log = db_session.query(UsageLog).one()
    assert log.details == {"operation": "image_standard", "base_credits": 5, "service_fee": 1}


def test_run_refuses_before_calling_provider(db_session, users):
    user, _ = users
    _fund(db_session, user.id, 5)
    calls = []

    metered = MeteredAIService(db_session).run(
        user_id=user.id,
        operation=OperationKind.IMAGE_STANDARD,
        quantity=1,
        tool_type="generate_image",
        description="Image generation: test",
        call=lambda: calls.append(1),
    )

    assert metered.error is CreditErrorCode.INSUFFICIENT_BALANCE
    assert metered.required == 6
    assert metered.new_balance == 5
    assert metered.result is None
    assert calls == []


def test_balance_drained_during_call_reports_billing_error(db_session, users):
    user, _ = users
    _fund(db_session, user.id, 6)
    service = MeteredAIService(db_session)

    def _call_while_spending_elsewhere():
        # A concurrent request spends the balance after the gate passed.
        service.credits.use_credits(user_id=user.id, amount=6, tool_type="translate", description="elsewhere")
        return "image"

    metered = service.run(
        user_id=user.id,
        operation=OperationKind.IMAGE_STANDARD,
        quantity=1,
        tool_type="generate_image",
        description="Image generation: test",
        call=_call_while_spending_elsewhere,
    )

    assert metered.result == "image"
    assert metered.credits_used == 0
    assert metered.billing_error is CreditErrorCode.INSUFFICIENT_BALANCE
    assert CreditsService(db_session).get_balance(user.id) == 0


def test_provider_errors_propagate_without_charge(db_session, users):
    user, _ = users
    _fund(db_session, user.id, 10)

    def _boom():
        raise RuntimeError("provider down")

    with pytest.raises(RuntimeError):
        MeteredAIService(db_session).run(
            user_id=user.id,
            operation=OperationKind.TRANSLATE,
            quantity=10,
            tool_type="translate",
            description="Translation",
            call=_boom,
        )

    assert CreditsService(db_session).get_balance(user.id) == 10


def test_actual_quantity_reconciles_charge(db_session, users):
    user, _ = users
    _fund(db_session, user.id, 20)

    metered = MeteredAIService(db_session).run(
        user_id=user.id,
        operation=OperationKind.TRANSCRIBE,
        quantity=10,
        tool_type="transcribe",
        description="Transcription",
        call=lambda: {"duration": 600},
        actual_quantity=lambda result: result["duration"],
    )

    assert metered.credits_used == 11
    assert metered.new_balance == 9


def test_estimate(db_session, users):
    user, _ = users
    _fund(db_session, user.id, 2)

    estimate = MeteredAIService(db_session).estimate(user_id=user.id, operation=OperationKind.TRANSCRIBE, quantity=90)

    assert estimate.price.total_cost == 2
    assert estimate.estimated_time_seconds == 9
    assert estimate.has_enough_credits is True
