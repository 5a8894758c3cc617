from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from sqlalchemy.orm import Session

from puretools.core.errors import CreditErrorCode
from puretools.services.credits import CreditsService
from puretools.services.pricing import OperationKind, Price, estimated_time_seconds, price

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Estimate:
    operation: OperationKind
    quantity: int
    price: Price
    estimated_time_seconds: int
    has_enough_credits: bool


@dataclass
class MeteredResult(Generic[T]):
    """
    Outcome of a charged AI call.

    `result` is None only when the call was never made (insufficient balance).
    `billing_error` is set when the provider call succeeded but the debit did
    not; the caller still returns the result.
    """

    result: T | None
    credits_used: int
    new_balance: int
    error: CreditErrorCode | None = None
    billing_error: CreditErrorCode | None = None
    required: int = 0


class MeteredAIService:
    """
    Price -> authorize -> call provider -> debit.

    The authorization check and the debit are separate statements; the debit
    itself is atomic, so a concurrent spend between the two can only make the
    debit fail, never push the balance below zero.
    """

    def __init__(self, db: Session, *, credits_service: CreditsService | None = None):
        self.db = db
        self.credits = credits_service or CreditsService(db)

    def estimate(self, *, user_id: int, operation: OperationKind, quantity: int) -> Estimate:
        quoted = price(operation, quantity)
        return Estimate(
            operation=operation,
            quantity=quantity,
            price=quoted,
            estimated_time_seconds=estimated_time_seconds(operation, quantity),
            has_enough_credits=self.credits.has_enough_credits(user_id, quoted.total_cost),
        )

    def run(
        self,
        *,
        user_id: int,
        operation: OperationKind,
        quantity: int,
        tool_type: str,
        description: str,
        call: Callable[[], T],
        input_size: int | None = None,
        output_size: Callable[[T], int | None] | None = None,
        metadata: dict[str, Any] | None = None,
        actual_quantity: Callable[[T], int | None] | None = None,
    ) -> MeteredResult[T]:
        """
        Charge for one provider call.

        `actual_quantity` lets the final charge follow provider-reported usage
        (e.g. real audio duration) instead of the pre-call estimate.
        """
        quoted = price(operation, quantity)
        if not self.credits.has_enough_credits(user_id, quoted.total_cost):
            return MeteredResult(
                result=None,
                credits_used=0,
                new_balance=self.credits.get_balance(user_id),
                error=CreditErrorCode.INSUFFICIENT_BALANCE,
                required=quoted.total_cost,
            )

        result = call()

        charged = quoted
        if actual_quantity is not None:
            reported = actual_quantity(result)
            if reported is not None and reported > 0 and reported != quantity:
                charged = price(operation, reported)
                logger.info(
                    "Reconciled %s charge user_id=%s estimated=%s actual=%s",
                    tool_type,
                    user_id,
                    quoted.total_cost,
                    charged.total_cost,
                )

        if charged.total_cost <= 0:
            return MeteredResult(result=result, credits_used=0, new_balance=self.credits.get_balance(user_id))

        ledger = self.credits.use_credits(
            user_id=user_id,
            amount=charged.total_cost,
            tool_type=tool_type,
            description=description,
            input_size=input_size,
            output_size=output_size(result) if output_size else None,
            metadata={
                **(metadata or {}),
                "operation": operation.value,
                "base_credits": charged.base_cost,
                "service_fee": charged.service_fee,
            },
        )
        if not ledger.success:
            # The provider already did the work; the user keeps the result.
            logger.error(
                "Billing failed after AI call user_id=%s tool=%s amount=%s error=%s",
                user_id,
                tool_type,
                charged.total_cost,
                ledger.error.value if ledger.error else None,
            )
            return MeteredResult(
                result=result,
                credits_used=0,
                new_balance=ledger.new_balance,
                billing_error=ledger.error,
                required=charged.total_cost,
            )

        return MeteredResult(result=result, credits_used=charged.total_cost, new_balance=ledger.new_balance)
