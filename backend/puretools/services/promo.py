from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from puretools.core.database import unit_of_work
from puretools.core.errors import CreditErrorCode, LedgerRejected
from puretools.models.credit import TransactionType
from puretools.models.promo import PromoCode, PromoCodeRedemption, PromoCodeType
from puretools.services.credits import CreditsService

logger = logging.getLogger(__name__)


@dataclass
class PromoValidation:
    valid: bool
    error: CreditErrorCode | None = None
    promo_code: PromoCode | None = None


@dataclass
class PromoRedemptionResult:
    success: bool
    credits: int = 0
    new_balance: int | None = None
    error: CreditErrorCode | None = None


@dataclass(frozen=True)
class DiscountResult:
    discount_amount: int
    valid: bool
    error: CreditErrorCode | None = None


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def calculate_discount(promo_code: PromoCode, purchase_amount: int) -> DiscountResult:
    """Discount in minor currency units for a checkout of `purchase_amount`."""
    if promo_code.min_purchase and purchase_amount < promo_code.min_purchase:
        return DiscountResult(0, False, CreditErrorCode.MIN_PURCHASE_NOT_MET)

    if promo_code.type == PromoCodeType.DISCOUNT_PERCENT.value:
        raw = Decimal(purchase_amount) * Decimal(promo_code.value) / Decimal(100)
        discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return DiscountResult(min(discount, purchase_amount), True)

    if promo_code.type == PromoCodeType.DISCOUNT_FIXED.value:
        return DiscountResult(min(promo_code.value, purchase_amount), True)

    return DiscountResult(0, False, CreditErrorCode.INVALID_DISCOUNT_TYPE)


class PromoService:
    def __init__(self, db: Session, *, credits_service: CreditsService | None = None):
        self.db = db
        self.credits = credits_service or CreditsService(db)

    def get_by_code(self, code: str) -> PromoCode | None:
        normalized = normalize_code(code)
        if not normalized:
            return None
        return self.db.query(PromoCode).filter(PromoCode.code == normalized).first()

    def _has_redeemed(self, promo_code_id: int, user_id: int) -> bool:
        return (
            self.db.query(PromoCodeRedemption.id)
            .filter(
                PromoCodeRedemption.promo_code_id == promo_code_id,
                PromoCodeRedemption.user_id == user_id,
            )
            .first()
            is not None
        )

    def validate(self, code: str, user_id: int, *, now: datetime | None = None) -> PromoValidation:
        promo = self.get_by_code(code)
        if not promo:
            return PromoValidation(False, CreditErrorCode.INVALID_CODE)
        if not promo.is_active:
            return PromoValidation(False, CreditErrorCode.CODE_INACTIVE)

        current = now or datetime.now(timezone.utc)
        if promo.expires_at and _as_utc(promo.expires_at) < current:
            return PromoValidation(False, CreditErrorCode.CODE_EXPIRED)
        if promo.max_uses is not None and promo.used_count >= promo.max_uses:
            return PromoValidation(False, CreditErrorCode.CODE_EXHAUSTED)
        if self._has_redeemed(promo.id, user_id):
            return PromoValidation(False, CreditErrorCode.ALREADY_USED)

        return PromoValidation(True, promo_code=promo)

    def _claim_use(self, promo_code_id: int) -> bool:
        claimed = self.db.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo_code_id,
                or_(PromoCode.max_uses.is_(None), PromoCode.used_count < PromoCode.max_uses),
            )
            .values(used_count=PromoCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return claimed.rowcount == 1

    def redeem_credits(self, code: str, user_id: int) -> PromoRedemptionResult:
        validation = self.validate(code, user_id)
        if not validation.valid or validation.promo_code is None:
            return PromoRedemptionResult(False, error=validation.error)

        promo = validation.promo_code
        if promo.type != PromoCodeType.CREDITS.value:
            return PromoRedemptionResult(False, error=CreditErrorCode.NOT_CREDITS_CODE)

        promo_id = promo.id
        promo_code = promo.code
        credits = int(promo.value)

        try:
            with unit_of_work(self.db):
                if not self._claim_use(promo_id):
                    return PromoRedemptionResult(False, error=CreditErrorCode.CODE_EXHAUSTED)

                self.db.add(PromoCodeRedemption(promo_code_id=promo_id, user_id=user_id, credits_awarded=credits))
                self.db.flush()

                ledger = self.credits.add_credits(
                    user_id=user_id,
                    amount=credits,
                    type=TransactionType.BONUS,
                    description=f"Promo code: {promo_code}",
                    metadata={"promo_code_id": promo_id},
                    commit=False,
                )
                if not ledger.success:
                    # Undo the claimed use and the redemption row.
                    raise LedgerRejected(ledger.error)
        except IntegrityError:
            logger.info("Promo redemption raced promo_code_id=%s user_id=%s", promo_id, user_id)
            return PromoRedemptionResult(False, error=CreditErrorCode.ALREADY_USED)
        except LedgerRejected as exc:
            return PromoRedemptionResult(False, error=exc.code)

        logger.info("Promo redeemed promo_code_id=%s user_id=%s credits=%s", promo_id, user_id, credits)
        return PromoRedemptionResult(True, credits=credits, new_balance=self.credits.get_balance(user_id))

    def record_discount_redemption(self, promo_code_id: int, user_id: int) -> bool:
        """
        Stage a discount-code use for a paid checkout (no commit).

        Returns False when the cap is already reached or the user redeemed it
        before; the purchase itself is not affected by either.
        """
        if self._has_redeemed(promo_code_id, user_id):
            return False
        if not self._claim_use(promo_code_id):
            return False
        self.db.add(PromoCodeRedemption(promo_code_id=promo_code_id, user_id=user_id, credits_awarded=0))
        self.db.flush()
        return True
