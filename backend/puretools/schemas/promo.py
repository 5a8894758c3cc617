from __future__ import annotations

from pydantic import BaseModel, field_validator


class PromoCodeIn(BaseModel):
    code: str
    language: str = "en"
    # Minor currency units; set when previewing a discount for a checkout.
    purchase_amount: int | None = None

    @field_validator("code")
    @staticmethod
    def _normalize_code(value: str) -> str:
        normalized = (value or "").strip().upper()
        if not normalized:
            raise ValueError("code is required")
        if len(normalized) > 64:
            raise ValueError("code is too long")
        return normalized

    @field_validator("purchase_amount")
    @staticmethod
    def _validate_amount(value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("purchase_amount must not be negative")
        return value


class PromoCodeInfoOut(BaseModel):
    code: str
    type: str
    value: int
    description: str | None = None


class PromoValidateOut(BaseModel):
    valid: bool
    promo_code: PromoCodeInfoOut
    discount_amount: int | None = None


class PromoRedeemOut(BaseModel):
    success: bool
    credits: int
    new_balance: int
    message: str
