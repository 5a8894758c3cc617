from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator


class CreditsBalanceOut(BaseModel):
    balance: int
    total_purchased: int
    total_bonus: int
    total_used: int
    total_refunded: int
    as_of: datetime


class CreditTransactionOut(BaseModel):
    id: int
    type: str
    amount: int
    description: str
    metadata: dict[str, Any] | None = None
    created_at: datetime


class CreditTransactionPageOut(BaseModel):
    transactions: list[CreditTransactionOut]
    total: int
    limit: int
    offset: int


class DailyUsageOut(BaseModel):
    date: str
    credits: int


class UsageStatsOut(BaseModel):
    days: int
    total_credits_used: int
    by_tool: dict[str, int]
    daily: list[DailyUsageOut]


class CreditPackageOut(BaseModel):
    id: str
    name: str
    credits: int
    price: int
    currency: str
    popular: bool
    display_price: str


class StripeCheckoutCreate(BaseModel):
    package_id: str
    language: str = "en"
    promo_code: str | None = None

    @field_validator("package_id")
    @staticmethod
    def _validate_package_id(value: str) -> str:
        normalized = (value or "").strip().lower()
        if not normalized:
            raise ValueError("package_id is required")
        return normalized

    @field_validator("promo_code")
    @staticmethod
    def _normalize_promo(value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().upper()
        return normalized or None


class StripeCheckoutOut(BaseModel):
    checkout_session_id: str
    checkout_url: str
    package_id: str
    credits: int
    currency: str
    amount: int
    discount_amount: int = 0
