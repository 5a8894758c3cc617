from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str | None = None
    name: str | None = None
    credits: int
    referral_code: str | None = None
    created_at: datetime


class SignupIn(BaseModel):
    referral_code: str | None = None
    language: str = "en"

    @field_validator("referral_code")
    @staticmethod
    def _normalize_referral_code(value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().upper()
        return normalized or None


class SignupOut(BaseModel):
    user: UserOut
    referral_applied: bool
    referral_error: str | None = None
    referral_message: str | None = None
