from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ReferralCodeOut(BaseModel):
    referral_code: str
    referral_link: str
    bonus_credits: int


class ReferralEntryOut(BaseModel):
    id: int
    status: str
    credits_earned: int
    referred_at: datetime
    referred_name: str | None = None


class ReferralStatsOut(BaseModel):
    referral_code: str | None
    total_referrals: int
    successful_referrals: int
    total_credits_earned: int
    referrals: list[ReferralEntryOut]
