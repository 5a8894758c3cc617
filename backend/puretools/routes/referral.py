from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from puretools.core.config import settings
from puretools.core.database import get_db
from puretools.core.http_errors import credit_error
from puretools.dependencies.auth import get_current_user
from puretools.models.user import User
from puretools.schemas.referral import ReferralCodeOut, ReferralEntryOut, ReferralStatsOut
from puretools.services.referral import ReferralCodeGenerationError, ReferralService

router = APIRouter(prefix="/referral", tags=["referral"])


def referral_link(code: str) -> str:
    return f"{settings.PUBLIC_SITE_URL}?ref={code}"


@router.get("/code", response_model=ReferralCodeOut)
def get_referral_code(
    language: str = Query("en"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ReferralCodeOut:
    service = ReferralService(db)
    try:
        code = service.get_or_create_code(user.id)
    except ReferralCodeGenerationError as exc:
        raise credit_error(exc.code, language) from exc
    return ReferralCodeOut(
        referral_code=code,
        referral_link=referral_link(code),
        bonus_credits=service.bonus_credits,
    )


@router.get("/stats", response_model=ReferralStatsOut)
def get_referral_stats(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ReferralStatsOut:
    stats = ReferralService(db).get_stats(user.id)
    return ReferralStatsOut(
        referral_code=stats.referral_code,
        total_referrals=stats.total_referrals,
        successful_referrals=stats.successful_referrals,
        total_credits_earned=stats.total_credits_earned,
        referrals=[
            ReferralEntryOut(
                id=entry.id,
                status=entry.status,
                credits_earned=entry.credits_earned,
                referred_at=entry.referred_at,
                referred_name=entry.referred_name,
            )
            for entry in stats.referrals
        ],
    )
