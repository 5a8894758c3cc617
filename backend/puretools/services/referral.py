from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from puretools.core.config import settings
from puretools.core.database import unit_of_work
from puretools.core.errors import CreditErrorCode, LedgerRejected
from puretools.models.credit import TransactionType
from puretools.models.referral import Referral, ReferralStatus
from puretools.models.user import User
from puretools.services.credits import CreditsService

logger = logging.getLogger(__name__)

REFERRAL_CODE_PREFIX = "PT"
REFERRAL_CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 5
_CODE_ALPHABET = string.ascii_uppercase + string.digits


class ReferralCodeGenerationError(RuntimeError):
    code = CreditErrorCode.CODE_GENERATION_EXHAUSTED


@dataclass
class ReferralResult:
    success: bool
    error: CreditErrorCode | None = None
    bonus_credits: int = 0


@dataclass
class ReferralEntry:
    id: int
    status: str
    credits_earned: int
    referred_at: datetime
    referred_name: str | None


@dataclass
class ReferralStats:
    referral_code: str | None
    total_referrals: int
    successful_referrals: int
    total_credits_earned: int
    referrals: list[ReferralEntry] = field(default_factory=list)


def generate_referral_code() -> str:
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))
    return f"{REFERRAL_CODE_PREFIX}{suffix}"


class ReferralService:
    def __init__(
        self,
        db: Session,
        *,
        credits_service: CreditsService | None = None,
        code_generator: Callable[[], str] | None = None,
        bonus_credits: int | None = None,
    ):
        self.db = db
        self.credits = credits_service or CreditsService(db)
        self.generate_code = code_generator or generate_referral_code
        self.bonus_credits = bonus_credits if bonus_credits is not None else settings.REFERRAL_BONUS_CREDITS

    def find_user_by_code(self, code: str | None) -> User | None:
        normalized = (code or "").strip().upper()
        if not normalized:
            return None
        return self.db.query(User).filter(User.referral_code == normalized).first()

    def get_or_create_code(self, user_id: int) -> str:
        """
        Return the user's referral code, assigning one on first use.

        Collisions with another user's code are retried with a fresh code; after
        MAX_CODE_ATTEMPTS failures ReferralCodeGenerationError is raised.
        """
        user = self.db.get(User, user_id)
        if user is None:
            raise ValueError("User not found")
        if user.referral_code:
            return user.referral_code

        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            candidate = self.generate_code()
            try:
                with unit_of_work(self.db):
                    user = self.db.get(User, user_id)
                    user.referral_code = candidate
                    self.db.flush()
            except IntegrityError:
                logger.warning("Referral code collision user_id=%s attempt=%s", user_id, attempt)
                continue
            return candidate

        logger.error("Referral code generation exhausted user_id=%s", user_id)
        raise ReferralCodeGenerationError("Failed to generate unique referral code")

    def apply_bonus(self, referrer_id: int, referred_id: int) -> ReferralResult:
        if referrer_id == referred_id:
            return ReferralResult(False, CreditErrorCode.SELF_REFERRAL)

        already = self.db.query(Referral.id).filter(Referral.referred_id == referred_id).first()
        if already is not None:
            return ReferralResult(False, CreditErrorCode.ALREADY_REFERRED)

        found = self.db.query(User.id).filter(User.id.in_([referrer_id, referred_id])).count()
        if found != 2:
            return ReferralResult(False, CreditErrorCode.UNKNOWN_USER)

        bonus = self.bonus_credits
        try:
            with unit_of_work(self.db):
                self.db.add(
                    Referral(
                        referrer_id=referrer_id,
                        referred_id=referred_id,
                        bonus_credits=bonus,
                        status=ReferralStatus.COMPLETED.value,
                        completed_at=datetime.now(timezone.utc),
                    )
                )
                self.db.flush()
                metadata = {"referrer_id": referrer_id, "referred_id": referred_id}
                for user_id, description in (
                    (referrer_id, "Referral bonus - friend signed up"),
                    (referred_id, "Referral bonus - signed up with referral"),
                ):
                    ledger = self.credits.add_credits(
                        user_id=user_id,
                        amount=bonus,
                        type=TransactionType.BONUS,
                        description=description,
                        metadata=metadata,
                        commit=False,
                    )
                    if not ledger.success:
                        raise LedgerRejected(ledger.error)
        except IntegrityError:
            logger.info("Referral raced referrer_id=%s referred_id=%s", referrer_id, referred_id)
            return ReferralResult(False, CreditErrorCode.ALREADY_REFERRED)
        except LedgerRejected as exc:
            logger.warning(
                "Referral bonus rejected referrer_id=%s referred_id=%s error=%s",
                referrer_id,
                referred_id,
                exc.code.value if exc.code else None,
            )
            return ReferralResult(False, exc.code)

        logger.info("Referral bonus applied referrer_id=%s referred_id=%s bonus=%s", referrer_id, referred_id, bonus)
        return ReferralResult(True, bonus_credits=bonus)

    def get_stats(self, user_id: int) -> ReferralStats:
        referral_code = self.db.query(User.referral_code).filter(User.id == user_id).scalar()
        rows = (
            self.db.query(Referral, User.name)
            .join(User, User.id == Referral.referred_id)
            .filter(Referral.referrer_id == user_id)
            .order_by(Referral.created_at.desc(), Referral.id.desc())
            .all()
        )

        completed = [referral for referral, _ in rows if referral.status == ReferralStatus.COMPLETED.value]
        return ReferralStats(
            referral_code=referral_code,
            total_referrals=len(rows),
            successful_referrals=len(completed),
            total_credits_earned=sum(r.bonus_credits for r in completed),
            referrals=[
                ReferralEntry(
                    id=referral.id,
                    status=referral.status,
                    credits_earned=referral.bonus_credits,
                    referred_at=referral.created_at,
                    referred_name=name,
                )
                for referral, name in rows
            ],
        )
