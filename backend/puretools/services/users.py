# puretools/services/users.py
"""
User provisioning.

Responsibilities:
- JIT provisioning of users resolved from an identity token
- The signup welcome bonus, granted exactly once per user
- Explicit signup with an optional referral code
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from puretools.core.config import settings
from puretools.core.database import unit_of_work
from puretools.core.security import Identity
from puretools.models.credit import TransactionType
from puretools.models.user import User
from puretools.services.credits import CreditsService
from puretools.services.referral import ReferralResult, ReferralService

logger = logging.getLogger(__name__)

WELCOME_BONUS_DESCRIPTION = "Welcome bonus credits"
WELCOME_BONUS_KEY = "welcome-bonus"


class UserAlreadyExistsError(Exception):
    pass


@dataclass
class SignupResult:
    user: User
    referral: ReferralResult | None = None


def get_user_by_subject(db: Session, subject: str) -> Optional[User]:
    return db.query(User).filter(User.external_subject == subject).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def normalize_name(name: str | None, fallback: str | None) -> str | None:
    if name and name.strip():
        return name.strip()[:100]
    if fallback and "@" in fallback:
        local = fallback.split("@", 1)[0]
        if local:
            return local[:100]
    return None


def provision_user(db: Session, identity: Identity) -> User:
    """
    Create the user and grant the welcome bonus in one transaction.

    The bonus carries a fixed idempotency key, so a user can never hold more
    than one welcome BONUS row.
    """
    if not identity.subject:
        raise ValueError("subject is required")

    email = identity.email.strip().lower() if identity.email else None
    bonus = settings.WELCOME_BONUS_CREDITS

    with unit_of_work(db):
        user = User(
            external_subject=identity.subject,
            email=email,
            name=normalize_name(identity.name, email),
            credits=0,
        )
        db.add(user)
        db.flush()
        if bonus > 0:
            CreditsService(db).add_credits(
                user_id=user.id,
                amount=bonus,
                type=TransactionType.BONUS,
                description=WELCOME_BONUS_DESCRIPTION,
                idempotency_key=WELCOME_BONUS_KEY,
                commit=False,
            )
        user_id = user.id

    logger.info("Provisioned user id=%s subject=%s bonus=%s", user_id, identity.subject, bonus)
    return db.get(User, user_id)


def ensure_user(db: Session, identity: Identity) -> User:
    """
    Return the user for an identity, provisioning on first sight.

    Idempotent; a concurrent first request that wins the insert is picked up
    instead of failing.
    """
    user = get_user_by_subject(db, identity.subject)
    if user:
        return user

    if identity.email and get_user_by_email(db, identity.email):
        raise ValueError(
            f"A user with email {identity.email} already exists. "
            "Please contact support to link your accounts."
        )

    try:
        return provision_user(db, identity)
    except IntegrityError:
        user = get_user_by_subject(db, identity.subject)
        if user:
            return user
        raise


def register_user(db: Session, identity: Identity, *, referral_code: str | None = None) -> SignupResult:
    """
    Explicit signup. Creates the user (welcome bonus included), then applies the
    referral bonus when a valid code of another user is supplied.

    An unknown referral code does not block the signup; the result carries the
    referral outcome so the caller can report it.
    """
    if get_user_by_subject(db, identity.subject):
        raise UserAlreadyExistsError("User already exists")
    if identity.email and get_user_by_email(db, identity.email):
        raise UserAlreadyExistsError("Email already registered")

    try:
        user = provision_user(db, identity)
    except IntegrityError:
        raise UserAlreadyExistsError("User already exists")

    referral: ReferralResult | None = None
    if referral_code:
        referrals = ReferralService(db)
        referrer = referrals.find_user_by_code(referral_code)
        if referrer is None:
            logger.info("Signup with unknown referral code user_id=%s", user.id)
        else:
            referral = referrals.apply_bonus(referrer.id, user.id)
        db.refresh(user)

    return SignupResult(user=user, referral=referral)
