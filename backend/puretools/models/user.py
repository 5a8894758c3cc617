# puretools/models/user.py
from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func

from puretools.core.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # Subject claim of the identity provider token. Stable across sessions.
    external_subject = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    name = Column(String(100), nullable=True)

    # Only CreditsService (and the promo/referral units of work built on it) may change this.
    credits = Column(Integer, nullable=False, server_default="0", default=0)
    referral_code = Column(String(32), unique=True, index=True, nullable=True)
    stripe_customer_id = Column(String(255), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )
