from __future__ import annotations

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from puretools.core.base import Base


class PromoCodeType(str, Enum):
    CREDITS = "credits"
    DISCOUNT_PERCENT = "discount_percent"
    DISCOUNT_FIXED = "discount_fixed"


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    # Stored upper-case; lookups normalise the input the same way.
    code = Column(String(64), unique=True, index=True, nullable=False)
    type = Column(String(30), nullable=False)
    value = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    min_purchase = Column(Integer, nullable=True)  # minor currency units
    is_active = Column(Boolean, nullable=False, server_default="true", default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, server_default="0", default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    redemptions = relationship(
        "PromoCodeRedemption",
        back_populates="promo_code",
        cascade="all, delete-orphan",
    )


class PromoCodeRedemption(Base):
    __tablename__ = "promo_code_redemptions"

    id = Column(Integer, primary_key=True, index=True)
    promo_code_id = Column(
        Integer,
        ForeignKey("promo_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    credits_awarded = Column(Integer, nullable=False, server_default="0", default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    promo_code = relationship("PromoCode", back_populates="redemptions")

    __table_args__ = (
        UniqueConstraint("promo_code_id", "user_id", name="uq_promo_code_redemptions_code_user"),
    )
