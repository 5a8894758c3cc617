from __future__ import annotations

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from puretools.core.base import Base


class TransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    BONUS = "BONUS"
    USAGE = "USAGE"
    REFUND = "REFUND"


class CreditTransaction(Base):
    """Append-only ledger row. The sum of a user's amounts equals users.credits."""

    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    # "metadata" is reserved on declarative classes.
    details = Column("metadata", JSON, nullable=True)
    idempotency_key = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    user = relationship("User", backref="credit_transactions")

    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_credit_transactions_user_idempotency"),
    )


class UsageLog(Base):
    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tool_type = Column(String(50), nullable=False)
    input_size = Column(Integer, nullable=True)
    output_size = Column(Integer, nullable=True)
    credits = Column(Integer, nullable=False)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    user = relationship("User", backref="usage_logs")
