from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from puretools.core.database import unit_of_work
from puretools.core.errors import CreditErrorCode
from puretools.models.credit import CreditTransaction, TransactionType, UsageLog
from puretools.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    success: bool
    new_balance: int
    error: CreditErrorCode | None = None
    duplicate: bool = False
    transaction_id: int | None = None


@dataclass
class BalanceSummary:
    balance: int
    total_purchased: int
    total_bonus: int
    total_used: int
    total_refunded: int


@dataclass
class TransactionPage:
    items: list[CreditTransaction]
    total: int


@dataclass
class DailyUsage:
    date: str
    credits: int


@dataclass
class UsageStats:
    total_credits_used: int
    by_tool: dict[str, int] = field(default_factory=dict)
    daily: list[DailyUsage] = field(default_factory=list)


class CreditsService:
    """
    Ledger primitives. users.credits is the running balance and every change to
    it is paired with one credit_transactions row in the same transaction, so
    the balance always equals the sum of the user's transaction amounts.

    Business rejections come back as LedgerResult(success=False, error=...);
    storage failures propagate.
    """

    MAX_PAGE_SIZE = 100

    def __init__(self, db: Session):
        self.db = db

    # --- Reads ---

    def get_balance(self, user_id: int) -> int:
        balance = self.db.query(User.credits).filter(User.id == user_id).scalar()
        return int(balance or 0)

    def has_enough_credits(self, user_id: int, amount: int) -> bool:
        balance = self.db.query(User.credits).filter(User.id == user_id).scalar()
        if balance is None:
            return False
        return int(balance) >= amount

    def get_balance_summary(self, user_id: int) -> BalanceSummary:
        rows = (
            self.db.query(CreditTransaction.type, func.coalesce(func.sum(CreditTransaction.amount), 0))
            .filter(CreditTransaction.user_id == user_id)
            .group_by(CreditTransaction.type)
            .all()
        )
        totals = {row_type: int(total or 0) for row_type, total in rows}
        return BalanceSummary(
            balance=self.get_balance(user_id),
            total_purchased=totals.get(TransactionType.PURCHASE.value, 0),
            total_bonus=totals.get(TransactionType.BONUS.value, 0),
            total_used=abs(totals.get(TransactionType.USAGE.value, 0)),
            total_refunded=totals.get(TransactionType.REFUND.value, 0),
        )

    def list_transactions(self, user_id: int, *, limit: int = 20, offset: int = 0) -> TransactionPage:
        normalized_limit = max(1, min(int(limit or 20), self.MAX_PAGE_SIZE))
        normalized_offset = max(0, int(offset or 0))
        base = self.db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id)
        items = (
            base.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset(normalized_offset)
            .limit(normalized_limit)
            .all()
        )
        return TransactionPage(items=items, total=base.count())

    def get_usage_stats(self, user_id: int, *, days: int = 30) -> UsageStats:
        since = datetime.now(timezone.utc) - timedelta(days=max(1, int(days)))
        rows = (
            self.db.query(UsageLog.tool_type, UsageLog.credits, UsageLog.created_at)
            .filter(UsageLog.user_id == user_id, UsageLog.created_at >= since)
            .all()
        )

        by_tool: dict[str, int] = defaultdict(int)
        by_day: dict[str, int] = defaultdict(int)
        for tool_type, credits, created_at in rows:
            by_tool[tool_type] += credits
            by_day[created_at.date().isoformat()] += credits

        return UsageStats(
            total_credits_used=sum(by_tool.values()),
            by_tool=dict(by_tool),
            daily=[DailyUsage(date=day, credits=by_day[day]) for day in sorted(by_day)],
        )

    def _find_by_idempotency(self, user_id: int, key: str) -> CreditTransaction | None:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.user_id == user_id, CreditTransaction.idempotency_key == key)
            .first()
        )

    # --- Writes ---

    def use_credits(
        self,
        *,
        user_id: int,
        amount: int,
        tool_type: str,
        description: str,
        input_size: int | None = None,
        output_size: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerResult:
        if amount <= 0:
            return LedgerResult(False, self.get_balance(user_id), CreditErrorCode.INVALID_AMOUNT)

        with unit_of_work(self.db):
            # Check and decrement in one statement; a concurrent debit cannot slip between them.
            debited = self.db.execute(
                update(User)
                .where(User.id == user_id, User.credits >= amount)
                .values(credits=User.credits - amount)
                .execution_options(synchronize_session=False)
            )
            if debited.rowcount != 1:
                logger.info(
                    "Debit rejected user_id=%s amount=%s tool=%s (insufficient balance)",
                    user_id,
                    amount,
                    tool_type,
                )
                return LedgerResult(False, self.get_balance(user_id), CreditErrorCode.INSUFFICIENT_BALANCE)

            entry = CreditTransaction(
                user_id=user_id,
                type=TransactionType.USAGE.value,
                amount=-amount,
                description=description,
                details=metadata,
            )
            self.db.add(entry)
            self.db.add(
                UsageLog(
                    user_id=user_id,
                    tool_type=tool_type,
                    input_size=input_size,
                    output_size=output_size,
                    credits=amount,
                    details=metadata,
                )
            )
            self.db.flush()
            entry_id = entry.id

        return LedgerResult(True, self.get_balance(user_id), transaction_id=entry_id)

    def add_credits(
        self,
        *,
        user_id: int,
        amount: int,
        type: TransactionType,
        description: str,
        metadata: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        commit: bool = True,
    ) -> LedgerResult:
        """
        Credit a user's balance and append the matching transaction.

        With commit=False the writes are only flushed so callers can compose
        several ledger changes into their own unit of work.
        """
        if amount <= 0:
            return LedgerResult(False, self.get_balance(user_id), CreditErrorCode.INVALID_AMOUNT)

        normalized_key = idempotency_key.strip() if isinstance(idempotency_key, str) and idempotency_key.strip() else None
        if normalized_key:
            existing = self._find_by_idempotency(user_id, normalized_key)
            if existing:
                return LedgerResult(True, self.get_balance(user_id), duplicate=True, transaction_id=existing.id)

        if not commit:
            return self._stage_credit(user_id, amount, TransactionType(type), description, metadata, normalized_key)

        try:
            with unit_of_work(self.db):
                result = self._stage_credit(user_id, amount, TransactionType(type), description, metadata, normalized_key)
                if not result.success:
                    return result
        except IntegrityError:
            # Lost a race on (user_id, idempotency_key): the other writer already credited.
            if normalized_key:
                existing = self._find_by_idempotency(user_id, normalized_key)
                if existing:
                    return LedgerResult(True, self.get_balance(user_id), duplicate=True, transaction_id=existing.id)
            raise

        result.new_balance = self.get_balance(user_id)
        return result

    def _stage_credit(
        self,
        user_id: int,
        amount: int,
        type: TransactionType,
        description: str,
        metadata: dict[str, Any] | None,
        idempotency_key: str | None,
    ) -> LedgerResult:
        credited = self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits=User.credits + amount)
            .execution_options(synchronize_session=False)
        )
        if credited.rowcount != 1:
            return LedgerResult(False, 0, CreditErrorCode.UNKNOWN_USER)

        entry = CreditTransaction(
            user_id=user_id,
            type=type.value,
            amount=amount,
            description=description,
            details=metadata,
            idempotency_key=idempotency_key,
        )
        self.db.add(entry)
        self.db.flush()
        return LedgerResult(True, self.get_balance(user_id), transaction_id=entry.id)
