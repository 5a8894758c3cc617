from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from puretools.core.database import get_db
from puretools.core.packages import CREDIT_PACKAGES, format_price
from puretools.dependencies.auth import get_current_user
from puretools.models.user import User
from puretools.schemas.billing import (
    CreditPackageOut,
    CreditsBalanceOut,
    CreditTransactionOut,
    CreditTransactionPageOut,
    DailyUsageOut,
    UsageStatsOut,
)
from puretools.services.credits import CreditsService

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/credits/balance", response_model=CreditsBalanceOut)
def get_credit_balance(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> CreditsBalanceOut:
    summary = CreditsService(db).get_balance_summary(user.id)
    return CreditsBalanceOut(
        balance=summary.balance,
        total_purchased=summary.total_purchased,
        total_bonus=summary.total_bonus,
        total_used=summary.total_used,
        total_refunded=summary.total_refunded,
        as_of=datetime.now(timezone.utc),
    )


@router.get("/credits/transactions", response_model=CreditTransactionPageOut)
def list_credit_transactions(
    limit: int = Query(20, ge=1, le=CreditsService.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> CreditTransactionPageOut:
    page = CreditsService(db).list_transactions(user.id, limit=limit, offset=offset)
    return CreditTransactionPageOut(
        transactions=[
            CreditTransactionOut(
                id=entry.id,
                type=entry.type,
                amount=entry.amount,
                description=entry.description,
                metadata=entry.details,
                created_at=entry.created_at,
            )
            for entry in page.items
        ],
        total=page.total,
        limit=limit,
        offset=offset,
    )


@router.get("/usage", response_model=UsageStatsOut)
def get_usage_stats(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> UsageStatsOut:
    stats = CreditsService(db).get_usage_stats(user.id, days=days)
    return UsageStatsOut(
        days=days,
        total_credits_used=stats.total_credits_used,
        by_tool=stats.by_tool,
        daily=[DailyUsageOut(date=day.date, credits=day.credits) for day in stats.daily],
    )


@router.get("/packages", response_model=list[CreditPackageOut])
def list_credit_packages() -> list[CreditPackageOut]:
    return [
        CreditPackageOut(
            id=pkg.id,
            name=pkg.name,
            credits=pkg.credits,
            price=pkg.price,
            currency=pkg.currency,
            popular=pkg.popular,
            display_price=format_price(pkg.price, pkg.currency),
        )
        for pkg in CREDIT_PACKAGES
    ]
