from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from puretools.celery_app import celery_app
from puretools.core.config import settings
from puretools.core.database import SessionLocal, unit_of_work
from puretools.models.credit import UsageLog


logger = logging.getLogger(__name__)


def prune_usage_logs_before(db: Session, cutoff: datetime) -> int:
    """Delete usage log rows older than `cutoff`. Ledger rows are never pruned."""
    with unit_of_work(db):
        deleted = (
            db.query(UsageLog)
            .filter(UsageLog.created_at < cutoff)
            .delete(synchronize_session=False)
        )
    return int(deleted or 0)


@celery_app.task(name="maintenance.prune_usage_logs")
def prune_usage_logs(retention_days: int | None = None) -> int:
    days = retention_days if retention_days is not None else settings.USAGE_LOG_RETENTION_DAYS
    if days <= 0:
        logger.info("Usage log retention disabled (days=%s)", days)
        return 0

    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    db = SessionLocal()
    try:
        deleted = prune_usage_logs_before(db, cutoff)
    finally:
        db.close()
    logger.info("Pruned %s usage log rows older than %s", deleted, cutoff.isoformat())
    return deleted
