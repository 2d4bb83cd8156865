# pipenotify/retention.py
import logging
from datetime import datetime, timedelta
from typing import Dict

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from .models import DelayedNotification, DelayedStatus, DeliveryLog, PlanTier, Tenant, utcnow
from .quota import retention_days

logger = logging.getLogger(__name__)

FINISHED_DELAYED = (DelayedStatus.SENT.value, DelayedStatus.FAILED.value, DelayedStatus.CANCELLED.value)


def purge_expired_logs(session: Session, now: datetime = None, dry_run: bool = False) -> Dict[str, int]:
    """
    Delete delivery logs and finished delayed notifications older than each tenant's
    plan retention window. Returns counts per table; with ``dry_run`` nothing is deleted.
    """
    now = now or utcnow()
    totals = {"delivery_logs": 0, "delayed_notifications": 0}

    for tier in PlanTier:
        cutoff = now - timedelta(days=retention_days(tier.value))
        tenant_ids = select(Tenant.id).where(Tenant.plan_tier == tier.value)

        log_filter = (DeliveryLog.tenant_id.in_(tenant_ids), DeliveryLog.created_at < cutoff)
        delayed_filter = (
            DelayedNotification.tenant_id.in_(tenant_ids),
            DelayedNotification.created_at < cutoff,
            DelayedNotification.status.in_(FINISHED_DELAYED),
        )

        if dry_run:
            logs = session.execute(select(func.count()).select_from(DeliveryLog).where(*log_filter)).scalar_one()
            delayed = session.execute(
                select(func.count()).select_from(DelayedNotification).where(*delayed_filter)
            ).scalar_one()
        else:
            logs = session.execute(
                delete(DeliveryLog).where(*log_filter).execution_options(synchronize_session=False)
            ).rowcount
            delayed = session.execute(
                delete(DelayedNotification).where(*delayed_filter).execution_options(synchronize_session=False)
            ).rowcount

        if logs or delayed:
            logger.info(
                "%s %d logs and %d delayed notifications for %s plan (older than %s)",
                "Would purge" if dry_run else "Purged", logs, delayed, tier.value, cutoff.date(),
            )
        totals["delivery_logs"] += logs
        totals["delayed_notifications"] += delayed

    if not dry_run:
        session.commit()
    return totals
