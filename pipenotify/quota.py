# pipenotify/quota.py
"""Monthly notification quotas and log retention windows per plan tier."""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .models import PlanTier, Subscription, Tenant, utcnow

logger = logging.getLogger(__name__)

PLAN_LIMITS = {
    PlanTier.FREE.value: {"notifications": 100, "log_retention_days": 7},
    PlanTier.STARTER.value: {"notifications": 1000, "log_retention_days": 30},
    PlanTier.PRO.value: {"notifications": 10000, "log_retention_days": 90},
    PlanTier.TEAM.value: {"notifications": 999999, "log_retention_days": 365},
}


def plan_limits(plan_tier: str) -> dict:
    return PLAN_LIMITS.get(plan_tier or PlanTier.FREE.value, PLAN_LIMITS[PlanTier.FREE.value])


def retention_days(plan_tier: str) -> int:
    return plan_limits(plan_tier)["log_retention_days"]


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0, tzinfo=None)


@dataclass
class QuotaStatus:
    plan_tier: str
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @property
    def allowed(self) -> bool:
        return self.used < self.limit


def get_subscription(session: Session, tenant_id: int, now: datetime = None) -> Subscription:
    """The tenant's usage counter, created on first use and reset when a new month starts."""
    now = now or utcnow()
    sub = session.execute(
        select(Subscription).where(Subscription.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if sub is None:
        sub = Subscription(tenant_id=tenant_id, monthly_notification_count=0, period_start=month_start(now))
        session.add(sub)
        session.commit()
        return sub

    if sub.period_start is None or month_start(sub.period_start) < month_start(now):
        logger.info(
            "Resetting monthly notification count for tenant %s (was %s)",
            tenant_id, sub.monthly_notification_count,
        )
        sub.monthly_notification_count = 0
        sub.period_start = month_start(now)
        session.commit()
    return sub


def check_quota(session: Session, tenant: Tenant, now: datetime = None) -> QuotaStatus:
    sub = get_subscription(session, tenant.id, now)
    return QuotaStatus(
        plan_tier=tenant.plan_tier,
        used=sub.monthly_notification_count or 0,
        limit=plan_limits(tenant.plan_tier)["notifications"],
    )


def record_usage(session: Session, tenant_id: int, count: int = 1, now: datetime = None) -> None:
    get_subscription(session, tenant_id, now)
    # single UPDATE so concurrent delivery tasks don't lose increments
    session.execute(
        update(Subscription)
        .where(Subscription.tenant_id == tenant_id)
        .values(
            monthly_notification_count=Subscription.monthly_notification_count + count,
            updated_at=utcnow(),
        )
    )
    session.commit()
