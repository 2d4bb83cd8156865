# pipenotify/dispatch.py
"""
The delivery state machine.

An event moves through ``queued -> matching -> rendering`` and then, per matched rule,
either ``deferred`` (quiet hours) or ``immediate_delivering``. A delivery ends as
``delivered``, ``failed_retryable`` (the Celery task retries it with exponential
backoff) or ``failed_permanent``. ``no_op`` and ``skipped_quota`` are terminal too.

Each delivery owns one DeliveryLog row, keyed by ``delivery_key`` and updated in
place on every attempt.
"""
import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, select, update

from . import store
from .chat_client import DeliveryOutcome, redact_url
from .errors import ChatTransportError
from .events import Event
from .matcher import RuleMatcher
from .models import DelayedNotification, DelayedStatus, DeliveryLog, LogStatus, Rule, Tenant, utcnow
from .quiet_hours import QuietHoursGate, as_utc
from .quota import check_quota, record_usage
from .templates import render

logger = logging.getLogger(__name__)


class DeliveryState(str, enum.Enum):
    QUEUED = "queued"
    MATCHING = "matching"
    RENDERING = "rendering"
    IMMEDIATE_DELIVERING = "immediate_delivering"
    DEFERRED = "deferred"
    DELIVERED = "delivered"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_PERMANENT = "failed_permanent"
    NO_OP = "no_op"
    SKIPPED_QUOTA = "skipped_quota"


@dataclass(frozen=True)
class DispatchSettings:
    max_attempts: int = 3
    retry_base_delay: int = 5
    retry_max_delay: int = 300
    failure_threshold: int = 3
    sweep_batch: int = 50
    claim_lease: int = 900

    @classmethod
    def from_config(cls, config) -> "DispatchSettings":
        return cls(
            max_attempts=config.get("MAX_DELIVERY_ATTEMPTS", 3),
            retry_base_delay=config.get("RETRY_BASE_DELAY", 5),
            retry_max_delay=config.get("RETRY_MAX_DELAY", 300),
            failure_threshold=config.get("WEBHOOK_FAILURE_THRESHOLD", 3),
            sweep_batch=config.get("DELAYED_SWEEP_BATCH", 50),
            claim_lease=config.get("DELAYED_CLAIM_LEASE", 900),
        )


@dataclass
class DeliveryResult:
    state: DeliveryState
    retry_in: Optional[int] = None
    response_code: Optional[int] = None


def _naive_utc(moment: datetime) -> datetime:
    return as_utc(moment).replace(tzinfo=None)


def new_delivery_key() -> str:
    return uuid.uuid4().hex


class NotificationDispatcher:
    def __init__(self, session, chat_client, queue, settings: DispatchSettings = None):
        self.session = session
        self.chat_client = chat_client
        self.queue = queue
        self.settings = settings or DispatchSettings()

    def backoff_delay(self, attempt: int) -> int:
        """Seconds to wait before retrying after failed attempt number ``attempt``."""
        delay = self.settings.retry_base_delay * (2 ** max(attempt - 1, 0))
        return min(delay, self.settings.retry_max_delay)

    # -- matching and scheduling -------------------------------------------------

    def process_event(self, tenant_id: int, event_data: Dict[str, Any],
                      now: datetime = None) -> List[Tuple[int, DeliveryState]]:
        """Match an event and schedule one delivery per matched rule, in priority order."""
        now = as_utc(now or datetime.now(timezone.utc))
        event = Event.from_dict(event_data)

        tenant = self.session.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("Dropping %s: tenant %s no longer exists", event.type, tenant_id)
            return []

        matched = RuleMatcher(self.session).match(tenant.id, event)
        if not matched:
            logger.info("No rules matched %s for tenant %s", event.type, tenant.id)
            return []

        quota = check_quota(self.session, tenant, _naive_utc(now))
        budget = quota.remaining
        decision = QuietHoursGate(self.session).should_defer_now(tenant.id, now)

        outcomes = []
        for rule in matched:
            if budget <= 0:
                self._skip_for_quota(tenant, rule, event, quota)
                outcomes.append((rule.id, DeliveryState.SKIPPED_QUOTA))
                continue
            budget -= 1

            if decision.defer:
                self._defer(tenant.id, rule, event, decision.next_allowed_at)
                outcomes.append((rule.id, DeliveryState.DEFERRED))
                continue

            self.queue.enqueue_delivery(self.build_delivery(tenant.id, rule, event))
            outcomes.append((rule.id, DeliveryState.IMMEDIATE_DELIVERING))

        self.session.commit()
        return outcomes

    def build_delivery(self, tenant_id: int, rule: Rule, event: Event,
                       delivery_key: str = None, delayed_id: int = None) -> Dict[str, Any]:
        message = render(rule.template_mode, event, rule.custom_template)
        return {
            "delivery_key": delivery_key or new_delivery_key(),
            "tenant_id": tenant_id,
            "rule_id": rule.id,
            "webhook_id": rule.target_webhook_id,
            "event_type": event.type,
            "event": event.to_dict(),
            "message": message.to_payload(),
            "delayed_id": delayed_id,
        }

    def _skip_for_quota(self, tenant: Tenant, rule: Rule, event: Event, quota) -> None:
        logger.warning(
            "Tenant %s over monthly quota (%d/%d), skipping rule %s",
            tenant.id, quota.used, quota.limit, rule.id,
        )
        self.session.add(DeliveryLog(
            tenant_id=tenant.id,
            rule_id=rule.id,
            webhook_id=rule.target_webhook_id,
            delivery_key=new_delivery_key(),
            event_type=event.type,
            payload=event.to_dict(),
            status=LogStatus.SKIPPED_QUOTA.value,
            error_message=f"Monthly notification quota reached ({quota.used}/{quota.limit}, {quota.plan_tier} plan)",
            attempt_count=0,
        ))

    def _defer(self, tenant_id: int, rule: Rule, event: Event, next_allowed_at: datetime) -> None:
        row = DelayedNotification(
            tenant_id=tenant_id,
            rule_id=rule.id,
            payload={
                "event": event.to_dict(),
                "rule_id": rule.id,
                "webhook_id": rule.target_webhook_id,
                "delivery_key": new_delivery_key(),
            },
            scheduled_for=_naive_utc(next_allowed_at),
            status=DelayedStatus.PENDING.value,
        )
        self.session.add(row)
        logger.info("Deferred rule %s for tenant %s until %s", rule.id, tenant_id, row.scheduled_for)

    # -- delivery ----------------------------------------------------------------

    def deliver(self, payload: Dict[str, Any], attempt: int = 1) -> DeliveryResult:
        """Make one delivery attempt and record it; the caller schedules any retry."""
        webhook = store.get_webhook_by_id(self.session, payload["webhook_id"])
        if webhook is None or not webhook.is_active:
            self._record(payload, attempt, LogStatus.FAILED, error="Webhook is missing or inactive")
            self._finish_delayed(payload, DelayedStatus.FAILED, "Webhook is missing or inactive")
            return DeliveryResult(DeliveryState.FAILED_PERMANENT)

        response = None
        try:
            response = self.chat_client.post_message(webhook.webhook_url, payload["message"])
            outcome = response.outcome
            error = None if outcome is DeliveryOutcome.SUCCESS else f"HTTP {response.status_code}: {response.body[:500]}"
        except ChatTransportError as exc:
            outcome = DeliveryOutcome.RETRYABLE
            error = exc.message

        timing = {
            "response_code": response.status_code if response else None,
            "response_time_ms": response.latency_ms if response else None,
        }

        if outcome is DeliveryOutcome.SUCCESS:
            self._record(payload, attempt, LogStatus.SUCCESS, **timing)
            webhook.consecutive_failures = 0
            self._finish_delayed(payload, DelayedStatus.SENT)
            self.session.commit()
            record_usage(self.session, payload["tenant_id"])
            logger.info("Delivered rule %s to webhook %s on attempt %d", payload["rule_id"], webhook.id, attempt)
            return DeliveryResult(DeliveryState.DELIVERED, response_code=timing["response_code"])

        if outcome is DeliveryOutcome.RETRYABLE and attempt < self.settings.max_attempts:
            retry_in = self.backoff_delay(attempt)
            self._record(payload, attempt, LogStatus.RETRYING, error=error, **timing)
            logger.warning(
                "Delivery %s to %s failed (%s), retry %d/%d in %ss",
                payload["delivery_key"], redact_url(webhook.webhook_url), error,
                attempt, self.settings.max_attempts - 1, retry_in,
            )
            return DeliveryResult(DeliveryState.FAILED_RETRYABLE, retry_in=retry_in,
                                  response_code=timing["response_code"])

        self._record(payload, attempt, LogStatus.FAILED, error=error, **timing)
        self._finish_delayed(payload, DelayedStatus.FAILED, error)
        webhook.consecutive_failures = (webhook.consecutive_failures or 0) + 1
        if webhook.consecutive_failures >= self.settings.failure_threshold and webhook.is_active:
            webhook.is_active = False
            logger.warning(
                "Deactivating webhook %s after %d consecutive failed deliveries",
                webhook.id, webhook.consecutive_failures,
            )
        self.session.commit()
        logger.error("Delivery %s failed permanently after %d attempts: %s", payload["delivery_key"], attempt, error)
        return DeliveryResult(DeliveryState.FAILED_PERMANENT, response_code=timing["response_code"])

    def _record(self, payload: Dict[str, Any], attempt: int, status: LogStatus, error: str = None,
                response_code: int = None, response_time_ms: int = None):
        rule_id = payload.get("rule_id")
        if rule_id is not None and store.get_rule_by_id(self.session, rule_id) is None:
            rule_id = None
        return store.record_delivery_attempt(
            self.session,
            payload["delivery_key"],
            attempt,
            tenant_id=payload["tenant_id"],
            rule_id=rule_id,
            webhook_id=payload["webhook_id"],
            event_type=payload.get("event_type"),
            payload=payload.get("event"),
            formatted_message=payload.get("message"),
            status=status.value,
            error_message=error,
            response_code=response_code,
            response_time_ms=response_time_ms,
        )

    def _finish_delayed(self, payload: Dict[str, Any], status: DelayedStatus, error: str = None) -> None:
        delayed_id = payload.get("delayed_id")
        if not delayed_id:
            return
        row = self.session.get(DelayedNotification, delayed_id)
        if row is None:
            return
        row.status = status.value
        row.error_message = error
        if status is DelayedStatus.SENT:
            row.sent_at = utcnow()
        self.session.commit()

    # -- delayed notifications ---------------------------------------------------

    def _claimable(self, now: datetime):
        """Pending rows, plus processing rows whose claim outlived the lease."""
        lease_expired = _naive_utc(now - timedelta(seconds=self.settings.claim_lease))
        return or_(
            DelayedNotification.status == DelayedStatus.PENDING.value,
            and_(
                DelayedNotification.status == DelayedStatus.PROCESSING.value,
                DelayedNotification.claimed_at <= lease_expired,
            ),
        )

    def claim_delayed(self, delayed_id: int, now: datetime) -> bool:
        """Atomically move a claimable row to processing; False if someone else got it first."""
        now = as_utc(now)
        result = self.session.execute(
            update(DelayedNotification)
            .where(DelayedNotification.id == delayed_id, self._claimable(now))
            .values(status=DelayedStatus.PROCESSING.value, claimed_at=_naive_utc(now))
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    def _release(self, row: DelayedNotification) -> None:
        row.status = DelayedStatus.PENDING.value
        row.claimed_at = None
        self.session.commit()

    def sweep_delayed(self, now: datetime = None) -> Dict[str, int]:
        """Promote due delayed notifications whose tenant is no longer in a quiet period."""
        now = as_utc(now or datetime.now(timezone.utc))
        counts = {"promoted": 0, "rescheduled": 0, "cancelled": 0, "skipped": 0, "errors": 0}

        due_ids = list(self.session.execute(
            select(DelayedNotification.id)
            .where(self._claimable(now), DelayedNotification.scheduled_for <= _naive_utc(now))
            .order_by(DelayedNotification.scheduled_for, DelayedNotification.id)
            .limit(self.settings.sweep_batch)
        ).scalars())

        gate = QuietHoursGate(self.session)
        for delayed_id in due_ids:
            if not self.claim_delayed(delayed_id, now):
                counts["skipped"] += 1
                continue

            row = self.session.get(DelayedNotification, delayed_id)
            self.session.refresh(row)

            decision = gate.should_defer_now(row.tenant_id, now)
            if decision.defer:
                row.scheduled_for = _naive_utc(decision.next_allowed_at)
                self._release(row)
                counts["rescheduled"] += 1
                continue

            rule = store.get_rule_by_id(self.session, row.rule_id) if row.rule_id else None
            if rule is None or not rule.enabled:
                row.status = DelayedStatus.CANCELLED.value
                row.error_message = "Rule was deleted or disabled while the notification was delayed"
                self.session.commit()
                counts["cancelled"] += 1
                continue

            try:
                event = Event.from_dict(row.payload["event"])
                delivery = self.build_delivery(
                    row.tenant_id, rule, event,
                    delivery_key=row.payload.get("delivery_key"), delayed_id=row.id,
                )
                self.queue.enqueue_delivery(delivery)
            except Exception:
                # back to pending so the next sweep picks it up again
                logger.exception("Could not promote delayed notification %s", row.id)
                self.session.rollback()
                self._release(row)
                counts["errors"] += 1
                continue
            counts["promoted"] += 1

        if due_ids:
            logger.info("Delayed sweep: %s", counts)
        return counts
