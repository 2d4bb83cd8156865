# pipenotify/queue.py
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class NotificationQueue:
    """Hands work to the Celery worker. Tests swap in a recording double."""

    def enqueue_event(self, tenant_id: int, event: Dict[str, Any]) -> None:
        from .tasks import process_event

        process_event.delay(tenant_id, event)
        logger.debug("Queued %s for tenant %s", event.get("type"), tenant_id)

    def enqueue_delivery(self, payload: Dict[str, Any], countdown: int = 0) -> None:
        from .tasks import deliver_notification

        deliver_notification.apply_async(args=[payload], countdown=countdown or None)
        logger.debug("Queued delivery %s for rule %s", payload.get("delivery_key"), payload.get("rule_id"))
