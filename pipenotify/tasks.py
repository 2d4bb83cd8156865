# pipenotify/tasks.py
import logging

from celery import shared_task
from flask import current_app

from .dispatch import DeliveryState, NotificationDispatcher
from .extensions import db
from .retention import purge_expired_logs

logger = logging.getLogger(__name__)


def _dispatcher() -> NotificationDispatcher:
    handles = current_app.extensions["pipenotify"]
    return NotificationDispatcher(db.session, handles.chat_client, handles.queue, handles.settings)


@shared_task(name="pipenotify.process_event")
def process_event(tenant_id, event):
    """Match one normalized event and fan out a delivery task per matched rule."""
    outcomes = _dispatcher().process_event(tenant_id, event)
    return [[rule_id, state.value] for rule_id, state in outcomes]


@shared_task(bind=True, name="pipenotify.deliver_notification")
def deliver_notification(self, payload):
    dispatcher = _dispatcher()
    attempt = self.request.retries + 1
    result = dispatcher.deliver(payload, attempt=attempt)
    if result.state is DeliveryState.FAILED_RETRYABLE:
        raise self.retry(countdown=result.retry_in, max_retries=dispatcher.settings.max_attempts - 1)
    return result.state.value


@shared_task(name="pipenotify.sweep_delayed_notifications")
def sweep_delayed_notifications():
    return _dispatcher().sweep_delayed()


@shared_task(name="pipenotify.purge_delivery_logs")
def purge_delivery_logs():
    totals = purge_expired_logs(db.session)
    logger.info("Log retention purge finished: %s", totals)
    return totals
