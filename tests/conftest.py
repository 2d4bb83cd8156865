from datetime import datetime, timezone

import pytest

from pipenotify import create_app
from pipenotify.chat_client import ChatResponse
from pipenotify.config import TestConfig
from pipenotify.dispatch import NotificationDispatcher
from pipenotify.events import Event
from pipenotify.extensions import db
from pipenotify.models import Rule, Tenant, Webhook

WEBHOOK_URL = "https://chat.googleapis.com/v1/spaces/AAA/messages?key=k&token=t"


class RecordingQueue:
    def __init__(self):
        self.events = []
        self.deliveries = []

    def enqueue_event(self, tenant_id, event):
        self.events.append((tenant_id, event))

    def enqueue_delivery(self, payload, countdown=0):
        self.deliveries.append(payload)


class ScriptedChatClient:
    """Answers with queued status codes (or raises queued exceptions); 200 once the script runs out."""

    def __init__(self):
        self.script = []
        self.calls = []

    def post_message(self, url, body):
        self.calls.append((url, body))
        step = self.script.pop(0) if self.script else 200
        if isinstance(step, Exception):
            raise step
        return ChatResponse(status_code=step, latency_ms=12, body="" if step < 300 else "error")

    def test_webhook(self, url):
        return self.post_message(url, {"text": "test"})


@pytest.fixture
def app():
    app = create_app(TestConfig)
    handles = app.extensions["pipenotify"]
    handles.queue = RecordingQueue()
    handles.chat_client = ScriptedChatClient()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def queue(app):
    return app.extensions["pipenotify"].queue


@pytest.fixture
def chat(app):
    return app.extensions["pipenotify"].chat_client


@pytest.fixture
def dispatcher(app, session, chat, queue):
    return NotificationDispatcher(session, chat, queue, app.extensions["pipenotify"].settings)


@pytest.fixture
def tenant(session):
    tenant = Tenant(company_name="Acme", pipedrive_company_id=12345, plan_tier="pro",
                    api_domain="acme.pipedrive.com")
    session.add(tenant)
    session.commit()
    return tenant


@pytest.fixture
def webhook(session, tenant):
    webhook = Webhook(tenant_id=tenant.id, name="Sales room", webhook_url=WEBHOOK_URL)
    session.add(webhook)
    session.commit()
    return webhook


@pytest.fixture
def make_rule(session, tenant, webhook):
    def _make(event_type="deal.won", filters=None, priority=1, template_mode="simple", **extra):
        rule = Rule(
            tenant_id=extra.pop("tenant_id", tenant.id),
            name=extra.pop("name", f"{event_type} rule"),
            event_type=event_type,
            filters=filters or {},
            target_webhook_id=extra.pop("target_webhook_id", webhook.id),
            template_mode=template_mode,
            priority=priority,
            **extra,
        )
        session.add(rule)
        session.commit()
        return rule

    return _make


@pytest.fixture
def make_event():
    def _make(type="deal.won", fields=None, previous=None, company_id=12345, **extra):
        object_type, action = type.split(".", 1)
        return Event(
            type=type,
            object_type=object_type,
            action=action,
            company_id=company_id,
            object_id=extra.pop("object_id", 101),
            fields={"id": 101, "title": "Acme renewal", **(fields or {})},
            previous=previous or {},
            timestamp=extra.pop("timestamp", datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)),
            host=extra.pop("host", "acme.pipedrive.com"),
            **extra,
        )

    return _make
