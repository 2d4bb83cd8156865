# pipenotify/models.py
import enum
from datetime import datetime, timezone

from sqlalchemy.dialects.postgresql import JSONB

from .extensions import db

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = db.JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PlanTier(str, enum.Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    TEAM = "team"


class TemplateMode(str, enum.Enum):
    SIMPLE = "simple"
    COMPACT = "compact"
    DETAILED = "detailed"
    CUSTOM = "custom"


class LogStatus(str, enum.Enum):
    SUCCESS = "success"
    RETRYING = "retrying"
    FAILED = "failed"
    SKIPPED_QUOTA = "skipped_quota"


class DelayedStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(255), nullable=False)
    # one Pipedrive account maps to exactly one tenant
    pipedrive_company_id = db.Column(db.BigInteger, nullable=True, unique=True, index=True)
    pipedrive_user_id = db.Column(db.BigInteger, nullable=True)
    api_domain = db.Column(db.String(255), nullable=True)
    plan_tier = db.Column(db.String(20), nullable=False, default=PlanTier.FREE.value)
    subscription_status = db.Column(db.String(20), nullable=False, default="active")
    webhook_secret = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    webhooks = db.relationship("Webhook", back_populates="tenant", lazy="select")
    rules = db.relationship("Rule", back_populates="tenant", lazy="select")

    def __repr__(self):
        return f"<Tenant id={self.id} company={self.pipedrive_company_id} plan={self.plan_tier}>"


class Webhook(db.Model):
    __tablename__ = "chat_webhooks"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    webhook_url = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    consecutive_failures = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    tenant = db.relationship("Tenant", back_populates="webhooks")

    def __repr__(self):
        return f"<Webhook id={self.id} tenant={self.tenant_id} name={self.name!r} active={self.is_active}>"


class Rule(db.Model):
    __tablename__ = "rules"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    event_type = db.Column(db.String(100), nullable=False, index=True)
    filters = db.Column(JSONType, nullable=False, default=dict)
    target_webhook_id = db.Column(db.Integer, db.ForeignKey("chat_webhooks.id"), nullable=False)
    template_mode = db.Column(db.String(20), nullable=False, default=TemplateMode.SIMPLE.value)
    custom_template = db.Column(db.Text, nullable=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True, index=True)
    priority = db.Column(db.Integer, nullable=False, default=1)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    tenant = db.relationship("Tenant", back_populates="rules")
    target_webhook = db.relationship("Webhook")

    def __repr__(self):
        return f"<Rule id={self.id} tenant={self.tenant_id} event={self.event_type} priority={self.priority}>"


class DeliveryLog(db.Model):
    __tablename__ = "delivery_logs"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("rules.id", ondelete="SET NULL"), nullable=True, index=True)
    webhook_id = db.Column(db.Integer, db.ForeignKey("chat_webhooks.id", ondelete="SET NULL"), nullable=True)
    # one row per rule delivery; retries update the same row
    delivery_key = db.Column(db.String(64), nullable=False, unique=True)
    event_type = db.Column(db.String(100), nullable=True)
    payload = db.Column(JSONType, nullable=True)
    formatted_message = db.Column(JSONType, nullable=True)
    status = db.Column(db.String(20), nullable=False, index=True)
    error_message = db.Column(db.Text, nullable=True)
    response_code = db.Column(db.Integer, nullable=True)
    response_time_ms = db.Column(db.Integer, nullable=True)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<DeliveryLog id={self.id} rule={self.rule_id} status={self.status} attempts={self.attempt_count}>"


class QuietHoursConfig(db.Model):
    __tablename__ = "quiet_hours"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)
    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    start_time = db.Column(db.String(5), nullable=False, default="18:00")
    end_time = db.Column(db.String(5), nullable=False, default="09:00")
    weekends_enabled = db.Column(db.Boolean, nullable=False, default=True)
    holidays = db.Column(JSONType, nullable=False, default=list)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<QuietHoursConfig tenant={self.tenant_id} {self.start_time}-{self.end_time} {self.timezone}>"


class DelayedNotification(db.Model):
    __tablename__ = "delayed_notifications"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("rules.id", ondelete="SET NULL"), nullable=True)
    payload = db.Column(JSONType, nullable=False)
    scheduled_for = db.Column(db.DateTime, nullable=False, index=True)
    sent_at = db.Column(db.DateTime, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=DelayedStatus.PENDING.value, index=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<DelayedNotification id={self.id} tenant={self.tenant_id} status={self.status} at={self.scheduled_for}>"


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)
    monthly_notification_count = db.Column(db.Integer, nullable=False, default=0)
    period_start = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Subscription tenant={self.tenant_id} used={self.monthly_notification_count}>"
