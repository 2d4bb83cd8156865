"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("pipedrive_company_id", sa.BigInteger(), nullable=True),
        sa.Column("pipedrive_user_id", sa.BigInteger(), nullable=True),
        sa.Column("api_domain", sa.String(length=255), nullable=True),
        sa.Column("plan_tier", sa.String(length=20), nullable=False),
        sa.Column("subscription_status", sa.String(length=20), nullable=False),
        sa.Column("webhook_secret", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_pipedrive_company_id", "tenants", ["pipedrive_company_id"], unique=True)

    op.create_table(
        "chat_webhooks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("webhook_url", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_chat_webhooks_tenant_id", "chat_webhooks", ["tenant_id"])

    op.create_table(
        "rules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("filters", JSONType, nullable=False),
        sa.Column("target_webhook_id", sa.Integer(), nullable=False),
        sa.Column("template_mode", sa.String(length=20), nullable=False),
        sa.Column("custom_template", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["target_webhook_id"], ["chat_webhooks.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rules_tenant_id", "rules", ["tenant_id"])
    op.create_index("ix_rules_event_type", "rules", ["event_type"])
    op.create_index("ix_rules_enabled", "rules", ["enabled"])

    op.create_table(
        "delivery_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=True),
        sa.Column("webhook_id", sa.Integer(), nullable=True),
        sa.Column("delivery_key", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=True),
        sa.Column("payload", JSONType, nullable=True),
        sa.Column("formatted_message", JSONType, nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["rule_id"], ["rules.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["webhook_id"], ["chat_webhooks.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("delivery_key"),
    )
    op.create_index("ix_delivery_logs_tenant_id", "delivery_logs", ["tenant_id"])
    op.create_index("ix_delivery_logs_rule_id", "delivery_logs", ["rule_id"])
    op.create_index("ix_delivery_logs_status", "delivery_logs", ["status"])
    op.create_index("ix_delivery_logs_created_at", "delivery_logs", ["created_at"])

    op.create_table(
        "quiet_hours",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("weekends_enabled", sa.Boolean(), nullable=False),
        sa.Column("holidays", JSONType, nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id"),
    )

    op.create_table(
        "delayed_notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=True),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("scheduled_for", sa.DateTime(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["rule_id"], ["rules.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delayed_notifications_tenant_id", "delayed_notifications", ["tenant_id"])
    op.create_index("ix_delayed_notifications_scheduled_for", "delayed_notifications", ["scheduled_for"])
    op.create_index("ix_delayed_notifications_status", "delayed_notifications", ["status"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("monthly_notification_count", sa.Integer(), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id"),
    )


def downgrade():
    op.drop_table("subscriptions")
    op.drop_index("ix_delayed_notifications_status", table_name="delayed_notifications")
    op.drop_index("ix_delayed_notifications_scheduled_for", table_name="delayed_notifications")
    op.drop_index("ix_delayed_notifications_tenant_id", table_name="delayed_notifications")
    op.drop_table("delayed_notifications")
    op.drop_table("quiet_hours")
    op.drop_index("ix_delivery_logs_created_at", table_name="delivery_logs")
    op.drop_index("ix_delivery_logs_status", table_name="delivery_logs")
    op.drop_index("ix_delivery_logs_rule_id", table_name="delivery_logs")
    op.drop_index("ix_delivery_logs_tenant_id", table_name="delivery_logs")
    op.drop_table("delivery_logs")
    op.drop_index("ix_rules_enabled", table_name="rules")
    op.drop_index("ix_rules_event_type", table_name="rules")
    op.drop_index("ix_rules_tenant_id", table_name="rules")
    op.drop_table("rules")
    op.drop_index("ix_chat_webhooks_tenant_id", table_name="chat_webhooks")
    op.drop_table("chat_webhooks")
    op.drop_index("ix_tenants_pipedrive_company_id", table_name="tenants")
    op.drop_table("tenants")
