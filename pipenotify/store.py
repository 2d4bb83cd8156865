# pipenotify/store.py
"""
Rule store: the reads and writes the pipeline performs against the database.

Every function takes an explicit SQLAlchemy session so the same code runs inside a
Flask request, a Celery task or a CLI command.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import CrossTenantReferenceError, InvalidRuleError, WebhookInUseError
from .filters import FilterParseError, parse_filters
from .models import DeliveryLog, QuietHoursConfig, Rule, TemplateMode, Tenant, Webhook, utcnow

logger = logging.getLogger(__name__)


def get_tenant(session: Session, tenant_id: int) -> Optional[Tenant]:
    return session.get(Tenant, tenant_id)


def get_tenant_by_company_id(session: Session, company_id: int) -> Optional[Tenant]:
    return session.execute(
        select(Tenant).where(Tenant.pipedrive_company_id == company_id)
    ).scalar_one_or_none()


def get_enabled_rules_for_tenant(session: Session, tenant_id: int) -> List[Rule]:
    stmt = (
        select(Rule)
        .where(Rule.tenant_id == tenant_id, Rule.enabled.is_(True))
        .order_by(Rule.priority.asc(), Rule.created_at.asc(), Rule.id.asc())
    )
    return list(session.execute(stmt).scalars())


def get_rule_by_id(session: Session, rule_id: int) -> Optional[Rule]:
    return session.get(Rule, rule_id)


def get_webhook_by_id(session: Session, webhook_id: int) -> Optional[Webhook]:
    return session.get(Webhook, webhook_id)


def get_active_webhooks(session: Session, tenant_id: int) -> List[Webhook]:
    stmt = select(Webhook).where(Webhook.tenant_id == tenant_id, Webhook.is_active.is_(True)).order_by(Webhook.id)
    return list(session.execute(stmt).scalars())


def create_webhook(session: Session, tenant_id: int, name: str, webhook_url: str, description: str = None) -> Webhook:
    if not webhook_url.startswith("https://"):
        raise InvalidRuleError("Google Chat webhook URLs must use https")
    webhook = Webhook(tenant_id=tenant_id, name=name, webhook_url=webhook_url, description=description)
    session.add(webhook)
    session.commit()
    logger.info("Created webhook %s (%s) for tenant %s", webhook.id, name, tenant_id)
    return webhook


def delete_webhook(session: Session, webhook: Webhook) -> None:
    """Delete a webhook; refused while any enabled rule still targets it."""
    referencing = list(session.execute(select(Rule).where(Rule.target_webhook_id == webhook.id)).scalars())
    enabled = [rule.id for rule in referencing if rule.enabled]
    if enabled:
        raise WebhookInUseError(f"Webhook {webhook.id} is used by enabled rules {enabled}")
    for rule in referencing:
        session.delete(rule)
    session.delete(webhook)
    session.commit()
    logger.info("Deleted webhook %s and %d disabled rules", webhook.id, len(referencing))


def _check_rule_fields(session: Session, tenant_id: int, target_webhook_id: int, template_mode: str, filters) -> None:
    webhook = get_webhook_by_id(session, target_webhook_id)
    if webhook is None:
        raise InvalidRuleError(f"Webhook {target_webhook_id} does not exist")
    if webhook.tenant_id != tenant_id:
        raise CrossTenantReferenceError(
            f"Webhook {target_webhook_id} belongs to tenant {webhook.tenant_id}, not {tenant_id}"
        )
    if template_mode not in {mode.value for mode in TemplateMode}:
        raise InvalidRuleError(f"Unknown template mode: {template_mode!r}")
    try:
        parse_filters(filters)
    except FilterParseError as exc:
        raise InvalidRuleError(str(exc))


def create_rule(
    session: Session,
    tenant_id: int,
    name: str,
    event_type: str,
    target_webhook_id: int,
    filters: dict = None,
    template_mode: str = TemplateMode.SIMPLE.value,
    custom_template: str = None,
    priority: int = 1,
    enabled: bool = True,
    is_default: bool = False,
    commit: bool = True,
) -> Rule:
    _check_rule_fields(session, tenant_id, target_webhook_id, template_mode, filters)
    rule = Rule(
        tenant_id=tenant_id,
        name=name,
        event_type=event_type,
        filters=filters or {},
        target_webhook_id=target_webhook_id,
        template_mode=template_mode,
        custom_template=custom_template,
        priority=priority,
        enabled=enabled,
        is_default=is_default,
    )
    session.add(rule)
    if commit:
        session.commit()
    return rule


def update_rule(session: Session, rule: Rule, **changes) -> Rule:
    allowed = {"name", "event_type", "filters", "target_webhook_id", "template_mode",
               "custom_template", "priority", "enabled"}
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidRuleError(f"Cannot update rule fields: {sorted(unknown)}")

    _check_rule_fields(
        session,
        rule.tenant_id,
        changes.get("target_webhook_id", rule.target_webhook_id),
        changes.get("template_mode", rule.template_mode),
        changes.get("filters", rule.filters),
    )
    for key, value in changes.items():
        setattr(rule, key, value)
    session.commit()
    return rule


def get_quiet_hours_config(session: Session, tenant_id: int) -> Optional[QuietHoursConfig]:
    return session.execute(
        select(QuietHoursConfig).where(QuietHoursConfig.tenant_id == tenant_id)
    ).scalar_one_or_none()


def upsert_quiet_hours_config(session: Session, tenant_id: int, **values) -> QuietHoursConfig:
    from .quiet_hours import validate_quiet_hours

    config = get_quiet_hours_config(session, tenant_id)
    changes = {
        key: values[key]
        for key in ("timezone", "start_time", "end_time", "weekends_enabled", "holidays", "enabled")
        if values.get(key) is not None
    }

    # nothing touches the session until the merged values are valid
    validate_quiet_hours(
        changes.get("timezone", config.timezone if config else "UTC"),
        changes.get("start_time", config.start_time if config else "18:00"),
        changes.get("end_time", config.end_time if config else "09:00"),
        changes.get("holidays", config.holidays if config else []),
    )

    if config is None:
        config = QuietHoursConfig(tenant_id=tenant_id)
        session.add(config)
    for key, value in changes.items():
        setattr(config, key, value)
    session.commit()
    logger.info(
        "Quiet hours for tenant %s: %s-%s %s (weekends %s)",
        tenant_id, config.start_time, config.end_time, config.timezone,
        "on" if config.weekends_enabled else "quiet",
    )
    return config


def insert_delivery_log(session: Session, **entry) -> DeliveryLog:
    log = DeliveryLog(**entry)
    session.add(log)
    session.commit()
    return log


def record_delivery_attempt(session: Session, delivery_key: str, attempt: int, **values) -> DeliveryLog:
    """Create the log row for a delivery on its first attempt, update it on retries."""
    log = session.execute(
        select(DeliveryLog).where(DeliveryLog.delivery_key == delivery_key)
    ).scalar_one_or_none()
    if log is None:
        log = DeliveryLog(delivery_key=delivery_key)
        session.add(log)
    for key, value in values.items():
        setattr(log, key, value)
    log.attempt_count = attempt
    log.updated_at = utcnow()
    session.commit()
    return log


def recent_delivery_logs(session: Session, tenant_id: int, limit: int = 20) -> List[DeliveryLog]:
    stmt = (
        select(DeliveryLog)
        .where(DeliveryLog.tenant_id == tenant_id)
        .order_by(DeliveryLog.created_at.desc(), DeliveryLog.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())
