# pipenotify/provisioning.py
"""
Default notification rules, provisioned per plan tier.

Each tier includes every rule of the tiers below it. Provisioning only adds rules
that are missing (matched by name among the tenant's ``is_default`` rules), so it is
safe to run again after a plan upgrade.
"""
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import store
from .models import PlanTier, Rule, TemplateMode, Tenant, Webhook

logger = logging.getLogger(__name__)

FREE_RULES = [
    {"name": "🎉 Deal Won Celebration", "event_type": "deal.won", "filters": {}},
    {"name": "⚠️ Deal Lost Alert", "event_type": "deal.lost", "filters": {}},
    {"name": "✨ New Deal Created", "event_type": "deal.create", "filters": {}},
    {"name": "📝 Deal Updated", "event_type": "deal.change", "filters": {}},
]

STARTER_RULES = FREE_RULES + [
    {"name": "📊 Deal Stage Changed", "event_type": "deal.change",
     "filters": {"stage_change_required": True}},
    {"name": "💎 High-Value Deal Alert", "event_type": "deal.*",
     "filters": {"value_min": 10000}},
]

PRO_RULES = STARTER_RULES + [
    {"name": "⏰ Stalled Deal Alert", "event_type": "deal.change",
     "filters": {"days_since_update_min": 7, "status": "open"},
     "template_mode": TemplateMode.DETAILED.value},
    {"name": "📅 Deal Close Date Set", "event_type": "deal.change",
     "filters": {"status": "open", "conditions": [{"kind": "exists", "field": "expected_close_date"}]},
     "template_mode": TemplateMode.DETAILED.value},
]

TEAM_RULES = PRO_RULES + [
    {"name": "🔥 Hot Deal Alert", "event_type": "deal.*",
     "filters": {"probability_min": 80, "value_min": 5000},
     "template_mode": TemplateMode.DETAILED.value},
]

DEFAULT_RULES = {
    PlanTier.FREE.value: FREE_RULES,
    PlanTier.STARTER.value: STARTER_RULES,
    PlanTier.PRO.value: PRO_RULES,
    PlanTier.TEAM.value: TEAM_RULES,
}


def default_rules_for_plan(plan_tier: str) -> List[dict]:
    return DEFAULT_RULES.get((plan_tier or "").lower(), FREE_RULES)


def provision_default_rules(session: Session, tenant: Tenant, webhook: Webhook) -> List[Rule]:
    """Create the tenant's missing default rules targeting ``webhook``; returns the new rules."""
    existing = set(session.execute(
        select(Rule.name).where(Rule.tenant_id == tenant.id, Rule.is_default.is_(True))
    ).scalars())

    created = []
    for priority, template in enumerate(default_rules_for_plan(tenant.plan_tier), start=1):
        if template["name"] in existing:
            continue
        rule = store.create_rule(
            session,
            tenant_id=tenant.id,
            name=template["name"],
            event_type=template["event_type"],
            target_webhook_id=webhook.id,
            filters=dict(template["filters"]),
            template_mode=template.get("template_mode", TemplateMode.SIMPLE.value),
            priority=priority,
            is_default=True,
            commit=False,
        )
        created.append(rule)
    session.commit()

    logger.info(
        "Provisioned %d default rules for tenant %s (%s plan, %d already present)",
        len(created), tenant.id, tenant.plan_tier, len(existing),
    )
    return created
