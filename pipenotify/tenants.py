# pipenotify/tenants.py
"""Mapping of Pipedrive accounts to tenants: one company id, exactly one tenant."""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import store
from .errors import UnknownTenantError
from .models import PlanTier, Tenant

logger = logging.getLogger(__name__)


def create_tenant(
    session: Session,
    company_id: int,
    company_name: Optional[str] = None,
    plan_tier: str = PlanTier.FREE.value,
    api_domain: Optional[str] = None,
    webhook_secret: Optional[str] = None,
    pipedrive_user_id: Optional[int] = None,
) -> Tenant:
    if plan_tier not in {tier.value for tier in PlanTier}:
        raise ValueError(f"Unknown plan tier: {plan_tier!r}")
    tenant = Tenant(
        company_name=company_name or f"Pipedrive company {company_id}",
        pipedrive_company_id=company_id,
        pipedrive_user_id=pipedrive_user_id,
        api_domain=api_domain,
        plan_tier=plan_tier,
        webhook_secret=webhook_secret,
    )
    session.add(tenant)
    try:
        session.commit()
    except IntegrityError:
        # another request created the same account first
        session.rollback()
        existing = store.get_tenant_by_company_id(session, company_id)
        if existing is None:
            raise
        return existing
    logger.info("Created tenant %s for Pipedrive company %s (%s)", tenant.id, company_id, plan_tier)
    return tenant


def lookup_tenant(session: Session, company_id: int) -> Tenant:
    tenant = store.get_tenant_by_company_id(session, company_id)
    if tenant is None:
        raise UnknownTenantError(f"No tenant for Pipedrive company {company_id}")
    return tenant


def resolve_tenant(session: Session, company_id: int, auto_create: bool = False, **details) -> Tenant:
    """Return the tenant for ``company_id``; create it only when ``auto_create`` is on."""
    tenant = store.get_tenant_by_company_id(session, company_id)
    if tenant is not None:
        return tenant
    if not auto_create:
        logger.warning("Rejecting webhook for unknown Pipedrive company %s", company_id)
        raise UnknownTenantError(f"No tenant for Pipedrive company {company_id}")
    return create_tenant(session, company_id, **details)
