# pipenotify/cli.py
"""Operator commands, available as ``flask --app pipenotify <group> <command>``."""
import json

import click
from flask import current_app
from flask.cli import AppGroup

from . import store
from .dispatch import NotificationDispatcher
from .errors import PipenotifyError
from .extensions import db
from .models import PlanTier, TemplateMode
from .provisioning import provision_default_rules
from .quota import check_quota
from .retention import purge_expired_logs
from .templates import validate_template
from .tenants import create_tenant, lookup_tenant

tenants_cli = AppGroup("tenants", help="Manage tenants (one per Pipedrive account).")
webhooks_cli = AppGroup("webhooks", help="Manage Google Chat webhooks.")
rules_cli = AppGroup("rules", help="Manage notification rules.")
quiet_hours_cli = AppGroup("quiet-hours", help="Configure quiet hours.")
delayed_cli = AppGroup("delayed", help="Delayed notifications.")
logs_cli = AppGroup("logs", help="Delivery logs.")


def _tenant(company_id):
    try:
        return lookup_tenant(db.session, company_id)
    except PipenotifyError as exc:
        raise click.ClickException(exc.message)


@tenants_cli.command("create")
@click.argument("company_id", type=int)
@click.option("--name", default=None, help="Company name.")
@click.option("--plan", type=click.Choice([tier.value for tier in PlanTier]), default=PlanTier.FREE.value)
@click.option("--api-domain", default=None, help="e.g. acme.pipedrive.com, used for record links.")
@click.option("--secret", default=None, help="Per-tenant webhook signing secret.")
def create_tenant_command(company_id, name, plan, api_domain, secret):
    if store.get_tenant_by_company_id(db.session, company_id) is not None:
        raise click.ClickException(f"Pipedrive company {company_id} already has a tenant")
    tenant = create_tenant(db.session, company_id, company_name=name, plan_tier=plan,
                           api_domain=api_domain, webhook_secret=secret)
    click.echo(f"Created tenant {tenant.id} for Pipedrive company {company_id} ({plan})")


@tenants_cli.command("show")
@click.argument("company_id", type=int)
def show_tenant_command(company_id):
    tenant = _tenant(company_id)
    quota = check_quota(db.session, tenant)
    click.echo(f"Tenant {tenant.id}: {tenant.company_name} [{tenant.plan_tier}, {tenant.subscription_status}]")
    click.echo(f"  notifications this month: {quota.used}/{quota.limit}")
    for webhook in tenant.webhooks:
        state = "active" if webhook.is_active else f"inactive ({webhook.consecutive_failures} failures)"
        click.echo(f"  webhook {webhook.id}: {webhook.name} - {state}")
    for rule in sorted(tenant.rules, key=lambda r: (r.priority, r.id)):
        flag = "on " if rule.enabled else "off"
        click.echo(f"  rule {rule.id} [{flag}] p{rule.priority} {rule.event_type} -> webhook "
                   f"{rule.target_webhook_id}: {rule.name}")


@webhooks_cli.command("add")
@click.argument("company_id", type=int)
@click.argument("name")
@click.argument("url")
@click.option("--description", default=None)
def add_webhook_command(company_id, name, url, description):
    tenant = _tenant(company_id)
    try:
        webhook = store.create_webhook(db.session, tenant.id, name, url, description)
    except PipenotifyError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"Created webhook {webhook.id} for tenant {tenant.id}")


@webhooks_cli.command("test")
@click.argument("webhook_id", type=int)
def test_webhook_command(webhook_id):
    webhook = store.get_webhook_by_id(db.session, webhook_id)
    if webhook is None:
        raise click.ClickException(f"Webhook {webhook_id} not found")
    client = current_app.extensions["pipenotify"].chat_client
    try:
        response = client.test_webhook(webhook.webhook_url)
    except PipenotifyError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"HTTP {response.status_code} in {response.latency_ms}ms ({response.outcome.value})")


@rules_cli.command("provision")
@click.argument("company_id", type=int)
@click.option("--webhook-id", type=int, default=None, help="Target webhook; defaults to the first active one.")
def provision_rules_command(company_id, webhook_id):
    tenant = _tenant(company_id)
    if webhook_id is not None:
        webhook = store.get_webhook_by_id(db.session, webhook_id)
    else:
        active = store.get_active_webhooks(db.session, tenant.id)
        webhook = active[0] if active else None
    if webhook is None:
        raise click.ClickException("No webhook to target; add one first")
    try:
        created = provision_default_rules(db.session, tenant, webhook)
    except PipenotifyError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"Provisioned {len(created)} default rules for tenant {tenant.id}")


@rules_cli.command("add")
@click.argument("company_id", type=int)
@click.argument("name")
@click.argument("event_type")
@click.option("--webhook-id", type=int, required=True)
@click.option("--filters", default="{}", help="Filter JSON, e.g. '{\"value_min\": 10000}'.")
@click.option("--mode", type=click.Choice([mode.value for mode in TemplateMode]), default=TemplateMode.SIMPLE.value)
@click.option("--template", default=None, help="Custom template, e.g. 'Won {deal.title}'.")
@click.option("--priority", type=int, default=1)
def add_rule_command(company_id, name, event_type, webhook_id, filters, mode, template, priority):
    tenant = _tenant(company_id)
    if mode == TemplateMode.CUSTOM.value:
        problems = validate_template(template)
        if problems:
            raise click.ClickException("; ".join(problems))
    try:
        rule = store.create_rule(
            db.session, tenant.id, name, event_type, webhook_id,
            filters=json.loads(filters), template_mode=mode, custom_template=template, priority=priority,
        )
    except ValueError as exc:
        raise click.ClickException(f"Invalid filters: {exc}")
    except PipenotifyError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"Created rule {rule.id} for tenant {tenant.id}")


@quiet_hours_cli.command("set")
@click.argument("company_id", type=int)
@click.option("--timezone", "tz_name", default=None, help="IANA timezone, e.g. Europe/Berlin.")
@click.option("--start", default=None, help="HH:MM")
@click.option("--end", default=None, help="HH:MM")
@click.option("--weekends/--quiet-weekends", default=None, help="Deliver on weekends or hold until Monday.")
@click.option("--holiday", multiple=True, help="YYYY-MM-DD, repeatable.")
def set_quiet_hours_command(company_id, tz_name, start, end, weekends, holiday):
    tenant = _tenant(company_id)
    try:
        config = store.upsert_quiet_hours_config(
            db.session, tenant.id,
            timezone=tz_name, start_time=start, end_time=end, weekends_enabled=weekends,
            holidays=list(holiday) if holiday else None, enabled=True,
        )
    except PipenotifyError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message)
    click.echo(f"Quiet hours for tenant {tenant.id}: {config.start_time}-{config.end_time} {config.timezone}")


@quiet_hours_cli.command("clear")
@click.argument("company_id", type=int)
def clear_quiet_hours_command(company_id):
    tenant = _tenant(company_id)
    store.upsert_quiet_hours_config(db.session, tenant.id, enabled=False)
    click.echo(f"Quiet hours disabled for tenant {tenant.id}")


@delayed_cli.command("sweep")
def sweep_command():
    handles = current_app.extensions["pipenotify"]
    counts = NotificationDispatcher(db.session, handles.chat_client, handles.queue, handles.settings).sweep_delayed()
    click.echo(json.dumps(counts))


@logs_cli.command("purge")
@click.option("--dry-run", is_flag=True, help="Only count what would be deleted.")
def purge_logs_command(dry_run):
    totals = purge_expired_logs(db.session, dry_run=dry_run)
    prefix = "Would delete" if dry_run else "Deleted"
    click.echo(f"{prefix} {totals['delivery_logs']} delivery logs, "
               f"{totals['delayed_notifications']} delayed notifications")


def register_cli(app):
    for group in (tenants_cli, webhooks_cli, rules_cli, quiet_hours_cli, delayed_cli, logs_cli):
        app.cli.add_command(group)
