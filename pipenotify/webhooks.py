# pipenotify/webhooks.py
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import store
from .errors import PayloadValidationError, PipenotifyError, SignatureError
from .events import normalize_payload, peek_company_id
from .extensions import db
from .signature import signature_from_headers, verify_signature
from .tenants import resolve_tenant

logger = logging.getLogger(__name__)

bp = Blueprint("webhooks", __name__, url_prefix="/api/v1/webhook")


@bp.errorhandler(PipenotifyError)
def handle_pipenotify_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@bp.route("/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        return jsonify({"status": "error", "database": "unavailable"}), 503
    return jsonify({"status": "ok", "database": "ok"}), 200


@bp.route("/pipedrive", methods=["POST"])
def pipedrive_webhook():
    body = request.get_data()
    payload = request.get_json(force=True, silent=True)

    # the signing secret is per tenant, so find the account before verifying
    company_id = peek_company_id(payload)
    tenant = store.get_tenant_by_company_id(db.session, company_id) if company_id is not None else None
    secret = (tenant.webhook_secret if tenant else None) or current_app.config.get("PIPEDRIVE_WEBHOOK_SECRET", "")

    if not verify_signature(secret, body, signature_from_headers(request.headers)):
        logger.warning("Invalid signature for Pipedrive webhook (company %s)", company_id)
        raise SignatureError("Invalid or missing webhook signature")

    if payload is None:
        raise PayloadValidationError("Request body is not valid JSON")
    event = normalize_payload(payload)

    if tenant is None:
        tenant = resolve_tenant(
            db.session,
            event.company_id,
            auto_create=current_app.config.get("AUTO_CREATE_TENANTS", False),
            api_domain=event.host,
            pipedrive_user_id=event.user_id,
        )
    if tenant.api_domain is None and event.host:
        tenant.api_domain = event.host
        db.session.commit()

    current_app.extensions["pipenotify"].queue.enqueue_event(tenant.id, event.to_dict())
    logger.info("Queued Pipedrive event %s for tenant %s", event.type, tenant.id)

    return jsonify({"status": "queued", "event": event.type, "tenant_id": tenant.id}), 202
