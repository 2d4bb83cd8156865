import json

from pipenotify.models import Tenant
from pipenotify.signature import compute_signature

URL = "/api/v1/webhook/pipedrive"


def _body(company_id=12345, **overrides):
    payload = {
        "event": "added.deal",
        "meta": {"object": "deal", "action": "added", "id": 5, "company_id": company_id,
                 "host": "acme.pipedrive.com"},
        "current": {"id": 5, "title": "New deal", "value": 10},
    }
    payload.update(overrides)
    return json.dumps(payload).encode()


def _post(client, body, secret="test-secret", header="X-Pipedrive-Signature"):
    headers = {header: "sha256=" + compute_signature(secret, body)} if secret else {}
    return client.post(URL, data=body, content_type="application/json", headers=headers)


def test_health(client):
    resp = client.get("/api/v1/webhook/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


def test_valid_webhook_is_queued(client, tenant, queue):
    resp = _post(client, _body())

    assert resp.status_code == 202
    assert resp.get_json() == {"status": "queued", "event": "deal.create", "tenant_id": tenant.id}
    [(tenant_id, event)] = queue.events
    assert tenant_id == tenant.id
    assert event["type"] == "deal.create"
    assert event["fields"]["title"] == "New deal"


def test_legacy_signature_header_is_accepted(client, tenant, queue):
    assert _post(client, _body(), header="X-Signature").status_code == 202


def test_missing_signature_is_rejected(client, tenant, queue):
    resp = _post(client, _body(), secret=None)
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "invalid_signature"
    assert queue.events == []


def test_wrong_secret_is_rejected(client, tenant, queue):
    assert _post(client, _body(), secret="guess").status_code == 401
    assert queue.events == []


def test_non_ascii_signature_is_rejected(client, tenant, queue):
    resp = client.post(URL, data=_body(), content_type="application/json",
                       headers={"X-Pipedrive-Signature": "sha256=éé"})
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "invalid_signature"
    assert queue.events == []


def test_tenant_secret_overrides_global_secret(client, session, tenant, queue):
    tenant.webhook_secret = "tenant-secret"
    session.commit()

    assert _post(client, _body()).status_code == 401
    assert _post(client, _body(), secret="tenant-secret").status_code == 202


def test_malformed_payload_is_rejected(client, tenant, queue):
    resp = _post(client, json.dumps({"meta": {"company_id": 12345}}).encode())
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_payload"

    assert _post(client, b"not json").status_code == 400
    assert queue.events == []


def test_unknown_account_is_rejected(client, tenant, queue):
    resp = _post(client, _body(company_id=999))
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "unknown_account"
    assert queue.events == []


def test_unknown_account_is_created_when_enabled(app, client, session, queue):
    app.config["AUTO_CREATE_TENANTS"] = True

    resp = _post(client, _body(company_id=999))

    assert resp.status_code == 202
    tenant = session.query(Tenant).filter_by(pipedrive_company_id=999).one()
    assert tenant.api_domain == "acme.pipedrive.com"
    assert queue.events[0][0] == tenant.id


def test_same_account_always_maps_to_same_tenant(app, client, session, queue):
    app.config["AUTO_CREATE_TENANTS"] = True
    _post(client, _body(company_id=999))
    _post(client, _body(company_id=999))

    assert session.query(Tenant).filter_by(pipedrive_company_id=999).count() == 1
    assert queue.events[0][0] == queue.events[1][0]
