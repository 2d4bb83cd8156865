from datetime import datetime, timezone

import pytest

from pipenotify.errors import PayloadValidationError
from pipenotify.events import MISSING, Event, normalize_payload, peek_company_id, resolve_path


def test_v1_payload_is_normalized():
    payload = {
        "event": "updated.deal",
        "meta": {"object": "deal", "action": "updated", "id": 7, "company_id": 555,
                 "user_id": 9, "host": "acme.pipedrive.com", "timestamp": 1760000000},
        "current": {"id": 7, "title": "Big one", "value": 100, "status": "open"},
        "previous": {"status": "open"},
    }
    event = normalize_payload(payload)

    assert event.type == "deal.change"
    assert event.object_type == "deal"
    assert event.company_id == 555
    assert event.object_id == 7
    assert event.user_id == 9
    assert event.fields["title"] == "Big one"
    assert event.record_url == "https://acme.pipedrive.com/deal/7"
    assert event.timestamp.tzinfo is not None


def test_v2_payload_is_normalized():
    payload = {
        "meta": {"entity": "person", "action": "create", "entity_id": "12", "company_id": "555",
                 "timestamp": "2026-10-14T12:00:00Z", "correlation_id": "abc"},
        "data": {"id": 12, "name": "Dana"},
    }
    event = normalize_payload(payload)

    assert event.type == "person.create"
    assert event.object_id == 12
    assert event.company_id == 555
    assert event.correlation_id == "abc"
    assert event.timestamp == datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("status,expected", [("won", "deal.won"), ("lost", "deal.lost"), ("open", "deal.change")])
def test_deal_status_transition_becomes_outcome_event(status, expected):
    payload = {
        "meta": {"entity": "deal", "action": "change", "company_id": 1},
        "data": {"id": 1, "status": status},
        "previous": {"status": "open"},
    }
    assert normalize_payload(payload).type == expected


def test_top_level_event_name_in_either_order():
    assert normalize_payload({"event": "deal.won", "company_id": 1}).type == "deal.won"
    assert normalize_payload({"event": "added.organization", "company_id": 1}).type == "organization.create"


def test_missing_company_id_is_rejected():
    with pytest.raises(PayloadValidationError):
        normalize_payload({"event": "deal.won", "data": {"id": 1}})


@pytest.mark.parametrize("payload", [None, [], "text", {"data": {}}, {"event": "nodots", "company_id": 1}])
def test_malformed_payloads_are_rejected(payload):
    with pytest.raises(PayloadValidationError):
        normalize_payload(payload)


def test_resolve_path_walks_dicts_and_lists():
    data = {"deal": {"labels": ["hot", "vip"], "org": {"name": "Acme"}}}
    assert resolve_path(data, "deal.org.name") == "Acme"
    assert resolve_path(data, "deal.labels.1") == "vip"
    assert resolve_path(data, "deal.missing") is MISSING
    assert resolve_path(data, "deal.labels.5") is MISSING


def test_filter_fields_include_derived_values(make_event):
    event = make_event(
        "deal.change",
        fields={"stage_id": 4, "update_time": "2026-10-04 12:00:00", "user_id": {"id": 42, "name": "Dana"}},
        previous={"stage_id": 3},
    )
    fields = event.filter_fields()

    assert fields["stage_change"] == {"from": 3, "to": 4}
    assert fields["days_since_update"] == pytest.approx(10)
    assert fields["owner_id"] == 42


def test_event_dict_round_trip_keeps_timestamp(make_event):
    event = make_event("deal.won", fields={"value": 10})
    again = Event.from_dict(event.to_dict())
    assert again == event


def test_peek_company_id():
    assert peek_company_id({"meta": {"company_id": "77"}}) == 77
    assert peek_company_id({"company_id": 5}) == 5
    assert peek_company_id({"meta": {}}) is None
    assert peek_company_id(None) is None
