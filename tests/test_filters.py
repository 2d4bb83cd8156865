from dataclasses import dataclass

import pytest

from pipenotify.filters import (
    GTE, LTE, ExistenceCondition, FilterParseError, MembershipCondition, ThresholdCondition,
    evaluate, matches, parse_filters,
)


def test_empty_filters_have_no_conditions():
    assert parse_filters(None) == []
    assert parse_filters({}) == []
    assert parse_filters("") == []
    assert matches([], {"anything": 1}) is True


def test_legacy_keys_translate_to_conditions():
    conditions = parse_filters({
        "value_min": 1000,
        "probability_max": 50,
        "stage_ids": [3, 4],
        "owner_ids": 42,
        "stage_change_required": True,
    })
    assert ThresholdCondition("value", GTE, 1000.0) in conditions
    assert ThresholdCondition("probability", LTE, 50.0) in conditions
    assert MembershipCondition("stage_id", (3, 4)) in conditions
    assert MembershipCondition("owner_id", (42,)) in conditions
    assert ExistenceCondition("stage_change") in conditions


def test_filters_stored_as_json_string():
    assert parse_filters('{"value_min": 5}') == [ThresholdCondition("value", GTE, 5.0)]


def test_old_value_range_shape():
    conditions = parse_filters({"value": {"min": 10, "max": 20}})
    assert matches(conditions, {"value": 15}) is True
    assert matches(conditions, {"value": 25}) is False


def test_explicit_conditions():
    conditions = parse_filters({"conditions": [
        {"kind": "threshold", "field": "value", "op": "lte", "value": 100},
        {"kind": "membership", "field": "labels", "values": ["hot", "vip"], "match": "all"},
        {"kind": "exists", "field": "expected_close_date"},
    ]})
    fields = {"value": 50, "labels": ["vip", "hot", "new"], "expected_close_date": "2026-11-01"}
    assert matches(conditions, fields) is True
    assert matches(conditions, dict(fields, labels=["hot"])) is False


@pytest.mark.parametrize("raw", [
    "{not json",
    [1, 2],
    {"value_min": "lots"},
    {"stage_ids": {"a": 1}},
    {"conditions": [{"kind": "fuzzy", "field": "value"}]},
    {"conditions": "value > 1"},
])
def test_malformed_filters_raise(raw):
    with pytest.raises(FilterParseError):
        parse_filters(raw)


def test_unknown_keys_are_ignored():
    assert parse_filters({"colour": "red"}) == []


def test_absent_field_never_satisfies_a_condition():
    assert evaluate(ThresholdCondition("value", GTE, 0), {}) is False
    assert evaluate(MembershipCondition("stage_id", (1,)), {"stage_id": None}) is False
    assert evaluate(ExistenceCondition("stage_change"), {}) is False
    assert evaluate(ExistenceCondition("stage_change", present=False), {}) is True


def test_membership_is_lenient_about_numeric_strings():
    assert evaluate(MembershipCondition("stage_id", (3,)), {"stage_id": "3"}) is True


def test_threshold_on_non_numeric_value_is_false():
    assert evaluate(ThresholdCondition("value", GTE, 1), {"value": "n/a"}) is False


@dataclass(frozen=True)
class RangeCondition:
    field: str


def test_unknown_condition_type_is_an_error():
    with pytest.raises(TypeError):
        evaluate(RangeCondition("value"), {"value": 1})
