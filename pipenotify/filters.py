# pipenotify/filters.py
"""
Rule filter predicates.

A rule's ``filters`` column is stored as JSON. It is parsed into a list of typed
conditions, and a rule matches only when every condition holds. Three condition kinds
exist; :func:`evaluate` is the single place that knows how to evaluate each of them.

Accepted JSON (keys may be combined)::

    {"value_min": 10000, "value_max": 50000}
    {"probability_min": 80}
    {"stage_ids": [3, 4], "pipeline_ids": [1], "owner_ids": [42], "currencies": ["EUR"]}
    {"status": ["won"]}  or  {"status": "open"}
    {"labels": ["hot"], "label_match_type": "all"}
    {"days_since_update_min": 7}
    {"stage_change_required": true}
    {"conditions": [{"kind": "threshold", "field": "value", "op": "gte", "value": 100},
                    {"kind": "membership", "field": "stage_id", "values": [1, 2]},
                    {"kind": "exists", "field": "expected_close_date"}]}

Unknown keys are ignored. A known key with a value of the wrong shape raises
FilterParseError.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple, Union

from .events import MISSING, resolve_path

logger = logging.getLogger(__name__)

GTE = "gte"
LTE = "lte"


class FilterParseError(ValueError):
    pass


@dataclass(frozen=True)
class ThresholdCondition:
    field: str
    op: str
    value: float


@dataclass(frozen=True)
class MembershipCondition:
    field: str
    allowed: Tuple[Any, ...]
    match: str = "any"


@dataclass(frozen=True)
class ExistenceCondition:
    field: str
    present: bool = True


Condition = Union[ThresholdCondition, MembershipCondition, ExistenceCondition]

_THRESHOLD_KEYS = {
    "value_min": ("value", GTE),
    "value_max": ("value", LTE),
    "probability_min": ("probability", GTE),
    "probability_max": ("probability", LTE),
    "days_since_update_min": ("days_since_update", GTE),
    "days_inactive": ("days_since_update", GTE),
}

_MEMBERSHIP_KEYS = {
    "stage_ids": "stage_id",
    "pipeline_ids": "pipeline_id",
    "owner_ids": "owner_id",
    "currencies": "currency",
    "status": "status",
}


def _number(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise FilterParseError(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise FilterParseError(f"{key} must be a number, got {value!r}")


def _values(value: Any, key: str) -> Tuple[Any, ...]:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(value)
    raise FilterParseError(f"{key} must be a value or a list of values")


def _parse_explicit(item: Any) -> Condition:
    if not isinstance(item, Mapping) or not item.get("field"):
        raise FilterParseError(f"Condition must be an object with a field: {item!r}")
    kind = item.get("kind")
    field_name = str(item["field"])
    if kind == "threshold":
        op = item.get("op", GTE)
        if op not in (GTE, LTE):
            raise FilterParseError(f"Unsupported threshold operator: {op!r}")
        return ThresholdCondition(field_name, op, _number(item.get("value"), field_name))
    if kind == "membership":
        match = item.get("match", "any")
        if match not in ("any", "all"):
            raise FilterParseError(f"Unsupported membership match: {match!r}")
        return MembershipCondition(field_name, _values(item.get("values"), field_name), match)
    if kind == "exists":
        return ExistenceCondition(field_name, bool(item.get("present", True)))
    raise FilterParseError(f"Unknown condition kind: {kind!r}")


def parse_filters(raw: Any) -> List[Condition]:
    """Translate a stored filter blob into conditions. Empty or None means no conditions."""
    if raw in (None, "", {}):
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise FilterParseError(f"Filters are not valid JSON: {exc}")
    if not isinstance(raw, Mapping):
        raise FilterParseError("Filters must be a JSON object")

    conditions: List[Condition] = []
    for key, value in raw.items():
        if value is None:
            continue
        if key in _THRESHOLD_KEYS:
            field_name, op = _THRESHOLD_KEYS[key]
            conditions.append(ThresholdCondition(field_name, op, _number(value, key)))
        elif key in _MEMBERSHIP_KEYS:
            conditions.append(MembershipCondition(_MEMBERSHIP_KEYS[key], _values(value, key)))
        elif key == "labels":
            match = raw.get("label_match_type") or "any"
            if match not in ("any", "all"):
                raise FilterParseError(f"Unsupported label_match_type: {match!r}")
            conditions.append(MembershipCondition("label", _values(value, key), match))
        elif key == "stage_change_required":
            if value:
                conditions.append(ExistenceCondition("stage_change"))
        elif key == "value" and isinstance(value, Mapping):
            # older rows store {"value": {"min": .., "max": ..}}
            if value.get("min") is not None:
                conditions.append(ThresholdCondition("value", GTE, _number(value["min"], "value.min")))
            if value.get("max") is not None:
                conditions.append(ThresholdCondition("value", LTE, _number(value["max"], "value.max")))
        elif key == "conditions":
            if not isinstance(value, list):
                raise FilterParseError("conditions must be a list")
            conditions.extend(_parse_explicit(item) for item in value)
        elif key != "label_match_type":
            logger.debug("Ignoring unknown filter key %s", key)
    return conditions


def _same(a: Any, b: Any) -> bool:
    # stage/owner ids arrive as ints or numeric strings depending on payload version
    return a == b or str(a) == str(b)


def _in(value: Any, allowed: Tuple[Any, ...]) -> bool:
    return any(_same(value, candidate) for candidate in allowed)


def evaluate(condition: Condition, fields: Mapping[str, Any]) -> bool:
    """Evaluate one condition. A referenced field that is absent never satisfies it."""
    actual = resolve_path(fields, condition.field)

    if isinstance(condition, ExistenceCondition):
        exists = actual is not MISSING and actual not in (None, "", [], {})
        return exists == condition.present

    if actual is MISSING or actual is None:
        return False

    if isinstance(condition, ThresholdCondition):
        try:
            number = float(actual)
        except (TypeError, ValueError):
            return False
        if condition.op == GTE:
            return number >= condition.value
        return number <= condition.value

    if isinstance(condition, MembershipCondition):
        if isinstance(actual, (list, tuple, set)):
            if condition.match == "all":
                return all(_in(wanted, tuple(actual)) for wanted in condition.allowed)
            return any(_in(item, condition.allowed) for item in actual)
        if condition.match == "all":
            return all(_same(actual, wanted) for wanted in condition.allowed)
        return _in(actual, condition.allowed)

    raise TypeError(f"Unhandled condition type: {type(condition).__name__}")


def matches(conditions: List[Condition], fields: Mapping[str, Any]) -> bool:
    return all(evaluate(condition, fields) for condition in conditions)
