# pipenotify/events.py
"""
Normalization of inbound Pipedrive webhook payloads.

Pipedrive has shipped two payload generations. v1 carries ``event: "updated.deal"``
with ``meta.object``/``current``/``previous``; v2 carries ``meta.entity``/``meta.action``
with ``data``/``previous``. Both are reduced to a single :class:`Event` whose ``type`` is
``<object>.<action>`` using the v2 action vocabulary (create, change, delete, merge).
A deal whose status moves to won or lost is reported as ``deal.won`` / ``deal.lost``.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .errors import PayloadValidationError

OBJECT_TYPES = {
    "activity", "deal", "file", "filter", "lead", "note", "organization",
    "person", "pipeline", "product", "project", "stage", "user",
}

ACTION_ALIASES = {
    "added": "create",
    "updated": "change",
    "deleted": "delete",
    "merged": "merge",
}

# Marker for a dotted path that does not resolve
MISSING = object()


def resolve_path(data: Any, path: str) -> Any:
    """Walk ``a.b.c`` through nested dicts (and list indices); MISSING if any hop is absent."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            idx = int(part)
            if idx >= len(current):
                return MISSING
            current = current[idx]
        else:
            return MISSING
    return current


def _to_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Pipedrive v1 sends epoch seconds, occasionally milliseconds
        seconds = value / 1000 if value > 10**11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
        except ValueError:
            return datetime.now(timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return datetime.now(timezone.utc)


@dataclass
class Event:
    type: str
    object_type: str
    action: str
    company_id: int
    object_id: Optional[int] = None
    user_id: Optional[int] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    previous: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    host: Optional[str] = None
    correlation_id: Optional[str] = None
    raw_meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def object_segment(self) -> str:
        return self.type.split(".", 1)[0]

    @property
    def record_url(self) -> Optional[str]:
        if not self.host or self.object_id is None:
            return None
        return f"https://{self.host}/{self.object_type}/{self.object_id}"

    def derived_fields(self) -> Dict[str, Any]:
        """Values computed from the snapshots rather than sent by Pipedrive."""
        derived: Dict[str, Any] = {}

        update_time = self.fields.get("update_time")
        if update_time:
            updated = _parse_timestamp(update_time)
            derived["days_since_update"] = max((self.timestamp - updated).total_seconds(), 0) / 86400

        before = self.previous.get("stage_id")
        after = self.fields.get("stage_id")
        if before is not None and after is not None and before != after:
            derived["stage_change"] = {"from": before, "to": after}

        return derived

    def filter_fields(self) -> Dict[str, Any]:
        merged = dict(self.fields)
        merged.update(self.derived_fields())

        # v2 sends owner_id, v1 sends user_id (sometimes expanded to an object)
        owner = self.fields.get("owner_id", self.fields.get("user_id"))
        if isinstance(owner, dict):
            owner = owner.get("id", owner.get("value"))
        if owner is None:
            owner = self.user_id
        if owner is not None:
            merged["owner_id"] = owner
        return merged

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "object_type": self.object_type,
            "action": self.action,
            "company_id": self.company_id,
            "object_id": self.object_id,
            "user_id": self.user_id,
            "fields": self.fields,
            "previous": self.previous,
            "timestamp": self.timestamp.isoformat(),
            "host": self.host,
            "correlation_id": self.correlation_id,
            "raw_meta": self.raw_meta,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            type=data["type"],
            object_type=data["object_type"],
            action=data["action"],
            company_id=data["company_id"],
            object_id=data.get("object_id"),
            user_id=data.get("user_id"),
            fields=data.get("fields") or {},
            previous=data.get("previous") or {},
            timestamp=_parse_timestamp(data.get("timestamp")),
            host=data.get("host"),
            correlation_id=data.get("correlation_id"),
            raw_meta=data.get("raw_meta") or {},
        )


def _split_event_name(name: str):
    """Accept both ``deal.change`` and the v1 ``updated.deal`` ordering."""
    if "." not in name:
        raise PayloadValidationError(f"Unrecognised event name: {name!r}")
    first, second = name.split(".", 1)
    if first in OBJECT_TYPES:
        return first, second
    if second in OBJECT_TYPES:
        return second, first
    return first, second


def _outcome_action(object_type: str, action: str, fields: dict, previous: dict) -> str:
    if object_type != "deal" or action != "change":
        return action
    status = fields.get("status")
    if status in ("won", "lost") and previous.get("status") != status:
        return status
    return action


def normalize_payload(payload: Any) -> Event:
    """Reduce a raw webhook body to an :class:`Event`; raises PayloadValidationError."""
    if not isinstance(payload, dict):
        raise PayloadValidationError("Webhook body must be a JSON object")

    meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}

    object_type = meta.get("entity") or meta.get("object")
    action = meta.get("action")
    if not (object_type and action):
        name = payload.get("event") or payload.get("type")
        if not isinstance(name, str) or not name:
            raise PayloadValidationError("Missing required fields: event, object")
        object_type, action = _split_event_name(name)

    object_type = str(object_type).lower()
    action = ACTION_ALIASES.get(str(action).lower(), str(action).lower())

    fields = payload.get("data") or payload.get("current") or payload.get("fields")
    if fields is None and isinstance(payload.get("object"), dict):
        fields = payload["object"]
    fields = fields if isinstance(fields, dict) else {}
    previous = payload.get("previous") if isinstance(payload.get("previous"), dict) else {}

    company_id = _to_int(meta.get("company_id") or payload.get("company_id"))
    if company_id is None:
        raise PayloadValidationError("Missing company_id; cannot route webhook to an account")

    action = _outcome_action(object_type, action, fields, previous)

    return Event(
        type=f"{object_type}.{action}",
        object_type=object_type,
        action=action,
        company_id=company_id,
        object_id=_to_int(meta.get("entity_id") or meta.get("id") or fields.get("id")),
        user_id=_to_int(meta.get("user_id") or payload.get("user_id")),
        fields=fields,
        previous=previous,
        timestamp=_parse_timestamp(meta.get("timestamp") or payload.get("timestamp")),
        host=meta.get("host") or payload.get("host"),
        correlation_id=meta.get("correlation_id"),
        raw_meta=meta,
    )


def peek_company_id(payload: Any) -> Optional[int]:
    """The Pipedrive company id of a raw body, without validating anything else."""
    if not isinstance(payload, dict):
        return None
    meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
    return _to_int(meta.get("company_id") or payload.get("company_id"))
