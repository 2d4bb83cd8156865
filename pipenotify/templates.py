# pipenotify/templates.py
"""
Message rendering for Google Chat.

``simple`` and ``compact`` produce plain text, ``detailed`` produces a cardsV2 card
with a link back to the Pipedrive record, ``custom`` substitutes ``{path.to.field}``
placeholders in a tenant template. Rendering never raises: unknown placeholders
become empty strings and missing data is skipped.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .events import MISSING, Event, resolve_path
from .models import TemplateMode

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{([A-Za-z_][\w.]*)\}")

PLACEHOLDER_ROOTS = {
    "activity", "current", "data", "deal", "event", "lead", "meta", "note",
    "org", "organization", "person", "previous", "product",
}

_ACTION_WORDS = {
    "create": "created",
    "change": "updated",
    "delete": "deleted",
    "merge": "merged",
    "won": "won",
    "lost": "lost",
}

_EMOJI = {
    "deal.won": "🎉",
    "deal.lost": "❌",
    "deal.create": "🆕",
    "deal.delete": "🗑️",
    "person.create": "👤",
    "organization.create": "🏢",
    "activity.create": "📅",
}


@dataclass
class MessageBody:
    """A Google Chat message: plain text, or a card with a text fallback for logs."""
    text: str
    card: Optional[Dict[str, Any]] = None

    @property
    def is_card(self) -> bool:
        return self.card is not None

    def to_payload(self) -> Dict[str, Any]:
        if self.card is None:
            return {"text": self.text}
        return {"cardsV2": [{"cardId": "pipenotify", "card": self.card}]}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MessageBody":
        cards = payload.get("cardsV2") or []
        card = cards[0]["card"] if cards else None
        text = payload.get("text") or ""
        if card is not None and not text:
            text = card.get("header", {}).get("title", "")
        return cls(text=text, card=card)


def _stringify(value: Any) -> str:
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def format_money(value: Any, currency: Optional[str] = None) -> Optional[str]:
    if value in (None, ""):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return _stringify(value)
    text = f"{amount:,.0f}" if amount.is_integer() else f"{amount:,.2f}"
    return f"{currency or 'USD'} {text}"


def _object_name(event: Event) -> str:
    fields = event.fields
    for key in ("title", "name", "subject"):
        if fields.get(key):
            return str(fields[key])
    label = event.object_type.capitalize()
    return f"{label} #{event.object_id}" if event.object_id is not None else label


def _owner_name(event: Event) -> Optional[str]:
    fields = event.fields
    if fields.get("owner_name"):
        return str(fields["owner_name"])
    for key in ("owner_id", "user_id"):
        owner = fields.get(key)
        if isinstance(owner, dict) and owner.get("name"):
            return str(owner["name"])
    return None


def _stage(event: Event) -> Optional[str]:
    fields = event.fields
    if fields.get("stage_name"):
        return str(fields["stage_name"])
    if fields.get("stage_id") is not None:
        return f"Stage {fields['stage_id']}"
    return None


def headline(event: Event) -> str:
    verb = _ACTION_WORDS.get(event.action, event.action)
    emoji = _EMOJI.get(event.type, "🔔")
    return f"{emoji} {event.object_type.capitalize()} {verb}"


def key_fields(event: Event) -> List[tuple]:
    """Label/value pairs worth showing for this event, most useful first."""
    fields = event.fields
    pairs = []
    money = format_money(fields.get("value"), fields.get("currency"))
    if money:
        pairs.append(("Value", money))

    stage = _stage(event)
    stage_change = event.derived_fields().get("stage_change")
    if stage_change:
        pairs.append(("Stage", f"{stage_change['from']} → {stage_change['to']}"))
    elif stage:
        pairs.append(("Stage", stage))

    owner = _owner_name(event)
    if owner:
        pairs.append(("Owner", owner))
    if fields.get("probability") not in (None, ""):
        pairs.append(("Probability", f"{_stringify(fields['probability'])}%"))
    if fields.get("status"):
        pairs.append(("Status", str(fields["status"])))
    if fields.get("expected_close_date"):
        pairs.append(("Expected close", str(fields["expected_close_date"])))
    if fields.get("lost_reason"):
        pairs.append(("Lost reason", str(fields["lost_reason"])))
    return pairs


def render_simple(event: Event) -> MessageBody:
    text = f"{headline(event)}: {_object_name(event)}"
    money = format_money(event.fields.get("value"), event.fields.get("currency"))
    if money:
        text += f" ({money})"
    return MessageBody(text=text)


def render_compact(event: Event) -> MessageBody:
    lines = [f"*{headline(event)}*", _object_name(event)]
    for label, value in key_fields(event)[:3]:
        lines.append(f"{label}: {value}")
    if event.record_url:
        lines.append(f"<{event.record_url}|View in Pipedrive>")
    return MessageBody(text="\n".join(lines))


def render_detailed(event: Event) -> MessageBody:
    widgets = [{"decoratedText": {"topLabel": "Event", "text": event.type}}]
    for label, value in key_fields(event):
        widgets.append({"decoratedText": {"topLabel": label, "text": value}})
    widgets.append({
        "decoratedText": {"topLabel": "When", "text": event.timestamp.strftime("%Y-%m-%d %H:%M UTC")}
    })

    sections = [{"widgets": widgets}]
    if event.record_url:
        sections.append({
            "widgets": [{
                "buttonList": {
                    "buttons": [{"text": "Open in Pipedrive", "onClick": {"openLink": {"url": event.record_url}}}]
                }
            }]
        })

    card = {
        "header": {"title": headline(event), "subtitle": _object_name(event)},
        "sections": sections,
    }
    return MessageBody(text=f"{headline(event)}: {_object_name(event)}", card=card)


def template_context(event: Event) -> Dict[str, Any]:
    """The namespace custom placeholders are resolved against."""
    record = dict(event.fields)
    record.setdefault("url", event.record_url)
    record.setdefault("owner_name", _owner_name(event))
    record.setdefault("stage", _stage(event))
    record.setdefault("name", _object_name(event))

    context = {
        "current": event.fields,
        "data": event.fields,
        "previous": event.previous,
        "meta": event.raw_meta,
        "event": {
            "type": event.type,
            "action": event.action,
            "object": event.object_type,
            "id": event.object_id,
            "company_id": event.company_id,
            "user_id": event.user_id,
            "timestamp": event.timestamp.strftime("%Y-%m-%d %H:%M UTC"),
            "url": event.record_url,
        },
        event.object_type: record,
    }
    if event.object_type == "organization":
        context["org"] = record
    return context


def substitute(template: str, context: Dict[str, Any]) -> str:
    def _replace(match):
        value = resolve_path(context, match.group(1))
        if value is MISSING:
            logger.debug("Unresolved template placeholder %s", match.group(0))
        return _stringify(value)

    return PLACEHOLDER.sub(_replace, template)


def render_custom(event: Event, template: Optional[str]) -> MessageBody:
    if not template or not template.strip():
        return render_simple(event)
    return MessageBody(text=substitute(template, template_context(event)))


def render(template_mode: str, event: Event, custom_template: Optional[str] = None) -> MessageBody:
    mode = template_mode or TemplateMode.SIMPLE.value
    if mode == TemplateMode.CUSTOM.value:
        return render_custom(event, custom_template)
    if mode == TemplateMode.DETAILED.value:
        return render_detailed(event)
    if mode == TemplateMode.COMPACT.value:
        return render_compact(event)
    if mode != TemplateMode.SIMPLE.value:
        logger.warning("Unknown template mode %r, using simple", mode)
    return render_simple(event)


def validate_template(template: str) -> List[str]:
    """Problems that would make a custom template render poorly; empty list if fine."""
    if not template or not isinstance(template, str):
        return ["Template must be a non-empty string"]

    errors = []
    if template.count("{") != template.count("}"):
        errors.append("Unmatched braces in template")
    for match in PLACEHOLDER.finditer(template):
        name = match.group(1)
        root = name.split(".", 1)[0]
        if "." not in name:
            errors.append(f"Placeholder {{{name}}} needs dot notation, e.g. {{deal.title}}")
        elif root not in PLACEHOLDER_ROOTS:
            errors.append(f"Unknown placeholder root in {{{name}}}")
    return errors
