# pipenotify/matcher.py
import logging
from datetime import datetime
from typing import Iterable, List

from . import store
from .events import Event
from .filters import FilterParseError, matches, parse_filters
from .models import Rule

logger = logging.getLogger(__name__)


def event_type_matches(pattern: str, event_type: str) -> bool:
    """Exact match, or ``<object>.*`` against the event's object segment."""
    if not pattern:
        return False
    if pattern == event_type:
        return True
    if pattern.endswith(".*"):
        prefix = pattern[:-2]
        return bool(prefix) and "." not in prefix and prefix == event_type.split(".", 1)[0]
    return False


def rule_sort_key(rule: Rule):
    return (rule.priority if rule.priority is not None else 0, rule.created_at or datetime.min, rule.id or 0)


def rule_matches(rule: Rule, event: Event) -> bool:
    if not event_type_matches(rule.event_type, event.type):
        return False
    try:
        conditions = parse_filters(rule.filters)
    except FilterParseError as exc:
        logger.warning("Rule %s has malformed filters, treating as non-matching: %s", rule.id, exc)
        return False
    return matches(conditions, event.filter_fields())


def match_rules(rules: Iterable[Rule], event: Event) -> List[Rule]:
    """Matching rules in delivery order: ascending priority, then creation order."""
    matched = [rule for rule in rules if rule.enabled and rule_matches(rule, event)]
    return sorted(matched, key=rule_sort_key)


class RuleMatcher:
    def __init__(self, session):
        self.session = session

    def match(self, tenant_id: int, event: Event) -> List[Rule]:
        rules = store.get_enabled_rules_for_tenant(self.session, tenant_id)
        matched = match_rules(rules, event)
        logger.info(
            "Tenant %s event %s: %d of %d enabled rules matched",
            tenant_id, event.type, len(matched), len(rules),
        )
        return matched
