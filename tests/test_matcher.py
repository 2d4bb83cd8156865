import pytest

from pipenotify.matcher import RuleMatcher, event_type_matches, match_rules
from pipenotify.models import Tenant


@pytest.mark.parametrize("pattern,event_type,expected", [
    ("deal.won", "deal.won", True),
    ("deal.won", "deal.lost", False),
    ("deal.*", "deal.lost", True),
    ("deal.*", "person.create", False),
    ("*", "deal.won", False),
    (".*", "deal.won", False),
    ("", "deal.won", False),
])
def test_event_type_matches(pattern, event_type, expected):
    assert event_type_matches(pattern, event_type) is expected


def test_rules_match_in_priority_then_creation_order(session, tenant, make_rule, make_event):
    late = make_rule("deal.*", priority=5)
    first = make_rule("deal.won", priority=1)
    second = make_rule("deal.won", priority=1)
    make_rule("deal.lost", priority=0)

    matched = RuleMatcher(session).match(tenant.id, make_event("deal.won"))

    assert [rule.id for rule in matched] == [first.id, second.id, late.id]


def test_filters_must_all_hold(session, tenant, make_rule, make_event):
    make_rule("deal.won", filters={"value_min": 20000})
    small = make_event("deal.won", fields={"value": 15000})
    big = make_event("deal.won", fields={"value": 25000})

    matcher = RuleMatcher(session)
    assert matcher.match(tenant.id, small) == []
    assert len(matcher.match(tenant.id, big)) == 1


def test_disabled_rules_never_match(session, tenant, make_rule, make_event):
    make_rule("deal.won", enabled=False)
    assert RuleMatcher(session).match(tenant.id, make_event("deal.won")) == []


def test_malformed_filter_only_drops_that_rule(session, tenant, make_rule, make_event):
    make_rule("deal.won", filters={"value_min": "lots"})
    good = make_rule("deal.won")

    matched = RuleMatcher(session).match(tenant.id, make_event("deal.won", fields={"value": 1}))
    assert [rule.id for rule in matched] == [good.id]


def test_other_tenants_rules_are_not_considered(session, tenant, make_rule, make_event):
    other = Tenant(company_name="Other", pipedrive_company_id=999)
    session.add(other)
    session.commit()
    make_rule("deal.won")

    assert RuleMatcher(session).match(other.id, make_event("deal.won")) == []


def test_matching_is_repeatable(session, tenant, make_rule, make_event):
    for priority in (3, 1, 2):
        make_rule("deal.*", priority=priority)
    event = make_event("deal.won")

    first = [rule.id for rule in RuleMatcher(session).match(tenant.id, event)]
    second = [rule.id for rule in RuleMatcher(session).match(tenant.id, event)]
    assert first == second


def test_match_rules_on_plain_lists(make_rule, make_event):
    rules = [make_rule("deal.*", priority=2), make_rule("deal.won", priority=1)]
    assert [r.priority for r in match_rules(rules, make_event("deal.won"))] == [1, 2]
