from pipenotify.templates import MessageBody, render, validate_template


def test_simple_is_one_line_with_value(make_event):
    body = render("simple", make_event("deal.won", fields={"value": 15000, "currency": "EUR"}))

    assert body.card is None
    assert "\n" not in body.text
    assert "Acme renewal" in body.text
    assert "EUR 15,000" in body.text
    assert body.to_payload() == {"text": body.text}


def test_compact_shows_key_fields_and_link(make_event):
    event = make_event("deal.change", fields={"value": 500, "stage_id": 4, "owner_name": "Dana"},
                       previous={"stage_id": 3})
    text = render("compact", event).text

    assert "Value: USD 500" in text
    assert "Stage: 3 → 4" in text
    assert "Owner: Dana" in text
    assert "https://acme.pipedrive.com/deal/101" in text


def test_detailed_is_a_card_with_deep_link(make_event):
    body = render("detailed", make_event("deal.won", fields={"value": 15000, "probability": 90}))
    payload = body.to_payload()

    card = payload["cardsV2"][0]["card"]
    assert card["header"]["subtitle"] == "Acme renewal"
    buttons = card["sections"][-1]["widgets"][0]["buttonList"]["buttons"]
    assert buttons[0]["onClick"]["openLink"]["url"] == "https://acme.pipedrive.com/deal/101"
    labels = [w["decoratedText"]["topLabel"] for w in card["sections"][0]["widgets"]]
    assert "Value" in labels and "Probability" in labels


def test_detailed_without_host_has_no_button(make_event):
    card = render("detailed", make_event("deal.won", host=None)).card
    assert len(card["sections"]) == 1


def test_custom_template_resolves_placeholders(make_event):
    event = make_event("deal.won", fields={"value": 15000, "person": {"name": "Sam"}},
                       previous={"status": "open"})
    template = "{deal.title} won by {deal.person.name} ({previous.status} -> {event.type}) {deal.url}"

    assert render("custom", event, template).text == (
        "Acme renewal won by Sam (open -> deal.won) https://acme.pipedrive.com/deal/101"
    )


def test_custom_unresolved_placeholders_render_empty(make_event):
    text = render("custom", make_event("deal.won"), "[{deal.nope}] [{organization.name}] [{meta.x.y}]").text
    assert text == "[] [] []"


def test_custom_without_template_falls_back_to_simple(make_event):
    event = make_event("deal.won")
    assert render("custom", event, None).text == render("simple", event).text
    assert render("custom", event, "   ").text == render("simple", event).text


def test_unknown_mode_renders_simple(make_event):
    event = make_event("deal.won")
    assert render("fancy", event).text == render("simple", event).text


def test_render_tolerates_missing_fields(make_event):
    event = make_event("person.create", fields={})
    for mode in ("simple", "compact", "detailed", "custom"):
        assert render(mode, event, "{person.email}").text is not None


def test_message_body_from_payload():
    body = MessageBody.from_payload({"cardsV2": [{"cardId": "x", "card": {"header": {"title": "Hi"}}}]})
    assert body.is_card
    assert body.text == "Hi"


def test_validate_template():
    assert validate_template("Won {deal.title} for {deal.value}") == []
    assert validate_template("") == ["Template must be a non-empty string"]
    assert any("Unmatched" in p for p in validate_template("Won {deal.title"))
    assert any("dot notation" in p for p in validate_template("{title}"))
    assert any("Unknown placeholder root" in p for p in validate_template("{invoice.total}"))
