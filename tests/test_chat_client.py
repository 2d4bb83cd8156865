from unittest import mock

import pytest
import requests

from pipenotify.chat_client import ChatClient, DeliveryOutcome, classify_status, redact_url
from pipenotify.errors import ChatTransportError

URL = "https://chat.googleapis.com/v1/spaces/AAA/messages?key=secret&token=secret"


def _response(status, text=""):
    resp = mock.Mock(status_code=status, text=text)
    return resp


@pytest.mark.parametrize("status,outcome", [
    (200, DeliveryOutcome.SUCCESS),
    (204, DeliveryOutcome.SUCCESS),
    (400, DeliveryOutcome.PERMANENT),
    (403, DeliveryOutcome.PERMANENT),
    (404, DeliveryOutcome.PERMANENT),
    (408, DeliveryOutcome.RETRYABLE),
    (429, DeliveryOutcome.RETRYABLE),
    (500, DeliveryOutcome.RETRYABLE),
    (503, DeliveryOutcome.RETRYABLE),
])
def test_classify_status(status, outcome):
    assert classify_status(status) is outcome


def test_post_message_returns_status_and_latency():
    client = ChatClient(timeout=3)
    with mock.patch.object(client.session, "post", return_value=_response(200, "{}")) as post:
        response = client.post_message(URL, {"text": "hi"})

    assert response.status_code == 200
    assert response.latency_ms >= 0
    assert response.outcome is DeliveryOutcome.SUCCESS
    post.assert_called_once()
    _, kwargs = post.call_args
    assert kwargs["json"] == {"text": "hi"}
    assert kwargs["timeout"] == 3


def test_error_status_is_returned_not_raised():
    client = ChatClient()
    with mock.patch.object(client.session, "post", return_value=_response(500, "boom")):
        response = client.post_message(URL, {"text": "hi"})
    assert response.outcome is DeliveryOutcome.RETRYABLE
    assert response.body == "boom"


@pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("refused")])
def test_transport_failures_raise(exc):
    client = ChatClient()
    with mock.patch.object(client.session, "post", side_effect=exc):
        with pytest.raises(ChatTransportError):
            client.post_message(URL, {"text": "hi"})


def test_webhook_secrets_are_not_logged(caplog):
    client = ChatClient()
    with mock.patch.object(client.session, "post", side_effect=requests.Timeout("slow")):
        with pytest.raises(ChatTransportError):
            client.post_message(URL, {"text": "hi"})
    assert "secret" not in caplog.text


def test_redact_url():
    assert redact_url(URL) == "https://chat.googleapis.com/..."
    assert redact_url("not a url") == "<invalid url>"
