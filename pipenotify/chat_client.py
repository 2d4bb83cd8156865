# pipenotify/chat_client.py
import enum
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import requests

from .errors import ChatTransportError

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, enum.Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


@dataclass
class ChatResponse:
    status_code: int
    latency_ms: int
    body: str = ""

    @property
    def outcome(self) -> DeliveryOutcome:
        return classify_status(self.status_code)


def classify_status(status_code: int) -> DeliveryOutcome:
    """2xx succeeds; 408, 429 and 5xx are worth retrying; any other status is final."""
    if 200 <= status_code < 300:
        return DeliveryOutcome.SUCCESS
    if status_code in (408, 429) or status_code >= 500:
        return DeliveryOutcome.RETRYABLE
    return DeliveryOutcome.PERMANENT


def redact_url(url: str) -> str:
    """Google Chat webhook URLs embed their key and token; only log scheme and host."""
    parts = urlsplit(url or "")
    if not parts.scheme or not parts.netloc:
        return "<invalid url>"
    return f"{parts.scheme}://{parts.netloc}/..."


class ChatClient:
    def __init__(self, timeout: float = 10, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def post_message(self, url: str, body: Dict[str, Any]) -> ChatResponse:
        """
        POST one message to a Google Chat incoming webhook.

        Any HTTP status is returned as a ChatResponse; timeouts and connection
        failures raise ChatTransportError.
        """
        headers = {"Content-Type": "application/json; charset=UTF-8"}
        logger.debug("POST %s payload=%s", redact_url(url), json.dumps(body)[:1000])

        started = time.monotonic()
        try:
            resp = self.session.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            logger.warning("Google Chat POST to %s timed out after %ss", redact_url(url), self.timeout)
            raise ChatTransportError(f"Timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            logger.warning("Google Chat POST to %s failed: %s", redact_url(url), exc.__class__.__name__)
            raise ChatTransportError(f"Connection error: {exc.__class__.__name__}") from exc
        latency_ms = int((time.monotonic() - started) * 1000)

        response = ChatResponse(status_code=resp.status_code, latency_ms=latency_ms, body=resp.text[:2000])
        if response.outcome is DeliveryOutcome.SUCCESS:
            logger.info("Google Chat accepted message (%s, %dms)", resp.status_code, latency_ms)
        else:
            logger.error("Google Chat rejected message: %s %s", resp.status_code, resp.text[:500])
        return response

    def test_webhook(self, url: str) -> ChatResponse:
        return self.post_message(url, {"text": "✅ Pipenotify test message: this webhook is connected."})
