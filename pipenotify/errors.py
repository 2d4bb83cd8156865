# pipenotify/errors.py
"""
Exception types raised by the notification pipeline.

Ingestion-side errors carry the HTTP status the webhook endpoint answers with;
everything raised after a job is enqueued is recorded in the delivery log instead.
"""


class PipenotifyError(Exception):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class SignatureError(PipenotifyError):
    status_code = 401
    error_code = "invalid_signature"


class PayloadValidationError(PipenotifyError):
    status_code = 400
    error_code = "invalid_payload"


class UnknownTenantError(PipenotifyError):
    status_code = 404
    error_code = "unknown_account"


class CrossTenantReferenceError(PipenotifyError):
    status_code = 422
    error_code = "cross_tenant_reference"


class InvalidRuleError(PipenotifyError):
    status_code = 422
    error_code = "invalid_rule"


class WebhookInUseError(PipenotifyError):
    status_code = 409
    error_code = "webhook_in_use"


class InvalidQuietHoursError(PipenotifyError):
    status_code = 422
    error_code = "invalid_quiet_hours"


class ChatTransportError(PipenotifyError):
    """Timeout or connection failure talking to Google Chat; always retryable."""
    error_code = "chat_transport_error"
