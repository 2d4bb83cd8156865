import hashlib
import hmac

SIGNATURE_HEADERS = ("X-Pipedrive-Signature", "X-Signature")


def compute_signature(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), msg=payload, digestmod=hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature_header: str) -> bool:
    """
    Verify a Pipedrive webhook signature.

    secret: Shared webhook secret (tenant-specific or global)
    payload: Raw request body (bytes)
    signature_header: Value of 'X-Pipedrive-Signature', hex digest with or without a 'sha256=' prefix
    """
    if not secret or not signature_header:
        return False

    received = signature_header.strip()
    if received.startswith("sha256="):
        received = received.split("=", 1)[1]
    if not received.isascii():
        return False

    expected = compute_signature(secret, payload)

    # Constant-time comparison
    return hmac.compare_digest(expected, received.lower())


def signature_from_headers(headers) -> str:
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return ""
