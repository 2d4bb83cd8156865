import hmac
import hashlib

from pipenotify.signature import compute_signature, signature_from_headers, verify_signature


def test_verify_signature_valid():
    secret = "mysecret"
    body = b'{"hello":"world"}'
    mac = hmac.new(secret.encode(), msg=body, digestmod=hashlib.sha256).hexdigest()

    assert verify_signature(secret, body, mac) is True
    assert verify_signature(secret, body, f"sha256={mac}") is True


def test_verify_signature_invalid():
    secret = "mysecret"
    body = b'{"hello":"world"}'
    header = "sha256=wronghash"

    assert verify_signature(secret, body, header) is False


def test_verify_signature_rejects_missing_secret_or_header():
    body = b"{}"
    assert verify_signature("", body, compute_signature("x", body)) is False
    assert verify_signature("mysecret", body, "") is False


def test_signature_over_different_body_fails():
    sig = compute_signature("mysecret", b'{"a":1}')
    assert verify_signature("mysecret", b'{"a":2}', sig) is False


def test_signature_from_headers_prefers_pipedrive_header():
    headers = {"X-Signature": "b", "X-Pipedrive-Signature": "a"}
    assert signature_from_headers(headers) == "a"
    assert signature_from_headers({"X-Signature": "b"}) == "b"
    assert signature_from_headers({}) == ""


def test_non_ascii_signature_is_rejected():
    assert verify_signature("mysecret", b"{}", "sha256=éé") is False
