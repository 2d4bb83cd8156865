# pipenotify/config.py
import logging
import os
from typing import Optional

from dotenv import load_dotenv

# load local .env if present
load_dotenv()

logger = logging.getLogger(__name__)

SSM_PREFIX = os.getenv("SSM_PREFIX", "")


def _truthy(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _get_param_from_ssm(name: str, decrypt: bool = False) -> Optional[str]:
    """
    Read ``SSM_PREFIX + name`` from Parameter Store when PIPENOTIFY_USE_SSM is truthy.

    Returns None when the flag is off or the lookup fails, so the caller falls
    back to the environment.
    """
    if not _truthy(os.getenv("PIPENOTIFY_USE_SSM")):
        return None
    try:
        from .utils.ssm import get_param
        return get_param(name, decrypt=decrypt, prefix=SSM_PREFIX)
    except Exception as exc:
        logger.debug("SSM lookup for %s failed: %s", name, exc)
        return None


def _get_param_with_fallback(name: str, decrypt: bool = False, default: Optional[str] = None) -> Optional[str]:
    val = _get_param_from_ssm(name, decrypt=decrypt)
    if val:
        return val
    return os.getenv(name, default)


def _int_param(name: str, default: int) -> int:
    raw = _get_param_with_fallback(name, default=None)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s: %r", name, raw)
        return default


def get_database_url() -> str:
    db = _get_param_with_fallback("DATABASE_URL", decrypt=True)
    if db:
        # Heroku/Railway style URLs
        if db.startswith("postgres://"):
            db = "postgresql://" + db[len("postgres://"):]
        return db
    return "sqlite:///pipenotify-dev.sqlite"


def get_broker_url() -> str:
    return _get_param_with_fallback(
        "CELERY_BROKER_URL", decrypt=True, default=os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )


class Config:
    SQLALCHEMY_DATABASE_URI = get_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Global secret used to verify Pipedrive webhooks; tenants may override it
    PIPEDRIVE_WEBHOOK_SECRET = _get_param_with_fallback(
        "PIPEDRIVE_WEBHOOK_SECRET", decrypt=True, default=os.getenv("WEBHOOK_SECRET", "")
    )
    # Unknown Pipedrive accounts are rejected unless this is on
    AUTO_CREATE_TENANTS = _truthy(_get_param_with_fallback("AUTO_CREATE_TENANTS", default="false"))

    CELERY = {
        "broker_url": get_broker_url(),
        "result_backend": _get_param_with_fallback("CELERY_RESULT_BACKEND", default=None),
        "task_serializer": "json",
        "result_serializer": "json",
        "accept_content": ["json"],
        "timezone": "UTC",
        "task_acks_late": True,
        "task_ignore_result": True,
    }

    CHAT_TIMEOUT_SECONDS = _int_param("CHAT_TIMEOUT_SECONDS", 10)
    MAX_DELIVERY_ATTEMPTS = _int_param("MAX_DELIVERY_ATTEMPTS", 3)
    RETRY_BASE_DELAY = _int_param("RETRY_BASE_DELAY", 5)
    RETRY_MAX_DELAY = _int_param("RETRY_MAX_DELAY", 300)
    WEBHOOK_FAILURE_THRESHOLD = _int_param("WEBHOOK_FAILURE_THRESHOLD", 3)
    DELAYED_SWEEP_BATCH = _int_param("DELAYED_SWEEP_BATCH", 50)
    DELAYED_SWEEP_INTERVAL = _int_param("DELAYED_SWEEP_INTERVAL", 300)
    DELAYED_CLAIM_LEASE = _int_param("DELAYED_CLAIM_LEASE", 900)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PIPEDRIVE_WEBHOOK_SECRET = "test-secret"
    AUTO_CREATE_TENANTS = False
    CELERY = dict(Config.CELERY, broker_url="memory://", task_always_eager=True)
    RETRY_BASE_DELAY = 1
