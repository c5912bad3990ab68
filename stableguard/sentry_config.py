"""
Sentry Error Tracking Configuration
Handles Sentry SDK initialization and error tracking setup
"""

import logging
import re
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = [
    "token",
    "password",
    "secret",
    "key",
    "api_key",
    "dsn",
    "credentials",
    "auth",
    "authorization",
]

# Transaction hashes and private keys are both 0x + 64 hex
_HEX_64 = re.compile(r"\b0x[0-9a-fA-F]{64}\b")
_DATABASE_URL = re.compile(r"(postgresql(?:\+\w+)?)://[^@\s]+@[^/\s]+/\w+")


def init_sentry(
    dsn: Optional[str],
    environment: str = "development",
    release: Optional[str] = None,
    traces_sample_rate: float = 0.1,
) -> bool:
    """
    Initialize Sentry error tracking

    Returns:
        bool: True if Sentry was initialized successfully, False otherwise
    """
    if not dsn or dsn.strip() == "":
        logger.info("SENTRY_DSN not configured, skipping Sentry initialization")
        return False

    try:
        logging_integration = LoggingIntegration(
            level=logging.INFO,  # Capture info and above as breadcrumbs
            event_level=logging.ERROR,  # Send errors and above as events
        )

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release or "stableguard@unknown",
            integrations=[
                logging_integration,
                AsyncioIntegration(),
                AioHttpIntegration(),
            ],
            traces_sample_rate=traces_sample_rate,
            before_send=filter_sensitive_data,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
        )

        logger.info(f"Sentry initialized - Environment: {environment}")
        return True

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
        return False


def filter_sensitive_data(event, hint):
    """
    Filter sensitive data from Sentry events before sending

    Args:
        event: Sentry event data
        hint: Additional context

    Returns:
        Modified event
    """
    try:
        if "extra" in event:
            event["extra"].pop("sys.argv", None)
            event["extra"] = _sanitize_dict(event["extra"])

        if "exception" in event:
            for exception in event["exception"].get("values", []):
                if exception.get("value"):
                    exception["value"] = sanitize_string(exception["value"])

        if "breadcrumbs" in event:
            breadcrumbs = event["breadcrumbs"]
            if isinstance(breadcrumbs, dict):
                breadcrumbs = breadcrumbs.get("values", [])
            for breadcrumb in breadcrumbs:
                if "message" in breadcrumb:
                    breadcrumb["message"] = sanitize_string(breadcrumb["message"])
                if "data" in breadcrumb:
                    breadcrumb["data"] = _sanitize_dict(breadcrumb["data"])

        if "request" in event and "headers" in event["request"]:
            event["request"]["headers"] = {
                k: v
                for k, v in event["request"]["headers"].items()
                if k.lower() not in ["authorization", "x-api-key", "x-auth-token"]
            }

        return event

    except Exception as e:
        logger.warning(f"Error filtering Sentry event: {e}")
        return event


def sanitize_string(text: Any) -> Any:
    """Redact 64-hex values and database credentials"""
    if not isinstance(text, str):
        return text

    text = _HEX_64.sub("[REDACTED_HEX]", text)
    text = _DATABASE_URL.sub(r"\1://[CREDENTIALS]@[HOST]/[DB]", text)
    return text


def _sanitize_dict(data: Any) -> Any:
    """Recursively sanitize sensitive information from dictionaries"""
    if not isinstance(data, dict):
        return data

    sanitized: Dict[str, Any] = {}
    for key, value in data.items():
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_dict(value)
        elif isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        else:
            sanitized[key] = value

    return sanitized


def capture_exception(error: Exception, context: Optional[dict] = None) -> str:
    """
    Capture an exception with additional context

    Returns:
        Event ID from Sentry, empty when nothing was sent
    """
    try:
        with sentry_sdk.new_scope() as scope:
            if context:
                for key, value in context.items():
                    scope.set_extra(key, value)

            return sentry_sdk.capture_exception(error) or ""

    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")
        return ""


def add_breadcrumb(
    message: str,
    category: str = "stableguard",
    level: str = "info",
    data: Optional[dict] = None,
):
    """Add a breadcrumb for debugging"""
    try:
        sentry_sdk.add_breadcrumb(
            message=message, category=category, level=level, data=data or {}
        )
    except Exception as e:
        logger.warning(f"Failed to add Sentry breadcrumb: {e}")
