"""
Credential redaction for logs.

SECURITY REQUIREMENTS:
- Tokens NEVER appear in logs (access_token, refresh_token)
- Client secrets and the master key NEVER appear in logs
- ALLOWED in logs: account ids, provider, environment, display names

Usage:
    from marketplace_oauth.credentials.redaction import setup_credential_logging

    setup_credential_logging()  # once, at application startup
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"

# Token shapes that may leak into free text (exception messages, URLs)
CREDENTIAL_SECRET_PATTERNS = [
    re.compile(r"(v\^1\.1#[A-Za-z0-9^#+/=_\-.]+)"),  # eBay user tokens
    re.compile(r"(Bearer\s+[A-Za-z0-9._~+/=\-^#]+)", re.IGNORECASE),
    re.compile(r"(Basic\s+[A-Za-z0-9+/=]{8,})", re.IGNORECASE),
    re.compile(r"((?:refresh_token|access_token|client_secret)=[^&\s]+)", re.IGNORECASE),
]

SECRET_KEY_PATTERNS = (
    "token", "secret", "password", "credential", "authorization",
    "bearer", "api_key", "apikey", "master_key",
)

# Extra fields that contain a secret-looking word but carry no secret
ALLOWED_KEYS = frozenset({
    "token_id",
    "token_type",
    "refresh_token_rotated",
})


def is_credential_secret_key(key: str) -> bool:
    """True if a field name indicates a secret value."""
    if key in ALLOWED_KEYS:
        return False
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """Redact token-shaped substrings from a string value."""
    if not isinstance(value, str):
        return value

    result = value
    for pattern in CREDENTIAL_SECRET_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    Usage:
        safe = redact_credential_data({"refresh_token": "v^1.1#...", "provider": "ebay"})
    """
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_credential_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, (list, tuple)):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


# LogRecord attributes that are never user supplied
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        logger.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        # Fields passed through extra={}
        for key in list(record.__dict__.keys()):
            if key in _RECORD_ATTRIBUTES:
                continue
            value = getattr(record, key)
            if is_credential_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(value, (str, dict, list)):
                setattr(record, key, redact_credential_data(value))

        return True


CREDENTIAL_LOGGERS = (
    "marketplace_oauth.credentials",
    "marketplace_oauth.services",
    "marketplace_oauth.platform",
    "sync_logs.fallback",
)


def setup_credential_logging() -> None:
    """
    Configure credential-safe logging.

    Filters attached to a logger do not apply to its children, so the filter
    goes on every handler of the root logger as well as on the package
    loggers. Idempotent.
    """
    credential_filter = CredentialLoggingFilter()

    for logger_name in CREDENTIAL_LOGGERS:
        log = logging.getLogger(logger_name)
        if not any(isinstance(f, CredentialLoggingFilter) for f in log.filters):
            log.addFilter(credential_filter)

    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, CredentialLoggingFilter) for f in handler.filters):
            handler.addFilter(credential_filter)

    logger.info("Credential logging configured with redaction filter")
