# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Structured logging configuration for the Gengar Bark service.

Records are emitted as one JSON object per line. A handler-level filter
redacts Slack tokens, MCP server auth tokens and the encryption key, and
another merges the fields bound with ``LogContext`` for the current
asyncio task.
"""

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


SENSITIVE_KEYS = frozenset({
    'password', 'token', 'secret', 'authorization', 'bearer', 'credentials',
    'auth_token', 'authtoken', 'auth_token_ciphertext', 'access_token',
    'refresh_token', 'api_key', 'api_token', 'signing_secret',
    'encryption_key', 'mcp_encryption_key', 'slack_bot_token',
})

# Attributes every LogRecord has; anything else came from extra= or LogContext
STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord('', logging.INFO, '', 0, '', None, None))
) | {'message', 'asctime', 'taskName'}

_context: ContextVar[Dict[str, Any]] = ContextVar('gengar_bark_log_context', default={})


def _json_field(name: str) -> "re.Pattern[str]":
    return re.compile(r'("' + name + r'"\s*:\s*")[^"]*(")', re.IGNORECASE)


_REDACTIONS = [
    (re.compile(r'xoxb-[a-zA-Z0-9-]+'), 'REDACTED_BOT_TOKEN'),
    (re.compile(r'xoxp-[a-zA-Z0-9-]+'), 'REDACTED_USER_TOKEN'),
    (re.compile(r'xapp-[a-zA-Z0-9-]+'), 'REDACTED_APP_TOKEN'),
    (re.compile(r'(Authorization:\s*Bearer\s+)[a-zA-Z0-9._~+/=-]+', re.IGNORECASE), r'\1REDACTED_TOKEN'),
    (re.compile(r'Bearer\s+[a-zA-Z0-9._~+/=-]+'), 'Bearer REDACTED_TOKEN'),
    (re.compile(r'((?:auth_token|authToken|encryption_key)=)[^\s&,]+'), r'\1REDACTED'),
] + [
    (_json_field(name), r'\1REDACTED\2')
    for name in ('auth_token', 'authToken', 'password', 'secret', 'access_token',
                 'signing_secret', 'encryption_key')
]


def redact(value: Any) -> Any:
    """Strip known secret shapes out of a string; other values pass through."""
    if not isinstance(value, str):
        return value
    for pattern, replacement in _REDACTIONS:
        value = pattern.sub(replacement, value)
    return value


def redact_mapping(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``data`` with sensitive keys masked, recursing into dicts and lists."""
    result = {}
    for key, value in data.items():
        if str(key).lower() in SENSITIVE_KEYS:
            result[key] = 'REDACTED'
        elif isinstance(value, dict):
            result[key] = redact_mapping(value)
        elif isinstance(value, list):
            result[key] = [
                redact_mapping(item) if isinstance(item, dict) else redact(item)
                for item in value
            ]
        else:
            result[key] = redact(value)
    return result


class SensitiveDataFilter(logging.Filter):
    """Redacts secrets from the message, its args and any extra fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)

        if isinstance(record.args, dict):
            record.args = redact_mapping(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(redact(arg) for arg in record.args)

        for key, value in list(vars(record).items()):
            if key in STANDARD_ATTRS or key.startswith('_'):
                continue
            if key.lower() in SENSITIVE_KEYS:
                setattr(record, key, 'REDACTED')
            elif isinstance(value, dict):
                setattr(record, key, redact_mapping(value))
            else:
                setattr(record, key, redact(value))

        return True


class ContextFilter(logging.Filter):
    """Adds the fields bound by ``LogContext``; explicit extra= fields win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
            log_data['exception_type'] = record.exc_info[0].__name__ if record.exc_info[0] else None

        for key, value in vars(record).items():
            if key not in STANDARD_ATTRS and not key.startswith('_'):
                log_data.setdefault(key, value)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure the root logger.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: 'json' for one object per line, anything else for plain text
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    handler.addFilter(ContextFilter())
    handler.addFilter(SensitiveDataFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for noisy in ('slack_sdk', 'httpx', 'httpcore', 'aiohttp.access', 'asyncpg'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; call with ``__name__``."""
    return logging.getLogger(name)


class LogContext:
    """
    Binds fields to every record logged in the current asyncio task.

    Usage:
        with LogContext(event_id="Ev01", user_id="U123"):
            logger.info("Publishing App Home")

    Contexts nest; the inner one sees the outer fields too.
    """

    def __init__(self, **fields):
        self.fields = fields
        self._token = None

    def __enter__(self):
        self._token = _context.set({**_context.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _context.reset(self._token)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    error: Exception,
    **context
) -> None:
    """
    Log an error with its type, message and stack trace.

    Retry attempts and the failed operation are included when the
    exception carries them (``SlackAPIRetryError``, ``PersistenceError``).
    """
    extra = {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **context
    }
    for attribute, field in (('attempts', 'retry_attempts'), ('operation', 'operation')):
        value = getattr(error, attribute, None)
        if value is not None:
            extra[field] = value

    logger.error(message, extra=extra, exc_info=error)


def log_api_call(
    logger: logging.Logger,
    api_name: str,
    method: str,
    duration_ms: float,
    success: bool = True,
    status_code: Optional[int] = None,
    **context
) -> None:
    """
    Log an outbound API call with timing and outcome.

    Args:
        logger: Logger instance
        api_name: Name of the API (e.g., "Slack")
        method: API method (e.g., "views.publish")
        duration_ms: Request duration in milliseconds
        success: Whether the call succeeded
        status_code: HTTP status code, when known
        **context: Additional context fields
    """
    extra = {
        'api_name': api_name,
        'method': method,
        'duration_ms': round(duration_ms, 1),
        'success': success,
        **context
    }
    if status_code is not None:
        extra['status_code'] = status_code

    outcome = 'ok' if success else 'failed'
    logger.log(logging.INFO if success else logging.ERROR, f"{api_name} {method} {outcome}", extra=extra)
