"""Centralized logging utilities for the authorization core.

This module provides:
- Logging configuration from AuthConfig
- Safe preview utilities for sensitive data
- Secret redaction (JWTs, bearer tokens, passwords)
- Structured logging with session/user context
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .config import AuthConfig, LogLevel


# Patterns for detecting secrets (common patterns to redact)
SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|api[_-]?key)\s*[:=]\s*["\']?([^"\'\s]+)',
    r'(?i)(?:bearer|basic)\s+([a-zA-Z0-9+/=._-]+)',
    r'eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]*',  # JWT
    r'[a-f0-9]{64}',  # session ids
]


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a safe, length-bounded, single-line preview of a value.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A truncated string representation
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"

    return s


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Redact secret patterns (tokens, passwords, session ids) from text."""
    if not isinstance(text, str):
        return text

    result = text
    for pattern in SECRET_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE | re.DOTALL)

    return result


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """Preview + optional redaction. Use this for any request-supplied value."""
    preview = safe_preview(value, limit=limit)
    if redact:
        preview = redact_secrets(preview)
    return preview


def short_id(value: Optional[str], keep: int = 8) -> str:
    """Shorten an opaque identifier for log lines (``abcd1234…``)."""
    if not value:
        return ""
    return value if len(value) <= keep else value[:keep] + "…"


class AuthLogFormatter(logging.Formatter):
    """Formatter with session/user context and optional JSON output."""

    _RESERVED = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "exc_info", "exc_text", "stack_info",
        "taskName", "session_id", "user_id",
    }

    def __init__(
        self,
        json_format: bool = True,
        redact_secrets: bool = True,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        session_id = getattr(record, "session_id", None)
        user_id = getattr(record, "user_id", None)

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if session_id:
            log_data["session_id"] = short_id(str(session_id))
        if user_id:
            log_data["user_id"] = str(user_id)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._RESERVED:
                log_data[key] = safe_log_value(value, redact=self.redact_secrets)

        if self.redact_secrets:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            f"{log_data['level']}",
            f"{log_data['logger']}",
        ]
        if user_id:
            parts.append(f"user={log_data['user_id']}")
        if session_id:
            parts.append(f"session={log_data['session_id']}")
        parts.append(f": {log_data['message']}")
        return " ".join(parts)


class AuthLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds session_id and user_id to every record.

    Usage:
        logger = get_auth_logger(__name__, user_id=payload.user_id)
        logger.info("Session created", session_id=session_id)
    """

    def __init__(
        self,
        logger: logging.Logger,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.session_id = session_id
        self.user_id = user_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        session_id = kwargs.pop("session_id", self.session_id)
        user_id = kwargs.pop("user_id", self.user_id)

        extra = kwargs.get("extra", {})
        if session_id:
            extra["session_id"] = session_id
        if user_id:
            extra["user_id"] = user_id
        kwargs["extra"] = extra

        return msg, kwargs


def setup_logging(
    config: Optional[AuthConfig] = None,
    json_format: Optional[bool] = None,
    redact_secrets: bool = True,
) -> None:
    """Configure root logging from AuthConfig.

    Args:
        config: AuthConfig instance (if None, loads from environment)
        json_format: Override ``config.log_json``
        redact_secrets: Whether to redact secrets (default: True)
    """
    if config is None:
        from .config import load_config_from_env
        config = load_config_from_env()

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    log_level = level_map.get(config.log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        AuthLogFormatter(
            json_format=config.log_json if json_format is None else json_format,
            redact_secrets=redact_secrets,
        )
    )
    root_logger.addHandler(console_handler)

    if config.service_name:
        logging.getLogger(config.service_name).setLevel(log_level)


def get_auth_logger(
    name: str,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> AuthLoggerAdapter:
    """Get a logger adapter carrying session/user context."""
    return AuthLoggerAdapter(logging.getLogger(name), session_id=session_id, user_id=user_id)


__all__ = [
    "AuthLogFormatter",
    "AuthLoggerAdapter",
    "get_auth_logger",
    "redact_secrets",
    "safe_log_value",
    "safe_preview",
    "setup_logging",
    "short_id",
]
