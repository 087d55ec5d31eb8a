"""Diagnostic logging.

stdout belongs to the protocol, so diagnostics go to a log file or
nowhere. The logger is built once by the entry point and handed to the
components that need it.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

LOGGER_NAME = "canvas_mcp"

REDACTED = "[REDACTED]"

# Patterns for sensitive argument keys
SENSITIVE_PATTERNS = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"auth", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
]

# Secrets embedded in free text
BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9~._\-+/=]+", re.IGNORECASE)
KEY_VALUE_PATTERN = re.compile(
    r"((?:access_?token|api_?token|api_?key|password|secret)[\"']?\s*[:=]\s*[\"']?)[^\s,\"'&}]+",
    re.IGNORECASE,
)


def _is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data."""
    return any(pattern.search(key) for pattern in SENSITIVE_PATTERNS)


def sanitize_arguments(arguments: dict[str, Any]) -> dict[str, Any]:
    """Sanitize arguments by redacting sensitive values.

    Args:
        arguments: Original arguments dictionary.

    Returns:
        New dictionary with sensitive values redacted.
    """
    sanitized: dict[str, Any] = {}
    for key, value in arguments.items():
        if _is_sensitive_key(str(key)):
            sanitized[key] = REDACTED
        elif isinstance(value, dict):
            sanitized[key] = sanitize_arguments(value)
        else:
            sanitized[key] = value
    return sanitized


def mask_text(text: str) -> str:
    """Redact bearer tokens and key=value secrets in free text."""
    text = BEARER_PATTERN.sub(lambda m: m.group(1) + REDACTED, text)
    return KEY_VALUE_PATTERN.sub(lambda m: m.group(1) + REDACTED, text)


class SensitiveDataFilter(logging.Filter):
    """Masks credentials in log messages and their arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = mask_text(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                mask_text(arg)
                if isinstance(arg, str)
                else sanitize_arguments(arg)
                if isinstance(arg, dict)
                else arg
                for arg in record.args
            )
        return True


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = mask_text(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def create_diagnostic_logger(
    log_file: str | Path | None = None,
    verbose: bool = False,
    name: str = LOGGER_NAME,
) -> logging.Logger:
    """Build the diagnostic logger.

    Args:
        log_file: File to append JSON lines to. None or "" discards output.
        verbose: Log at DEBUG instead of INFO.
        name: Logger name.

    Returns:
        Configured logger that never writes to stdout or stderr.
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    handler: logging.Handler
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(JsonLinesFormatter())
    else:
        handler = logging.NullHandler()

    handler.addFilter(SensitiveDataFilter())
    logger.addHandler(handler)
    return logger


def null_logger(name: str = LOGGER_NAME + ".null") -> logging.Logger:
    """A logger that discards everything, for components built without one."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger
