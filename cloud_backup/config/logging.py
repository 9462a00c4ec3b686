"""
Logging configuration with a coloured console handler and secret redaction.

Usage:
    from cloud_backup.config.logging import init_logging
    init_logging("DEBUG")
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from datetime import datetime

# ANSI color codes for console output
COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[35m",  # Magenta
    "RESET": "\033[0m",
}

# Module-specific colors for tags (last component of the logger name)
TAG_COLORS = {
    "broker": "\033[94m",  # Blue
    "exchange": "\033[95m",  # Magenta
    "store": "\033[92m",  # Green
    "s3": "\033[96m",  # Cyan
    "cron": "\033[93m",  # Yellow
    "rclone": "\033[97m",  # White
    "cli": "\033[36m",  # Cyan
}

REDACTED = "***"

# Two values per credential set: the 16 most recent sets stay redacted
MAX_SECRETS = 32

_secrets: dict[str, None] = {}
_longest_first: tuple[str, ...] = ()
_secrets_lock = threading.Lock()


def register_secret(value: str | None) -> None:
    """Mark a value as secret so it never shows up in log output.

    Only the most recent MAX_SECRETS values are kept.
    """
    global _longest_first
    if not value:
        return
    with _secrets_lock:
        _secrets.pop(value, None)
        _secrets[value] = None
        while len(_secrets) > MAX_SECRETS:
            del _secrets[next(iter(_secrets))]
        _longest_first = tuple(sorted(_secrets, key=len, reverse=True))


def clear_secrets() -> None:
    global _longest_first
    with _secrets_lock:
        _secrets.clear()
        _longest_first = ()


def redact(text: str) -> str:
    """Replace every registered secret inside text."""
    for secret in _longest_first:
        if secret in text:
            text = text.replace(secret, REDACTED)
    return text


class SecretRedactionFilter(logging.Filter):
    """Scrub registered secret material from the final log message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = redact(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True


class ColoredConsoleFormatter(logging.Formatter):
    """Formatter that adds colors and a short tag per logger."""

    def format(self, record: logging.LogRecord) -> str:
        level_color = COLORS.get(record.levelname, "")
        reset = COLORS["RESET"]

        tag = record.name.rsplit(".", 1)[-1]
        tag_color = TAG_COLORS.get(tag, "\033[37m")

        timestamp = datetime.now().strftime("%H:%M:%S")
        level_str = f"{level_color}{record.levelname:8}{reset}"
        tag_str = f"{tag_color}[{tag}]{reset}"

        extra_parts = []
        if hasattr(record, "profile_id") and record.profile_id:
            extra_parts.append(f"profile={record.profile_id}")
        if hasattr(record, "identity_id") and record.identity_id:
            extra_parts.append(f"identity={record.identity_id}")

        extra_str = f" ({', '.join(extra_parts)})" if extra_parts else ""
        msg = f"{timestamp} {level_str} {tag_str} {record.getMessage()}{extra_str}"

        if record.exc_info:
            msg += "\n" + redact(self.formatException(record.exc_info))

        return msg


# Global state
_initialized = False


def _get_console_level() -> int:
    """Get console log level from environment variable."""
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def init_logging(console_level: int | str | None = None) -> None:
    """Initialize the logging system with a redacting console handler."""
    global _initialized

    if _initialized:
        return

    if console_level is None:
        console_level = _get_console_level()
    elif isinstance(console_level, str):
        console_level = getattr(logging, console_level.upper(), logging.INFO)

    # Clear any existing handlers on root logger (from basicConfig or other sources)
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ColoredConsoleFormatter())
    console_handler.addFilter(SecretRedactionFilter())

    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    _initialized = True
