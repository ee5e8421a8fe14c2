"""
Logging configuration using structlog for structured, JSON-based logging.

Git reads credentials from the helper's stdout, so every log line goes to
stderr or, when ``GIT_APP_AUTH_DEBUG_LOG`` names a file, is appended to that
file. Values of sensitive keys are replaced with fingerprints before they
reach any renderer, and credentials embedded in other values (URLs with
userinfo, host tokens, JWTs, PEM keys) are scrubbed.
"""

import logging
import os
import sys
from collections.abc import MutableMapping
from pathlib import Path
from typing import IO, Any

import structlog

from git_app_auth.utils.secrets import fingerprint, scrub

DEBUG_LOG_ENV = "GIT_APP_AUTH_DEBUG_LOG"

SENSITIVE_KEYS = frozenset({"token", "secret", "password", "private_key", "assertion", "jwt"})


def redact_secrets(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Replace values of sensitive keys with a sha256 fingerprint.

    Other string values are scrubbed of credentials they carry: URL
    userinfo, host tokens, JWTs and PEM private keys.

    Args:
        _logger: Wrapped logger (unused)
        _method_name: Name of the log method (unused)
        event_dict: The structlog event dictionary

    Returns:
        The event dictionary with sensitive values redacted
    """
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_KEYS and value:
            event_dict[key] = fingerprint(str(value))
        elif isinstance(value, str):
            event_dict[key] = scrub(value)
    return event_dict


def _open_debug_log(path: str) -> IO[str] | None:
    log_path = Path(path).expanduser()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(log_path, os.O_CREAT | os.O_WRONLY | os.O_APPEND, 0o600)
    except OSError:
        return None
    return os.fdopen(fd, "a", encoding="utf-8")


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure structured logging with JSON output.

    Sets up structlog with a pipeline of processors for structured logs that
    include timestamps, log levels, stack traces and contextual information.
    The stdlib ``logging`` module used by the secret backends is routed to
    the same destination.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    stream: IO[str] = sys.stderr
    debug_log = os.getenv(DEBUG_LOG_ENV)
    if debug_log:
        opened = _open_debug_log(debug_log)
        if opened is not None:
            stream = opened
            log_level = "DEBUG"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(stream=stream, level=log_level.upper(), force=True)


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Args:
        name: Optional logger name (typically __name__ from calling module)

    Returns:
        A structlog logger instance

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("credential_resolved", identity="ci-bot", stage="exchange")
    """
    return structlog.get_logger(name)
