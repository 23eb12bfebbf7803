"""Structured logging setup for fieldguard."""
from __future__ import annotations

import logging
import sys
from typing import FrozenSet

import structlog

_DEFAULT_LEVEL = "info"
_REDACTED = "[redacted]"

SECRET_KEYS: FrozenSet[str] = frozenset(
    {
        "password",
        "old_password",
        "new_password",
        "backup_password",
        "passphrase",
        "private_key",
        "wrapped",
        "wrapped_private_key",
        "secret",
        "key_bytes",
    }
)


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for the application.

    Every record is rendered as one JSON line on stderr with ``level``, ``ts``,
    ``msg`` and ``component`` keys, leaving stdout to command output. Entries
    named in :data:`SECRET_KEYS` are masked before rendering, whatever the
    caller bound to the event.
    """

    numeric_level = logging.getLevelName((level or _DEFAULT_LEVEL).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(
        level=numeric_level,
        handlers=[logging.StreamHandler(sys.stderr)],
        format="%(message)s",
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.stdlib.add_log_level,
            redact_secrets,
            _shape_event,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


def redact_secrets(
    _logger: structlog.BoundLoggerBase, _name: str, event_dict: dict[str, object]
) -> dict[str, object]:
    """Mask any event key that names secret material."""

    for key in list(event_dict):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = _REDACTED
    return event_dict


def _shape_event(
    logger: structlog.BoundLoggerBase, _name: str, event_dict: dict[str, object]
) -> dict[str, object]:
    # component defaults to the stdlib logger name, i.e. the emitting module
    event_dict.setdefault("component", getattr(logger, "name", None) or "fieldguard")
    if "msg" not in event_dict:
        event_dict["msg"] = event_dict.pop("event", "")
    return event_dict


__all__ = ["SECRET_KEYS", "configure_logging", "redact_secrets"]
