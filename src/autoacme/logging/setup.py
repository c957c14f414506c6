"""Structured logging configuration for AutoACME.

Provides JSON and text formatters, a challenge-context filter that makes
sure every record carries ``host`` and ``challenge_type`` (and, inside
the self-hosted listener, the request's method, path and client), and a
one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from flask import has_request_context, request

if TYPE_CHECKING:
    from autoacme.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Our own well-known context attributes (handled explicitly):
        "host",
        "challenge_type",
        "client_ip",
        "method",
        "path",
    }
)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        # Challenge context (set by ChallengeContextFilter or the caller)
        for attr in ("host", "challenge_type", "client_ip", "method", "path"):
            value = getattr(record, attr, None)
            if value not in (None, "-", ""):
                data[attr] = value

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(host)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class ChallengeContextFilter(logging.Filter):
    """Guarantee the challenge context attributes on every log record.

    ``host`` and ``challenge_type`` default to ``"-"`` unless the caller
    passed them through ``extra``.  While a listener request is being
    handled, ``client_ip``, ``method`` and ``path`` come from the Flask
    request.
    """

    CONTEXT_ATTRS = frozenset(
        {
            "host",
            "challenge_type",
            "client_ip",
            "method",
            "path",
        }
    )

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "host"):
            record.host = "-"  # type: ignore[attr-defined]
        if not hasattr(record, "challenge_type"):
            record.challenge_type = "-"  # type: ignore[attr-defined]
        if not hasattr(record, "client_ip"):
            record.client_ip = None  # type: ignore[attr-defined]
        if not hasattr(record, "method"):
            record.method = None  # type: ignore[attr-defined]
        if not hasattr(record, "path"):
            record.path = None  # type: ignore[attr-defined]

        if has_request_context():
            record.client_ip = request.remote_addr  # type: ignore[attr-defined]
            record.method = request.method  # type: ignore[attr-defined]
            record.path = request.path  # type: ignore[attr-defined]

        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``autoacme`` logger hierarchy from settings.

    Replaces any previously installed handlers.  Returns the root
    ``autoacme`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("autoacme")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ChallengeContextFilter())
    root.addHandler(console)

    # Quieten noisy third-party loggers
    for lib in ("werkzeug", "acme.client"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
