"""Logging configuration for edu-bridge using structlog.

Console output is human-readable and routed through rich so it does not tear
the progress bars; the optional log file receives one JSON object per line
for auditing a migration afterwards. Every line logged during a run carries
that run's id.
"""

import json
import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from uuid import uuid4

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from edu_migration import __version__

APP_NAME = "edu-bridge"

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Substrings of payload keys whose values never reach the logs
SENSITIVE_FIELDS = ("password", "token", "authorization", "secret")


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp the application name and version on every entry."""
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


class JSONFileFormatter(logging.Formatter):
    """Writes each record rendered by structlog as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": _ANSI_PATTERN.sub("", record.getMessage()),
            "app": APP_NAME,
            "version": __version__,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Default: WARNING
        log_format: File output format ('json' or 'console'). Console output is
            always human-readable.
        log_file: Optional path to log file
        file_level: File log level (defaults to DEBUG for detailed file logs)
    """
    console_level = getattr(logging, level.upper(), logging.WARNING)
    file_log_level = getattr(logging, (file_level or "DEBUG").upper(), logging.DEBUG)

    # RichHandler keeps log lines from tearing the CLI progress bars
    rich_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(console_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(rich_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(file_log_level)
        if log_format == "json":
            file_handler.setFormatter(JSONFileFormatter())
        else:
            file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)

    # The file handler may be more verbose than the console
    effective_level = min(console_level, file_log_level) if log_file else console_level

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            add_app_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(effective_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name (typically __name__)
    """
    return structlog.get_logger(name)


@contextmanager
def run_log_context(kind: str, **values: Any) -> Iterator[str]:
    """Bind a fresh run id (plus ``values``) to every line logged inside.

    Tasks spawned inside the block inherit the binding.

    Yields:
        The run id
    """
    run_id = uuid4().hex[:8]
    with structlog.contextvars.bound_contextvars(run_id=run_id, run_kind=kind, **values):
        yield run_id


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int,
    duration_ms: float,
) -> None:
    """Log one backend round trip; server errors at WARNING, refusals at INFO."""
    if status_code >= 500:
        log = logger.warning
    elif status_code >= 400:
        log = logger.info
    else:
        log = logger.debug
    log(
        "api_request",
        method=method,
        url=url,
        status_code=status_code,
        duration_ms=round(duration_ms, 2),
    )


def log_phase_progress(
    logger: structlog.stdlib.BoundLogger,
    phase: str,
    completed: int,
    total: int,
    username: str,
) -> None:
    """Log that ``username`` finished ``phase`` and how far the phase is."""
    logger.info(
        "phase_progress",
        phase=phase,
        completed=completed,
        total=total,
        percentage=round(completed / total * 100) if total else 100,
        username=username,
    )


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Copy of ``payload`` with passwords and tokens replaced by "[REDACTED]".

    Args:
        payload: Decoded request or response body
        max_depth: Maximum recursion depth
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(payload, dict):
        return {
            key: "[REDACTED]"
            if any(field in str(key).lower() for field in SENSITIVE_FIELDS)
            else sanitize_payload(value, max_depth - 1)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [sanitize_payload(item, max_depth - 1) for item in payload]
    return payload


def truncate_payload(payload: Any, max_size: int = 10000) -> str:
    """Render ``payload`` as JSON, cut to ``max_size`` characters."""
    try:
        text = json.dumps(payload, indent=2, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        text = str(payload)

    if len(text) > max_size:
        return text[:max_size] + f"\n... [TRUNCATED - {len(text)} total chars]"
    return text


def should_log_payloads(logger: structlog.stdlib.BoundLogger, log_payloads_enabled: bool) -> bool:
    """Payloads are logged only with the log_payloads flag and DEBUG enabled."""
    if not log_payloads_enabled:
        return False
    is_enabled_for = getattr(logger, "is_enabled_for", None)
    if is_enabled_for is not None:
        return is_enabled_for(logging.DEBUG)
    return True
