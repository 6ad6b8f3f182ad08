"""Structured logging for the research orchestrator.

Records emitted while a run is in progress carry its ``run_id`` and the
pipeline phase that produced them, so output from concurrent sub-queries and
parallel requests can be told apart. Outside a run the phase is ``-``.
"""

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, TextIO
from uuid import uuid4

import structlog
from structlog.types import EventDict, WrappedLogger

# ============================================================================
# Configuration & Constants
# ============================================================================

PACKAGE_PREFIX = "deep_research"

# Third-party loggers that flood INFO with per-request chatter during fan-out
NOISY_LOGGERS = ("httpx", "httpcore", "google_genai", "google.genai")


class LogKeys(str, Enum):
    """Field names of a rendered record."""

    RUN_ID = "run_id"
    PHASE = "phase"
    TOPIC = "topic"
    TIMESTAMP = "timestamp"
    LOGGER = "logger"
    MESSAGE = "message"
    LEVEL = "level"
    EXTRA = "extra"


@dataclass(frozen=True)
class LogDefaults:
    phase: str = "-"
    initial_phase: str = "setup"
    log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    max_value_length: int = 50
    run_id_length: int = 8


DEFAULTS = LogDefaults()

_HEADER_FIELDS = (
    LogKeys.TIMESTAMP.value,
    LogKeys.LOGGER.value,
    LogKeys.MESSAGE.value,
    LogKeys.LEVEL.value,
    LogKeys.PHASE.value,
    LogKeys.RUN_ID.value,
)


# ============================================================================
# Run Context
# ============================================================================


def new_run_id() -> str:
    return uuid4().hex[: DEFAULTS.run_id_length]


@contextmanager
def run_context(topic: str, run_id: str | None = None) -> Iterator[str]:
    """Tag every record logged inside the block with the run id, topic and phase.

    Tasks created inside the block inherit the tags. On exit the values that
    were bound before the block come back, so sequential runs in one task
    never see each other's context.
    """
    run_id = run_id or new_run_id()
    with structlog.contextvars.bound_contextvars(run_id=run_id, topic=topic, phase=DEFAULTS.initial_phase):
        yield run_id


def set_phase(phase: str) -> None:
    """Switch the phase of the enclosing ``run_context``."""
    structlog.contextvars.bind_contextvars(phase=phase)


def current_run_id() -> str | None:
    value = structlog.contextvars.get_contextvars().get(LogKeys.RUN_ID.value)
    return None if value is None else str(value)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()


# ============================================================================
# Log Processing
# ============================================================================


def _process_log_fields(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Flatten a record into its header fields plus an 'extra' bag."""
    event_dict[LogKeys.MESSAGE.value] = event_dict.pop("event", "")
    event_dict.setdefault(LogKeys.PHASE.value, DEFAULTS.phase)

    extra_fields = {key: event_dict.pop(key) for key in list(event_dict.keys()) if key not in _HEADER_FIELDS}
    if extra_fields:
        event_dict[LogKeys.EXTRA.value] = extra_fields

    return event_dict


# ============================================================================
# Human-Readable Formatting
# ============================================================================


class HumanReadableFormatter:
    """Renders records as single console lines for the CLI and tests."""

    def __init__(self, defaults: LogDefaults = DEFAULTS):
        self.defaults = defaults

    def __call__(self, _: WrappedLogger, __: str, event_dict: EventDict) -> str:
        """Format: HH:MM:SS [LEVEL] logger: message [key=value, ...] [run:id/phase]"""
        level = event_dict.get(LogKeys.LEVEL.value, "info").upper()
        logger_name = self.format_logger_name(event_dict.get(LogKeys.LOGGER.value, ""))
        message = event_dict.get(LogKeys.MESSAGE.value, "")
        extra = dict(event_dict.get(LogKeys.EXTRA.value, {}))
        # one topic per run id
        extra.pop(LogKeys.TOPIC.value, None)

        time_str = self.format_timestamp(event_dict.get(LogKeys.TIMESTAMP.value, ""))
        run_str = self.format_run(
            event_dict.get(LogKeys.RUN_ID.value, ""), event_dict.get(LogKeys.PHASE.value, self.defaults.phase)
        )
        return f"{time_str} [{level}] {logger_name}: {message}{self.format_extra_fields(extra)}{run_str}"

    def format_field_value(self, value: Any) -> str:
        str_value = str(value)
        if len(str_value) > self.defaults.max_value_length:
            return f"{str_value[: self.defaults.max_value_length - 3]}..."
        return str_value

    def format_timestamp(self, timestamp_str: str) -> str:
        if not timestamp_str:
            return ""
        try:
            return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00")).strftime("%H:%M:%S")
        except (ValueError, AttributeError):
            return timestamp_str.split("T")[1][:8] if "T" in timestamp_str else ""

    def format_run(self, run_id: str, phase: str) -> str:
        if not run_id:
            return "" if phase == self.defaults.phase else f" [{phase}]"
        return f" [run:{run_id[: self.defaults.run_id_length]}/{phase}]"

    def format_logger_name(self, logger_name: str) -> str:
        """Shorten 'deep_research.research.scheduler' to 'research.scheduler'."""
        if not logger_name.startswith(PACKAGE_PREFIX):
            return logger_name

        parts = logger_name.replace(f"{PACKAGE_PREFIX}.", "").split(".")
        if len(parts) >= 2:
            return f"{parts[-2]}.{parts[-1]}"
        return parts[-1] if parts else logger_name

    def format_extra_fields(self, extra: dict[str, Any]) -> str:
        if not extra:
            return ""
        formatted_parts = [f"{key}={self.format_field_value(value)}" for key, value in extra.items()]
        return f" [{', '.join(formatted_parts)}]"


# ============================================================================
# Configuration
# ============================================================================


def _level_from_env(variable: str, default: str) -> int:
    return getattr(logging, os.environ.get(variable, default).upper(), getattr(logging, default))


def configure_structlog(testing: bool = False, stream: TextIO | None = None) -> None:
    """Configure structured logging with JSON or human-readable output.

    ``LOGGING_LEVEL`` sets the package level; ``NOISY_LOGGING_LEVEL`` caps the
    HTTP and provider SDK loggers, which otherwise log every sub-query request.
    Records go to ``stream`` (stdout by default).
    """
    level = _level_from_env("LOGGING_LEVEL", DEFAULTS.log_level)

    logging.basicConfig(format="%(message)s", level=level, stream=stream or sys.stdout)
    logging.getLogger().setLevel(level)

    noisy_level = _level_from_env("NOISY_LOGGING_LEVEL", DEFAULTS.noisy_log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, noisy_level))

    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.contextvars.merge_contextvars,
        _process_log_fields,
        structlog.processors.TimeStamper(fmt="iso"),
        HumanReadableFormatter() if testing else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,  # type: ignore[arg-type]
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name or __name__)  # type: ignore
