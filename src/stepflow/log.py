"""structlog configuration and per-step log capture."""

import contextvars
import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from stepflow.domain.value_object import LogEntry, utc_now

_step_logs: contextvars.ContextVar[list[LogEntry] | None] = contextvars.ContextVar("step_logs", default=None)

_RESERVED_KEYS = {"event", "timestamp", "level", "logger", "exc_info", "stack_info"}


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


def collect_step_logs(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor that copies events into the active step's log sink."""
    sink = _step_logs.get()
    if sink is not None:
        sink.append(
            LogEntry(
                timestamp=utc_now(),
                level=method_name,
                message=str(event_dict.get("event", "")),
                metadata={k: _plain(v) for k, v in event_dict.items() if k not in _RESERVED_KEYS},
            )
        )
    return event_dict


@contextmanager
def capture_step_logs() -> Iterator[list[LogEntry]]:
    """
    Collect every structlog event emitted in this context into a list.

    Threads started with ``contextvars.copy_context().run`` share the sink.

    :returns: The list that receives the captured entries
    :rtype: Iterator[list[LogEntry]]
    """
    sink: list[LogEntry] = []
    token = _step_logs.set(sink)
    try:
        yield sink
    finally:
        _step_logs.reset(token)


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """
    Configure structlog on top of the standard library logger.

    :param level: Minimum level for emitted records
    :type level: str
    :param fmt: ``json`` for JSON lines, anything else for the console renderer
    :type fmt: str
    """
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            collect_step_logs,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def ensure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure logging unless the application already did."""
    if not structlog.is_configured():
        configure_logging(level, fmt)
