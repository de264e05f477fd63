"""structlog setup shared by the library, the worker and the CLI.

Console rendering for local runs, JSON lines for deployed workers. Context
bound with ``bind_context`` (correlation ids, user ids) is merged into every
entry emitted from the same thread or task.
"""

import logging
import sys
from typing import Any, Final

import structlog
from structlog.types import EventDict, Processor

SERVICE_NAME: Final[str] = "calendar_merge"

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "openai")


def add_service_name(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag every entry with the service name."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _processors(json_logs: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_service_name,
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Route structlog through stdlib logging at ``log_level``.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: Emit one JSON object per line instead of console output

    Example:
        >>> setup_logging("DEBUG")
        >>> setup_logging("INFO", json_logs=True)
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger; call as ``logger.info("snake_case_event", key=value)``.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("merge_persisted", merged_event_id="e-1", source_count=3)
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**fields: Any) -> None:
    """Attach fields to every later entry in the current context."""
    structlog.contextvars.bind_contextvars(**fields)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
