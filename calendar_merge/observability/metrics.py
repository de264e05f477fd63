"""Prometheus metrics for merge operations and summary dispatch.

The HTTP exporter is opt-in: call ``ensure_metrics_exporter()`` or set
``METRICS_EXPORTER_AUTO_START=1``.
"""

from __future__ import annotations

import os
import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from calendar_merge.config.logging_config import get_logger

logger = get_logger(__name__)

MERGE_OPERATIONS_TOTAL: Final[Counter] = Counter(
    "calendar_merge_operations_total",
    "Merge invocations by outcome",
    labelnames=("outcome",),
)

MERGE_DURATION_SECONDS: Final[Histogram] = Histogram(
    "calendar_merge_duration_seconds",
    "Duration of merge invocations in seconds",
)

MERGED_EVENTS_TOTAL: Final[Counter] = Counter(
    "calendar_merge_source_events_total",
    "Source events consumed by successful merges",
)

SUMMARY_OUTCOMES_TOTAL: Final[Counter] = Counter(
    "calendar_merge_summary_outcomes_total",
    "How audit notes were produced",
    labelnames=("path",),
)

_exporter_lock = threading.Lock()
_exporter_port: int | None = None
DEFAULT_METRICS_PORT: Final[int] = 9000
METRICS_PORT_ENV: Final[str] = "METRICS_PORT"
METRICS_EXPORTER_AUTO_START_ENV: Final[str] = "METRICS_EXPORTER_AUTO_START"
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


def _metrics_port() -> int:
    raw = os.getenv(METRICS_PORT_ENV, "").strip()
    if not raw:
        return DEFAULT_METRICS_PORT
    if not raw.isdigit():
        logger.warning("metrics_port_invalid", port=raw, fallback=DEFAULT_METRICS_PORT)
        return DEFAULT_METRICS_PORT
    return int(raw)


def ensure_metrics_exporter() -> int:
    """Serve ``/metrics`` over HTTP, starting the server at most once.

    Returns:
        Port the exporter listens on

    Raises:
        OSError: The port could not be bound
    """
    global _exporter_port
    with _exporter_lock:
        if _exporter_port is not None:
            return _exporter_port

        port = _metrics_port()
        try:
            start_http_server(port)
        except OSError as exc:
            logger.error("metrics_exporter_start_failed", port=port, error=str(exc))
            raise

        _exporter_port = port
        logger.info("metrics_exporter_started", port=port)
        return port


__all__ = [
    "MERGED_EVENTS_TOTAL",
    "MERGE_DURATION_SECONDS",
    "MERGE_OPERATIONS_TOTAL",
    "SUMMARY_OUTCOMES_TOTAL",
    "ensure_metrics_exporter",
]


if os.getenv(METRICS_EXPORTER_AUTO_START_ENV, "").strip().lower() in _TRUTHY:
    ensure_metrics_exporter()
