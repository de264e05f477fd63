"""Process lifecycle for long-running scripts: logging, signals, polling."""

from __future__ import annotations

import signal
import threading
from types import FrameType
from typing import Protocol

from calendar_merge.config.logging_config import get_logger, setup_logging
from calendar_merge.config.settings import Settings

logger = get_logger(__name__)


class Worker(Protocol):
    def process_available_tasks(self) -> int: ...


class ShutdownFlag:
    """Set by SIGTERM/SIGINT; loops check it between iterations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def request(self, signum: int | None = None, frame: FrameType | None = None) -> None:
        if signum is not None:
            logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        self._event.set()

    def install(self) -> None:
        """Route SIGTERM and SIGINT to ``request``."""
        signal.signal(signal.SIGTERM, self.request)
        signal.signal(signal.SIGINT, self.request)


def initialize_logging(settings: Settings, *, json_logs: bool = False) -> None:
    json_logs = json_logs or settings.json_logs
    setup_logging(log_level=settings.log_level, json_logs=json_logs)
    logger.info("logging_initialized", level=settings.log_level, json_logs=json_logs)


def run_worker_loop(
    worker: Worker,
    shutdown: ShutdownFlag,
    *,
    poll_interval: float,
    run_once: bool = False,
    error_backoff_seconds: float = 1.0,
) -> int:
    """Drive ``worker`` until shutdown; sleep ``poll_interval`` when idle.

    A busy queue is drained without sleeping. With ``run_once`` a single
    batch is processed and worker errors propagate.

    Returns:
        Total number of leased tasks
    """
    poll_interval = max(0.1, poll_interval)
    logger.info("worker_loop_started", poll_interval=poll_interval, run_once=run_once)

    iterations = 0
    processed_total = 0
    while not shutdown.is_set():
        iterations += 1
        try:
            processed = worker.process_available_tasks()
        except Exception:  # noqa: BLE001
            logger.exception("worker_iteration_failed", iteration=iterations)
            if run_once:
                raise
            shutdown.wait(error_backoff_seconds)
            continue

        processed_total += processed
        if run_once:
            break
        if processed == 0:
            shutdown.wait(poll_interval)

    logger.info(
        "worker_loop_stopped", iterations=iterations, processed=processed_total
    )
    return processed_total


__all__ = ["ShutdownFlag", "Worker", "initialize_logging", "run_worker_loop"]
