"""Helpers for resolving task queue adapters from repositories."""

from __future__ import annotations

from collections.abc import Callable

from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.exceptions import RepositoryError
from calendar_merge.ports.task_queue import TaskQueuePort

logger = get_logger(__name__)


class TaskQueueUnavailableError(RuntimeError):
    """Raised when the repository does not expose a task queue."""


def resolve_task_queue(repository: object) -> TaskQueuePort:
    """Obtain the task queue adapter from the configured repository."""

    provider_raw = getattr(repository, "task_queue", None)
    if not callable(provider_raw):
        msg = "Repository does not expose a task_queue method"
        raise TaskQueueUnavailableError(msg)
    provider: Callable[[], TaskQueuePort] = provider_raw

    try:
        queue = provider()
    except RepositoryError as exc:
        logger.error(
            "task_queue_resolution_failed",
            repository=type(repository).__name__,
            error=str(exc),
        )
        raise TaskQueueUnavailableError("Failed to resolve task queue") from exc

    required_methods = ("enqueue", "enqueue_many", "lease", "complete", "fail")
    if not all(hasattr(queue, name) for name in required_methods):
        msg = "Resolved task queue does not provide required task queue methods"
        raise TaskQueueUnavailableError(msg)

    return queue


__all__ = ["TaskQueueUnavailableError", "resolve_task_queue"]
