"""Task-queue backed dispatcher for background summary jobs."""

from __future__ import annotations

from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.exceptions import RepositoryError
from calendar_merge.domain.merge_constants import SUMMARY_TASK_MAX_ATTEMPTS
from calendar_merge.domain.models import SummaryJobPayload
from calendar_merge.domain.task_queue import TaskCreate, TaskType
from calendar_merge.ports.task_queue import TaskQueuePort

logger = get_logger(__name__)

SUMMARY_TASK_PRIORITY = 40


def summary_idempotency_key(audit_log_id: str) -> str:
    return f"summarize:{audit_log_id}"


class TaskQueueSummaryDispatcher:
    """Enqueue ``SUMMARIZE`` tasks; one task per audit log."""

    def __init__(
        self,
        task_queue: TaskQueuePort,
        *,
        max_attempts: int = SUMMARY_TASK_MAX_ATTEMPTS,
    ) -> None:
        self._task_queue = task_queue
        self._max_attempts = max_attempts

    def enqueue_summary(self, payload: SummaryJobPayload) -> bool:
        """Submit a summary job.

        Returns:
            True when the queue accepted the task, False on storage errors
        """
        task = TaskCreate(
            task_type=TaskType.SUMMARIZE,
            payload=payload.to_task_payload(),
            priority=SUMMARY_TASK_PRIORITY,
            idempotency_key=summary_idempotency_key(payload.audit_log_id),
            max_attempts=self._max_attempts,
        )
        try:
            queued = self._task_queue.enqueue(task)
        except RepositoryError as exc:
            logger.warning(
                "summary_enqueue_failed",
                audit_log_id=payload.audit_log_id,
                error=str(exc),
            )
            return False

        logger.info(
            "summary_enqueued",
            task_id=str(queued.task_id),
            audit_log_id=payload.audit_log_id,
            event_count=len(payload.event_data),
        )
        return True


__all__ = ["SUMMARY_TASK_PRIORITY", "TaskQueueSummaryDispatcher", "summary_idempotency_key"]
