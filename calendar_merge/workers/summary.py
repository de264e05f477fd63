"""Summary worker backed by the task queue."""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Final

from pydantic import ValidationError as PydanticValidationError

from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.exceptions import ValidationError
from calendar_merge.domain.merge_constants import fallback_note
from calendar_merge.domain.models import SummaryJobPayload
from calendar_merge.domain.protocols import AuditSinkProtocol, SummarizerProtocol
from calendar_merge.domain.task_queue import Task, TaskType
from calendar_merge.observability.metrics import SUMMARY_OUTCOMES_TOTAL
from calendar_merge.observability.tracing import correlation_scope
from calendar_merge.ports.task_queue import TaskQueuePort

logger = get_logger(__name__)

RETRY_DELAY_CAP_SECONDS: Final[float] = 300.0
DEFAULT_BATCH_SIZE: Final[int] = 8


def _default_jitter(base: float) -> float:
    return random.uniform(0.0, base * 0.25)


class _BaseWorker:
    """Lease tasks of one type, run them, and record the outcome.

    A failing task is rescheduled after ``2 ** (attempts - 1)`` seconds plus
    jitter, capped at five minutes, until its attempts run out.
    """

    def __init__(
        self,
        *,
        task_queue: TaskQueuePort,
        task_type: TaskType,
        batch_size: int = DEFAULT_BATCH_SIZE,
        jitter_provider: Callable[[float], float] | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self._task_queue = task_queue
        self._task_type = task_type
        self._batch_size = batch_size
        self._jitter = jitter_provider or _default_jitter

    def process_available_tasks(self) -> int:
        """Run one leased batch; returns how many tasks were leased."""
        tasks = self._task_queue.lease(self._task_type, self._batch_size)
        for task in tasks:
            with correlation_scope(str(task.task_id), task_type=self._task_type.value):
                self._run(task)
        return len(tasks)

    def _run(self, task: Task) -> None:
        logger.info("worker_task_started", attempts=task.attempts)
        try:
            self._handle_task(task)
        except Exception as exc:  # noqa: BLE001
            retry_at = self._retry_at(task)
            logger.exception(
                "worker_task_failed",
                attempts=task.attempts,
                will_retry=retry_at is not None,
            )
            self._task_queue.fail(
                task.task_id,
                error=f"{type(exc).__name__}: {exc}",
                retry_at=retry_at,
            )
            return

        self._task_queue.complete(task.task_id)
        logger.info("worker_task_completed", attempts=task.attempts)

    def _retry_at(self, task: Task) -> datetime | None:
        if task.is_final_attempt:
            return None
        base = min(RETRY_DELAY_CAP_SECONDS, 2.0 ** max(task.attempts - 1, 0))
        delay = max(1.0, base + max(0.0, self._jitter(base)))
        return datetime.now(tz=UTC) + timedelta(seconds=delay)

    def _handle_task(self, task: Task) -> None:
        raise NotImplementedError


class SummaryWorker(_BaseWorker):
    """Fill audit notes for merges whose summary was dispatched.

    Events are rebuilt from the job snapshot, so the merged sources (already
    deleted) are never re-read from storage. Failures are re-raised for a
    retry until the final attempt, which stores the fallback note instead.
    """

    def __init__(
        self,
        *,
        task_queue: TaskQueuePort,
        summarizer: SummarizerProtocol,
        audit_sink: AuditSinkProtocol,
        batch_size: int = DEFAULT_BATCH_SIZE,
        jitter_provider: Callable[[float], float] | None = None,
    ) -> None:
        super().__init__(
            task_queue=task_queue,
            task_type=TaskType.SUMMARIZE,
            batch_size=batch_size,
            jitter_provider=jitter_provider,
        )
        self._summarizer = summarizer
        self._audit_sink = audit_sink

    def _handle_task(self, task: Task) -> None:
        if not task.payload:
            raise ValidationError("Summary task payload is empty")

        try:
            job = SummaryJobPayload.model_validate(task.payload)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid summary task payload: {exc}") from exc

        if not job.event_data:
            raise ValidationError("Summary task carries no events")

        events = [snapshot.to_event() for snapshot in job.event_data]
        final_attempt = task.is_final_attempt

        try:
            notes = self._summarizer.summarize(events)
            path = "async"
        except Exception as exc:
            if not final_attempt:
                raise
            logger.warning(
                "summary_worker_fallback",
                audit_log_id=job.audit_log_id,
                attempts=task.attempts,
                error=str(exc),
            )
            notes = fallback_note(len(events))
            path = "fallback"
        if not notes.strip():
            notes = fallback_note(len(events))
            path = "fallback"

        written = self._audit_sink.update_audit_log_notes(job.audit_log_id, notes)
        if written:
            SUMMARY_OUTCOMES_TOTAL.labels(path=path).inc()
        logger.info(
            "summary_notes_recorded",
            audit_log_id=job.audit_log_id,
            merged_event_id=job.merged_event_id,
            written=written,
            path=path,
        )


__all__ = ["SummaryWorker"]
