"""Task queue port consumed by the summary dispatcher and worker."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol
from uuid import UUID

from calendar_merge.domain.task_queue import Task, TaskCreate, TaskType


class TaskQueuePort(Protocol):
    """Durable queue with leasing and retry scheduling.

    Adapters raise ``RepositoryError`` on storage failures.
    """

    def enqueue(self, task: TaskCreate) -> Task:
        """Store a task; an existing task with the same idempotency key is returned as is."""
        ...

    def enqueue_many(self, tasks: Sequence[TaskCreate]) -> list[Task]:
        """Store tasks in one transaction, returning them in input order."""
        ...

    def lease(self, task_type: TaskType, limit: int) -> list[Task]:
        """Claim up to ``limit`` due tasks, counting one attempt for each.

        Raises:
            ValueError: If ``limit`` is not positive
        """
        ...

    def complete(self, task_id: UUID) -> None: ...

    def fail(self, task_id: UUID, *, error: str, retry_at: datetime | None) -> None:
        """Record an error; requeue at ``retry_at`` while attempts remain, else fail."""
        ...


__all__ = ["TaskQueuePort"]
