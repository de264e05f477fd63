"""SQLite implementation of the task queue port."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID, uuid4

from calendar_merge.adapters.sqlite_support import (
    ConnectionProvider,
    from_db_timestamp,
    to_db_timestamp,
)
from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.exceptions import RepositoryError
from calendar_merge.domain.task_queue import Task, TaskCreate, TaskStatus, TaskType
from calendar_merge.ports.task_queue import TaskQueuePort

logger = get_logger(__name__)


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        task_id=UUID(row["task_id"]),
        task_type=TaskType(row["task_type"]),
        payload=json.loads(row["payload"] or "{}"),
        priority=row["priority"],
        run_at=from_db_timestamp(row["run_at"]),
        status=TaskStatus(row["status"]),
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        idempotency_key=row["idempotency_key"],
        last_error=row["last_error"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
        locked_at=from_db_timestamp(row["locked_at"]),
    )


class SQLiteTaskQueue(TaskQueuePort):
    """Task queue backed by the ``pipeline_tasks`` table."""

    def __init__(self, connection_provider: ConnectionProvider):
        self._connection_provider = connection_provider

    def enqueue(self, task: TaskCreate) -> Task:
        results = self.enqueue_many([task])
        return results[0]

    def enqueue_many(self, tasks: Sequence[TaskCreate]) -> list[Task]:
        if not tasks:
            return []

        now = to_db_timestamp(datetime.now(tz=UTC))
        results: list[Task] = []

        with self._connection_provider() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                for task in tasks:
                    conn.execute(
                        """
                        INSERT INTO pipeline_tasks (
                            task_id, task_type, payload, priority, run_at, status,
                            attempts, max_attempts, idempotency_key, last_error,
                            created_at, updated_at, locked_at
                        ) VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, NULL, ?, ?, NULL)
                        ON CONFLICT (idempotency_key) DO NOTHING
                        """,
                        (
                            str(uuid4()),
                            task.task_type.value,
                            json.dumps(task.payload),
                            task.priority,
                            to_db_timestamp(task.run_at),
                            TaskStatus.QUEUED.value,
                            task.max_attempts,
                            task.idempotency_key,
                            now,
                            now,
                        ),
                    )
                    row = conn.execute(
                        "SELECT * FROM pipeline_tasks WHERE idempotency_key = ?",
                        (task.idempotency_key,),
                    ).fetchone()
                    results.append(_row_to_task(row))
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise RepositoryError(f"Failed to enqueue tasks: {exc}") from exc

        return results

    def lease(self, task_type: TaskType, limit: int) -> list[Task]:
        if limit <= 0:
            raise ValueError("limit must be positive")

        now = to_db_timestamp(datetime.now(tz=UTC))
        with self._connection_provider() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                candidates = conn.execute(
                    """
                    SELECT task_id FROM pipeline_tasks
                    WHERE status = ? AND task_type = ? AND run_at <= ?
                    ORDER BY priority ASC, run_at ASC
                    LIMIT ?
                    """,
                    (TaskStatus.QUEUED.value, task_type.value, now, limit),
                ).fetchall()
                task_ids = [row["task_id"] for row in candidates]

                leased: list[Task] = []
                for task_id in task_ids:
                    conn.execute(
                        """
                        UPDATE pipeline_tasks
                        SET status = ?, attempts = attempts + 1,
                            locked_at = ?, updated_at = ?
                        WHERE task_id = ?
                        """,
                        (TaskStatus.IN_PROGRESS.value, now, now, task_id),
                    )
                    row = conn.execute(
                        "SELECT * FROM pipeline_tasks WHERE task_id = ?", (task_id,)
                    ).fetchone()
                    leased.append(_row_to_task(row))
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise RepositoryError(f"Failed to lease tasks: {exc}") from exc

        return leased

    def complete(self, task_id: UUID) -> None:
        now = to_db_timestamp(datetime.now(tz=UTC))
        with self._connection_provider() as conn:
            cursor = conn.execute(
                """
                UPDATE pipeline_tasks
                SET status = ?, last_error = NULL, locked_at = NULL, updated_at = ?
                WHERE task_id = ?
                """,
                (TaskStatus.DONE.value, now, str(task_id)),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise RepositoryError(f"Task not found: {task_id}")
            conn.commit()

    def fail(self, task_id: UUID, *, error: str, retry_at: datetime | None) -> None:
        now = to_db_timestamp(datetime.now(tz=UTC))

        with self._connection_provider() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT attempts, max_attempts, run_at FROM pipeline_tasks WHERE task_id = ?",
                (str(task_id),),
            ).fetchone()
            if row is None:
                conn.rollback()
                raise RepositoryError(f"Task not found: {task_id}")

            attempts = int(row["attempts"])
            max_attempts = int(row["max_attempts"])
            should_retry = retry_at is not None and attempts < max_attempts
            next_status = TaskStatus.QUEUED if should_retry else TaskStatus.FAILED
            next_run_at: str = (
                to_db_timestamp(retry_at) if should_retry and retry_at else row["run_at"]
            )

            conn.execute(
                """
                UPDATE pipeline_tasks
                SET status = ?, run_at = ?, last_error = ?, locked_at = NULL,
                    updated_at = ?
                WHERE task_id = ?
                """,
                (next_status.value, next_run_at, error, now, str(task_id)),
            )
            conn.commit()

            logger.info(
                "task_failure_recorded",
                task_id=str(task_id),
                attempts=attempts,
                retry=should_retry,
            )


__all__ = ["SQLiteTaskQueue"]
