"""Background task records stored in the ``pipeline_tasks`` table."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from calendar_merge.domain.merge_constants import SUMMARY_TASK_MAX_ATTEMPTS

DEFAULT_TASK_PRIORITY: Final[int] = 50
"""Lower values are leased first."""


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TaskType(StrEnum):
    """Work handled by a worker; one worker class per type."""

    SUMMARIZE = "summarize"


class TaskStatus(StrEnum):
    """QUEUED -> IN_PROGRESS -> DONE, or back to QUEUED / on to FAILED."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class TaskCreate(BaseModel):
    """Request to enqueue work; deduplicated by ``idempotency_key``."""

    task_type: TaskType
    idempotency_key: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=DEFAULT_TASK_PRIORITY, ge=0)
    max_attempts: int = Field(default=SUMMARY_TASK_MAX_ATTEMPTS, gt=0)
    run_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @field_validator("run_at")
    @classmethod
    def _run_at_utc(cls, value: datetime) -> datetime | None:
        return _as_utc(value)


class Task(BaseModel):
    """Queued task as stored, including lease bookkeeping."""

    task_id: UUID = Field(default_factory=uuid4)
    task_type: TaskType
    idempotency_key: str
    payload: dict[str, Any]
    priority: int
    status: TaskStatus
    attempts: int = Field(..., ge=0, description="Leases so far, current one included")
    max_attempts: int
    run_at: datetime
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime
    locked_at: datetime | None = None

    @field_validator("run_at", "created_at", "updated_at", "locked_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @property
    def is_final_attempt(self) -> bool:
        """True when a failure now would not be retried."""
        return self.attempts >= self.max_attempts


__all__ = [
    "DEFAULT_TASK_PRIORITY",
    "Task",
    "TaskCreate",
    "TaskStatus",
    "TaskType",
]
