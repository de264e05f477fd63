"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters must implement.
"""

from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol

from calendar_merge.domain.models import (
    AuditLog,
    Event,
    EventDraft,
    Participant,
    SummaryJobPayload,
)

if TYPE_CHECKING:
    from calendar_merge.ports.task_queue import TaskQueuePort


class UnitOfWorkProtocol(Protocol):
    """Writes that commit together or not at all."""

    def insert_event(self, draft: EventDraft) -> Event:
        """Insert one event and assign its id.

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def insert_events(self, drafts: Sequence[EventDraft]) -> list[Event]:
        """Insert events in order, returning them with ids."""
        ...

    def update_event(self, event: Event) -> Event:
        """Overwrite a stored event (fields, invitees) and bump ``updated_at``."""
        ...

    def delete_events(self, event_ids: Sequence[str]) -> int:
        """Delete events by id.

        Returns:
            Number of deleted rows
        """
        ...

    def create_audit_log(
        self,
        *,
        user_id: str,
        new_event_id: str,
        merged_event_ids: Sequence[str],
        notes: str | None = None,
    ) -> AuditLog:
        """Create the audit record of one merge."""
        ...


class EventStoreProtocol(Protocol):
    """Read access to events plus the atomic write boundary."""

    def load_events_involving(self, user_id: str) -> list[Event]:
        """Load every event where the user is creator or invitee.

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def get_event(self, event_id: str) -> Event | None:
        """Get one event by id."""
        ...

    def unit_of_work(self) -> AbstractContextManager[UnitOfWorkProtocol]:
        """Open a transaction; commit on clean exit, roll back on error.

        Raises:
            RepositoryError: When the transaction cannot be committed
        """
        ...


class UserDirectoryProtocol(Protocol):
    """Lookup of known users."""

    def user_exists(self, user_id: str) -> bool:
        """Check that a user id resolves to a real user."""
        ...

    def get_users(self, user_ids: Sequence[str]) -> dict[str, Participant]:
        """Resolve ids to participants; unknown ids are absent from the result."""
        ...

    def save_users(self, users: Sequence[Participant]) -> int:
        """Upsert users (idempotent)."""
        ...


class AuditSinkProtocol(Protocol):
    """Audit log access outside the merge transaction."""

    def get_audit_log(self, audit_log_id: str) -> AuditLog | None:
        """Get audit record by id."""
        ...

    def update_audit_log_notes(self, audit_log_id: str, notes: str) -> bool:
        """Attach notes to an audit record that has none yet.

        Returns:
            True if the notes were written, False if the record is missing or
            already carries notes
        """
        ...


class SummaryCacheProtocol(Protocol):
    """Key/value store for generated summaries."""

    def get_cached_summary(
        self, cache_key: str, *, max_age: timedelta | None = None
    ) -> str | None:
        """Return cached summary unless missing or older than ``max_age``."""
        ...

    def save_cached_summary(self, cache_key: str, summary: str) -> None:
        """Store summary under key (replacing any previous value)."""
        ...


class RepositoryProtocol(
    EventStoreProtocol,
    UserDirectoryProtocol,
    AuditSinkProtocol,
    SummaryCacheProtocol,
    Protocol,
):
    """Full storage surface implemented by the database adapters."""

    def task_queue(self) -> "TaskQueuePort":
        """Task queue sharing the repository's database."""
        ...


class SummarizerProtocol(Protocol):
    """Produces a one-line summary for a set of merged events."""

    def summarize(self, events: Sequence[Event]) -> str:
        """Summarize events.

        Raises:
            SummarizationError: When no summary can be produced
        """
        ...


class SummaryDispatcherProtocol(Protocol):
    """Hands summary jobs to a background worker."""

    def enqueue_summary(self, payload: SummaryJobPayload) -> bool:
        """Submit a summary job.

        Returns:
            True when the job was accepted
        """
        ...
