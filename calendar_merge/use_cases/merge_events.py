"""Merge overlapping events use case.

Loads every event involving the user, groups mergeable events, replaces the
largest group with one synthesized event and records an audit log.
"""

from collections.abc import Sequence
from enum import StrEnum
from time import perf_counter

from calendar_merge.adapters.summarizer import create_summarizer
from calendar_merge.adapters.summary_dispatcher import TaskQueueSummaryDispatcher
from calendar_merge.config.logging_config import get_logger
from calendar_merge.config.settings import Settings
from calendar_merge.domain.exceptions import (
    CalendarMergeError,
    NotFoundError,
    PersistenceError,
    RepositoryError,
    ValidationError,
)
from calendar_merge.domain.merge_constants import MIN_EVENTS_TO_MERGE, fallback_note
from calendar_merge.domain.models import (
    AuditLog,
    Event,
    EventDraft,
    EventSnapshot,
    EventStatus,
    SummaryJobPayload,
)
from calendar_merge.domain.protocols import (
    AuditSinkProtocol,
    EventStoreProtocol,
    RepositoryProtocol,
    SummarizerProtocol,
    SummaryDispatcherProtocol,
    UserDirectoryProtocol,
)
from calendar_merge.observability.metrics import (
    MERGE_DURATION_SECONDS,
    MERGE_OPERATIONS_TOTAL,
    MERGED_EVENTS_TOTAL,
    SUMMARY_OUTCOMES_TOTAL,
)
from calendar_merge.observability.tracing import correlation_scope
from calendar_merge.services import overlap
from calendar_merge.services.grouping import group_overlapping_events
from calendar_merge.services.merge_synthesizer import (
    select_largest_group,
    sort_by_start,
    synthesize_merged_event,
)
from calendar_merge.services.task_queue_factory import (
    TaskQueueUnavailableError,
    resolve_task_queue,
)

logger = get_logger(__name__)


class MergeState(StrEnum):
    """Lifecycle of one merge invocation."""

    IDLE = "idle"
    LOADING = "loading"
    VALIDATING = "validating"
    GROUPING = "grouping"
    SELECTING = "selecting"
    SYNTHESIZING = "synthesizing"
    PERSISTING = "persisting"
    SUMMARIZING = "summarizing"
    DONE = "done"
    FAILED = "failed"


def _failure_outcome(exc: CalendarMergeError) -> str:
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, ValidationError):
        return "invalid"
    if isinstance(exc, PersistenceError):
        return "persistence_failed"
    return "error"


class MergeEventsUseCase:
    """Merge the largest set of overlapping events for a user.

    Summaries are best effort: a dispatched background job, else the
    synchronous summarizer, else the fallback note.
    """

    def __init__(
        self,
        *,
        event_store: EventStoreProtocol,
        user_directory: UserDirectoryProtocol,
        audit_sink: AuditSinkProtocol,
        summarizer: SummarizerProtocol | None = None,
        dispatcher: SummaryDispatcherProtocol | None = None,
    ) -> None:
        self._event_store = event_store
        self._user_directory = user_directory
        self._audit_sink = audit_sink
        self._summarizer = summarizer
        self._dispatcher = dispatcher

    def _transition(
        self, current: MergeState, target: MergeState, **fields: object
    ) -> MergeState:
        logger.info(
            "merge_state_transition",
            from_state=current.value,
            to_state=target.value,
            **fields,
        )
        return target

    def _ensure_user(self, user_id: str) -> None:
        if not self._user_directory.user_exists(user_id):
            raise NotFoundError(f"User with ID {user_id} not found")

    def _load_events(self, user_id: str) -> list[Event]:
        try:
            return self._event_store.load_events_involving(user_id)
        except RepositoryError as exc:
            raise PersistenceError(f"Failed to load events: {exc}") from exc

    def find_conflicts(self, user_id: str) -> list[Event]:
        """Return every event that could merge with another one.

        Args:
            user_id: Invoking user

        Returns:
            Conflicting events in load order, each listed once

        Raises:
            NotFoundError: Unknown user
        """
        self._ensure_user(user_id)
        events = self._load_events(user_id)
        conflicts = overlap.find_conflicts(events, user_id)
        logger.info(
            "conflicts_found",
            user_id=user_id,
            event_count=len(events),
            conflict_count=len(conflicts),
        )
        return conflicts

    def merge_all(self, user_id: str, *, correlation_id: str | None = None) -> Event:
        """Merge the user's largest group of overlapping events.

        Args:
            user_id: Invoking user
            correlation_id: Optional id bound to every log line of the merge

        Returns:
            The inserted merged event with its audit log view attached

        Raises:
            NotFoundError: Unknown user
            ValidationError: Not enough events, or nothing overlaps
            PersistenceError: The atomic write failed (storage unchanged)

        Example:
            >>> merged = use_case.merge_all("user-1")
            >>> merged.title
            'Planning | Team Meeting'
        """
        with correlation_scope(correlation_id, user_id=user_id) as bound_correlation_id:
            started = perf_counter()
            outcome = "error"
            state = MergeState.IDLE
            merged_count = 0
            try:
                state = self._transition(state, MergeState.LOADING, user_id=user_id)
                self._ensure_user(user_id)
                events = self._load_events(user_id)

                state = self._transition(
                    state, MergeState.VALIDATING, event_count=len(events)
                )
                if len(events) < MIN_EVENTS_TO_MERGE:
                    raise ValidationError(
                        "Need at least 2 events to perform merge operation"
                    )
                active = [
                    event for event in events if event.status != EventStatus.CANCELED
                ]

                state = self._transition(
                    state, MergeState.GROUPING, candidate_count=len(active)
                )
                groups = group_overlapping_events(active, user_id)

                state = self._transition(
                    state, MergeState.SELECTING, group_count=len(groups)
                )
                group = sort_by_start(select_largest_group(groups))

                state = self._transition(
                    state, MergeState.SYNTHESIZING, group_size=len(group)
                )
                draft = synthesize_merged_event(group)

                state = self._transition(state, MergeState.PERSISTING)
                merged_event, audit_log = self._persist(user_id, draft)

                state = self._transition(
                    state, MergeState.SUMMARIZING, merged_event_id=merged_event.id
                )
                audit_log = self._summarize(user_id, merged_event, group, audit_log)

                state = self._transition(state, MergeState.DONE)
                outcome = "merged"
                merged_count = len(group)
                MERGED_EVENTS_TOTAL.inc(merged_count)
                return merged_event.model_copy(update={"audit_log": audit_log.to_view()})
            except CalendarMergeError as exc:
                outcome = _failure_outcome(exc)
                self._transition(state, MergeState.FAILED, error=str(exc))
                raise
            finally:
                duration = perf_counter() - started
                MERGE_DURATION_SECONDS.observe(duration)
                MERGE_OPERATIONS_TOTAL.labels(outcome=outcome).inc()
                logger.info(
                    "merge_finished",
                    correlation_id=bound_correlation_id,
                    user_id=user_id,
                    outcome=outcome,
                    merged_count=merged_count,
                    duration_seconds=duration,
                )

    def _persist(self, user_id: str, draft: EventDraft) -> tuple[Event, AuditLog]:
        """Insert the merged event, delete its sources and log the merge atomically."""
        source_ids = list(draft.merged_from or [])
        try:
            with self._event_store.unit_of_work() as uow:
                merged_event = uow.insert_event(draft)
                deleted = uow.delete_events(source_ids)
                if deleted != len(source_ids):
                    raise PersistenceError(
                        f"Expected to delete {len(source_ids)} events, deleted {deleted}"
                    )
                audit_log = uow.create_audit_log(
                    user_id=user_id,
                    new_event_id=merged_event.id,
                    merged_event_ids=source_ids,
                )
        except RepositoryError as exc:
            raise PersistenceError(f"Failed to persist merge: {exc}") from exc

        logger.info(
            "merge_persisted",
            merged_event_id=merged_event.id,
            audit_log_id=audit_log.id,
            merged_event_ids=source_ids,
        )
        return merged_event, audit_log

    def _summarize(
        self,
        user_id: str,
        merged_event: Event,
        sources: Sequence[Event],
        audit_log: AuditLog,
    ) -> AuditLog:
        """Attach notes without ever failing the merge."""
        if self._dispatch(user_id, merged_event, sources, audit_log):
            SUMMARY_OUTCOMES_TOTAL.labels(path="dispatched").inc()
            return audit_log

        path = "sync"
        notes: str | None = None
        if self._summarizer is not None:
            try:
                notes = self._summarizer.summarize(sources)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "merge_summary_failed",
                    audit_log_id=audit_log.id,
                    error=str(exc),
                )
        if not notes or not notes.strip():
            notes = fallback_note(len(sources))
            path = "fallback"

        try:
            written = self._audit_sink.update_audit_log_notes(audit_log.id, notes)
        except RepositoryError as exc:
            logger.error(
                "merge_notes_write_failed", audit_log_id=audit_log.id, error=str(exc)
            )
            return audit_log

        if not written:
            logger.warning("merge_notes_already_set", audit_log_id=audit_log.id)
            return audit_log

        SUMMARY_OUTCOMES_TOTAL.labels(path=path).inc()
        return audit_log.model_copy(update={"notes": notes})

    def _dispatch(
        self,
        user_id: str,
        merged_event: Event,
        sources: Sequence[Event],
        audit_log: AuditLog,
    ) -> bool:
        if self._dispatcher is None:
            return False

        payload = SummaryJobPayload(
            event_data=[EventSnapshot.from_event(event) for event in sources],
            user_id=user_id,
            merged_event_id=merged_event.id,
            merged_event_ids=list(audit_log.merged_event_ids),
            audit_log_id=audit_log.id,
        )
        try:
            accepted = self._dispatcher.enqueue_summary(payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "summary_dispatch_failed", audit_log_id=audit_log.id, error=str(exc)
            )
            return False

        if not accepted:
            logger.info("summary_dispatch_rejected", audit_log_id=audit_log.id)
        return accepted


def build_merge_events_use_case(
    settings: Settings, repository: RepositoryProtocol
) -> MergeEventsUseCase:
    """Wire the use case from settings.

    The dispatcher is attached only when async summaries are enabled and the
    repository exposes a task queue.
    """
    dispatcher: SummaryDispatcherProtocol | None = None
    if settings.summary_async_enabled:
        try:
            dispatcher = TaskQueueSummaryDispatcher(
                resolve_task_queue(repository),
                max_attempts=settings.summary_task_max_attempts,
            )
        except TaskQueueUnavailableError as exc:
            logger.warning("summary_dispatcher_unavailable", error=str(exc))

    return MergeEventsUseCase(
        event_store=repository,
        user_directory=repository,
        audit_sink=repository,
        summarizer=create_summarizer(settings, repository),
        dispatcher=dispatcher,
    )


__all__ = ["MergeEventsUseCase", "MergeState", "build_merge_events_use_case"]
