"""Tests for MergeEventsUseCase against a SQLite repository."""

from unittest.mock import Mock

import pytest
from structlog.testing import capture_logs

from calendar_merge.adapters.sqlite_repository import SQLiteUnitOfWork
from calendar_merge.adapters.summarizer import MockSummarizer
from calendar_merge.adapters.summary_dispatcher import TaskQueueSummaryDispatcher
from calendar_merge.config.settings import Settings
from calendar_merge.domain.exceptions import (
    NotFoundError,
    PersistenceError,
    RepositoryError,
    SummarizationError,
    ValidationError,
)
from calendar_merge.domain.models import EventStatus
from calendar_merge.domain.protocols import RepositoryProtocol
from calendar_merge.domain.task_queue import TaskType
from calendar_merge.use_cases.merge_events import (
    MergeEventsUseCase,
    build_merge_events_use_case,
)
from calendar_merge.workers import SummaryWorker
from tests.conftest import ALICE, BOB, CAROL, DAVE, at, store_event


def _use_case(
    repo: RepositoryProtocol,
    summarizer: object | None = None,
    dispatcher: object | None = None,
) -> MergeEventsUseCase:
    return MergeEventsUseCase(
        event_store=repo,
        user_directory=repo,
        audit_sink=repo,
        summarizer=summarizer,  # type: ignore[arg-type]
        dispatcher=dispatcher,  # type: ignore[arg-type]
    )


def _store_planning_pair(repo: RepositoryProtocol) -> tuple[str, str]:
    planning = store_event(
        repo, title="Planning", start=0, end=60, creator=ALICE, invitees=[BOB]
    )
    meeting = store_event(
        repo,
        title="Team Meeting",
        start=30,
        end=90,
        creator=BOB,
        invitees=[ALICE, CAROL],
    )
    return planning.id, meeting.id


def test_merge_replaces_sources_with_merged_event(repo: RepositoryProtocol) -> None:
    """Worked example: two meetings become one, with an audit record."""
    planning_id, meeting_id = _store_planning_pair(repo)

    merged = _use_case(repo, summarizer=MockSummarizer()).merge_all(ALICE.id)

    assert merged.title == "Planning | Team Meeting"
    assert merged.start_time == at(0)
    assert merged.end_time == at(90)
    assert merged.creator.id == ALICE.id
    assert [p.id for p in merged.invitees] == [BOB.id, CAROL.id]
    assert merged.merged_from == [planning_id, meeting_id]

    assert repo.get_event(planning_id) is None
    assert repo.get_event(meeting_id) is None
    stored = repo.get_event(merged.id)
    assert stored is not None
    assert stored.merged_from == [planning_id, meeting_id]

    assert merged.audit_log is not None
    audit_log = repo.get_audit_log(merged.audit_log.id)
    assert audit_log is not None
    assert audit_log.new_event_id == merged.id
    assert audit_log.merged_event_ids == [planning_id, meeting_id]
    assert audit_log.notes == "Merged 2 overlapping events: Planning + Team Meeting."
    assert merged.audit_log.notes == audit_log.notes


def test_largest_group_is_merged_and_rest_untouched(repo: RepositoryProtocol) -> None:
    """Five events, groups of three and two: only the three merge."""
    triple = [
        store_event(repo, title="A1", start=0, end=60),
        store_event(repo, title="A2", start=30, end=90),
        store_event(repo, title="A3", start=80, end=150),
    ]
    pair = [
        store_event(repo, title="B1", start=300, end=360, invitees=[CAROL]),
        store_event(repo, title="B2", start=330, end=400, invitees=[CAROL]),
    ]

    merged = _use_case(repo).merge_all(ALICE.id)

    assert merged.merged_from == [event.id for event in triple]
    remaining = {event.id for event in repo.load_events_involving(ALICE.id)}
    assert remaining == {merged.id, pair[0].id, pair[1].id}


def test_unknown_user_raises_not_found(repo: RepositoryProtocol) -> None:
    """The invoking user must exist."""
    with pytest.raises(NotFoundError):
        _use_case(repo).merge_all("u-ghost")


def test_single_event_is_rejected(repo: RepositoryProtocol) -> None:
    """Fewer than two events in total."""
    store_event(repo, title="Planning")

    with pytest.raises(ValidationError) as exc_info:
        _use_case(repo).merge_all(ALICE.id)

    assert str(exc_info.value) == "Need at least 2 events to perform merge operation"


def test_canceled_events_are_ignored(repo: RepositoryProtocol) -> None:
    """Two events, one canceled, leave a single candidate."""
    store_event(repo, title="Planning", start=0, end=60)
    store_event(repo, title="Review", start=30, end=90, status=EventStatus.CANCELED)

    with pytest.raises(ValidationError) as exc_info:
        _use_case(repo).merge_all(ALICE.id)

    assert str(exc_info.value) == (
        "Need at least 2 non-canceled events to perform merge operation"
    )


def test_overlap_through_invoking_user_only_is_rejected(
    repo: RepositoryProtocol,
) -> None:
    """Sharing only the invoking user is not enough to merge."""
    first = store_event(repo, start=0, end=60, creator=ALICE, invitees=[BOB])
    second = store_event(repo, start=30, end=90, creator=ALICE, invitees=[CAROL])

    with pytest.raises(ValidationError) as exc_info:
        _use_case(repo).merge_all(ALICE.id)

    assert str(exc_info.value) == "No overlapping events found to merge"
    assert repo.get_event(first.id) is not None
    assert repo.get_event(second.id) is not None


def test_incompatible_titles_are_not_merged(repo: RepositoryProtocol) -> None:
    """A 1:1 never merges with a demo even when everything else lines up."""
    store_event(repo, title="1:1 manager call", start=0, end=60)
    store_event(repo, title="demo meeting", start=30, end=90)

    with pytest.raises(ValidationError, match="No overlapping events found to merge"):
        _use_case(repo).merge_all(ALICE.id)


def test_status_of_merged_event_takes_highest_priority(
    repo: RepositoryProtocol,
) -> None:
    """COMPLETED and IN_PROGRESS merge into COMPLETED."""
    store_event(repo, title="Build", start=0, end=60, status=EventStatus.IN_PROGRESS)
    store_event(repo, title="Ship", start=30, end=90, status=EventStatus.COMPLETED)

    merged = _use_case(repo).merge_all(ALICE.id)

    assert merged.status == EventStatus.COMPLETED


def test_persistence_failure_leaves_storage_untouched(
    repo: RepositoryProtocol, mocker
) -> None:
    """A failing audit insert rolls back the insert and the deletes."""
    planning_id, meeting_id = _store_planning_pair(repo)
    mocker.patch.object(
        SQLiteUnitOfWork,
        "create_audit_log",
        side_effect=RepositoryError("disk full"),
    )
    summarizer = Mock()

    with pytest.raises(PersistenceError):
        _use_case(repo, summarizer=summarizer).merge_all(ALICE.id)

    remaining = [event.id for event in repo.load_events_involving(ALICE.id)]
    assert remaining == [planning_id, meeting_id]
    summarizer.summarize.assert_not_called()


def test_failing_summarizer_falls_back_to_count_note(
    repo: RepositoryProtocol,
) -> None:
    """Summarization errors never fail the merge."""
    _store_planning_pair(repo)
    summarizer = Mock()
    summarizer.summarize.side_effect = SummarizationError("model unavailable")

    merged = _use_case(repo, summarizer=summarizer).merge_all(ALICE.id)

    assert merged.audit_log is not None
    assert merged.audit_log.notes == "Merged 2 overlapping events"


def test_missing_summarizer_writes_fallback_note(repo: RepositoryProtocol) -> None:
    """No summarizer at all still yields a note."""
    _store_planning_pair(repo)

    merged = _use_case(repo).merge_all(ALICE.id)

    assert merged.audit_log is not None
    audit_log = repo.get_audit_log(merged.audit_log.id)
    assert audit_log is not None
    assert audit_log.notes == "Merged 2 overlapping events"


def test_blank_summary_falls_back_to_count_note(repo: RepositoryProtocol) -> None:
    """A whitespace-only summary is replaced by the count note."""
    _store_planning_pair(repo)
    summarizer = Mock()
    summarizer.summarize.return_value = "   "

    merged = _use_case(repo, summarizer=summarizer).merge_all(ALICE.id)

    assert merged.audit_log is not None
    audit_log = repo.get_audit_log(merged.audit_log.id)
    assert audit_log is not None
    assert audit_log.notes == "Merged 2 overlapping events"


def test_touching_events_are_merged(repo: RepositoryProtocol) -> None:
    """Back-to-back meetings sharing an end/start instant merge into one."""
    first = store_event(
        repo, title="Planning", start=0, end=60, creator=ALICE, invitees=[BOB]
    )
    second = store_event(
        repo, title="Review", start=60, end=90, creator=BOB, invitees=[ALICE]
    )

    merged = _use_case(repo, summarizer=MockSummarizer()).merge_all(ALICE.id)

    assert merged.start_time == at(0)
    assert merged.end_time == at(90)
    assert merged.merged_from == [first.id, second.id]
    assert [event.id for event in repo.load_events_involving(ALICE.id)] == [merged.id]


def test_dispatched_summary_is_filled_by_worker(repo: RepositoryProtocol) -> None:
    """Accepted jobs leave notes empty until the worker runs."""
    _store_planning_pair(repo)
    task_queue = repo.task_queue()
    sync_summarizer = Mock()
    use_case = _use_case(
        repo,
        summarizer=sync_summarizer,
        dispatcher=TaskQueueSummaryDispatcher(task_queue),
    )

    merged = use_case.merge_all(ALICE.id)

    assert merged.audit_log is not None
    assert merged.audit_log.notes is None
    sync_summarizer.summarize.assert_not_called()

    worker = SummaryWorker(
        task_queue=task_queue, summarizer=MockSummarizer(), audit_sink=repo
    )
    assert worker.process_available_tasks() == 1

    audit_log = repo.get_audit_log(merged.audit_log.id)
    assert audit_log is not None
    assert audit_log.notes == "Merged 2 overlapping events: Planning + Team Meeting."


@pytest.mark.parametrize("dispatch_result", [False, RepositoryError("queue down")])
def test_rejected_dispatch_uses_sync_summarizer(
    repo: RepositoryProtocol, dispatch_result: object
) -> None:
    """Rejected or failing dispatch falls through to the sync summarizer."""
    _store_planning_pair(repo)
    dispatcher = Mock()
    if isinstance(dispatch_result, Exception):
        dispatcher.enqueue_summary.side_effect = dispatch_result
    else:
        dispatcher.enqueue_summary.return_value = dispatch_result
    summarizer = Mock()
    summarizer.summarize.return_value = "Roadmap planning with Bob and Carol"

    merged = _use_case(repo, summarizer=summarizer, dispatcher=dispatcher).merge_all(
        ALICE.id
    )

    dispatcher.enqueue_summary.assert_called_once()
    assert merged.audit_log is not None
    assert merged.audit_log.notes == "Roadmap planning with Bob and Carol"


def test_notes_are_written_once(repo: RepositoryProtocol) -> None:
    """A second notes write for the same audit record is refused."""
    _store_planning_pair(repo)
    merged = _use_case(repo, summarizer=MockSummarizer()).merge_all(ALICE.id)
    assert merged.audit_log is not None

    assert repo.update_audit_log_notes(merged.audit_log.id, "late summary") is False
    audit_log = repo.get_audit_log(merged.audit_log.id)
    assert audit_log is not None
    assert audit_log.notes == "Merged 2 overlapping events: Planning + Team Meeting."


def test_state_transitions_are_logged(repo: RepositoryProtocol) -> None:
    """Each state change emits one log entry, in order."""
    _store_planning_pair(repo)

    with capture_logs() as logs:
        _use_case(repo).merge_all(ALICE.id)

    states = [
        entry["to_state"]
        for entry in logs
        if entry["event"] == "merge_state_transition"
    ]
    assert states == [
        "loading",
        "validating",
        "grouping",
        "selecting",
        "synthesizing",
        "persisting",
        "summarizing",
        "done",
    ]


def test_failed_state_is_logged_on_validation_error(repo: RepositoryProtocol) -> None:
    """Failures move the machine to 'failed' from the current state."""
    store_event(repo, title="Planning")

    with capture_logs() as logs, pytest.raises(ValidationError):
        _use_case(repo).merge_all(ALICE.id)

    failed = [
        entry
        for entry in logs
        if entry["event"] == "merge_state_transition" and entry["to_state"] == "failed"
    ]
    assert len(failed) == 1
    assert failed[0]["from_state"] == "validating"


def test_find_conflicts(repo: RepositoryProtocol) -> None:
    """Conflicts include every event that could merge with another."""
    planning_id, meeting_id = _store_planning_pair(repo)
    store_event(repo, title="Lunch", start=300, end=360, invitees=[DAVE])

    conflicts = _use_case(repo).find_conflicts(ALICE.id)

    assert [event.id for event in conflicts] == [planning_id, meeting_id]


def test_find_conflicts_unknown_user(repo: RepositoryProtocol) -> None:
    """Unknown users are reported, not treated as conflict-free."""
    with pytest.raises(NotFoundError):
        _use_case(repo).find_conflicts("u-ghost")


def test_built_use_case_dispatches_when_async_enabled(
    settings: Settings, repo: RepositoryProtocol
) -> None:
    """Factory wiring: async summaries go through the task queue."""
    _store_planning_pair(repo)
    async_settings = settings.model_copy(update={"summary_async_enabled": True})

    merged = build_merge_events_use_case(async_settings, repo).merge_all(ALICE.id)

    assert merged.audit_log is not None
    assert merged.audit_log.notes is None
    leased = repo.task_queue().lease(TaskType.SUMMARIZE, 5)
    assert len(leased) == 1
    assert leased[0].payload["audit_log_id"] == merged.audit_log.id


def test_built_use_case_summarizes_inline_when_async_disabled(
    settings: Settings, repo: RepositoryProtocol
) -> None:
    """Factory wiring: sync mock summary when async summaries are off."""
    _store_planning_pair(repo)
    sync_settings = settings.model_copy(update={"summary_async_enabled": False})

    merged = build_merge_events_use_case(sync_settings, repo).merge_all(ALICE.id)

    assert merged.audit_log is not None
    assert merged.audit_log.notes == (
        "Merged 2 overlapping events: Planning + Team Meeting."
    )
