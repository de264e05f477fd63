"""Tests for SummaryWorker retry and fallback behaviour."""

from datetime import UTC, datetime
from unittest.mock import Mock
from uuid import uuid4

from calendar_merge.domain.exceptions import SummarizationError
from calendar_merge.domain.models import EventSnapshot, SummaryJobPayload
from calendar_merge.domain.task_queue import Task, TaskStatus, TaskType
from calendar_merge.workers import SummaryWorker
from tests.conftest import create_test_event


def _payload() -> dict[str, object]:
    events = [
        create_test_event(title="Planning", start=0, end=60),
        create_test_event(title="Team Meeting", start=30, end=90),
    ]
    return SummaryJobPayload(
        event_data=[EventSnapshot.from_event(event) for event in events],
        user_id="u-alice",
        merged_event_id="evt-merged",
        merged_event_ids=[event.id for event in events],
        audit_log_id="audit-1",
    ).to_task_payload()


def _task(payload: dict[str, object], *, attempts: int, max_attempts: int = 3) -> Task:
    now = datetime.now(tz=UTC)
    return Task(
        task_id=uuid4(),
        task_type=TaskType.SUMMARIZE,
        payload=payload,
        priority=40,
        run_at=now,
        status=TaskStatus.IN_PROGRESS,
        attempts=attempts,
        max_attempts=max_attempts,
        idempotency_key="summarize:audit-1",
        created_at=now,
        updated_at=now,
    )


def _worker(task: Task, summarizer: Mock, audit_sink: Mock) -> tuple[SummaryWorker, Mock]:
    task_queue = Mock()
    task_queue.lease.return_value = [task]
    worker = SummaryWorker(
        task_queue=task_queue,
        summarizer=summarizer,
        audit_sink=audit_sink,
        jitter_provider=lambda base: 0.0,
    )
    return worker, task_queue


def test_worker_writes_summary_and_completes() -> None:
    """Successful summaries land in the audit log."""
    task = _task(_payload(), attempts=1)
    summarizer = Mock()
    summarizer.summarize.return_value = "Planning sync with Bob"
    audit_sink = Mock()
    audit_sink.update_audit_log_notes.return_value = True
    worker, task_queue = _worker(task, summarizer, audit_sink)

    assert worker.process_available_tasks() == 1

    titles = [event.title for event in summarizer.summarize.call_args.args[0]]
    assert titles == ["Planning", "Team Meeting"]
    audit_sink.update_audit_log_notes.assert_called_once_with(
        "audit-1", "Planning sync with Bob"
    )
    task_queue.complete.assert_called_once_with(task.task_id)
    task_queue.fail.assert_not_called()


def test_worker_retries_before_last_attempt() -> None:
    """Early failures are retried with a backoff and no note is written."""
    task = _task(_payload(), attempts=1)
    summarizer = Mock()
    summarizer.summarize.side_effect = SummarizationError("timeout")
    audit_sink = Mock()
    worker, task_queue = _worker(task, summarizer, audit_sink)

    worker.process_available_tasks()

    audit_sink.update_audit_log_notes.assert_not_called()
    task_queue.fail.assert_called_once()
    assert task_queue.fail.call_args.kwargs["retry_at"] is not None
    assert "SummarizationError" in task_queue.fail.call_args.kwargs["error"]


def test_worker_writes_fallback_on_last_attempt() -> None:
    """The final attempt stores the count note and completes the task."""
    task = _task(_payload(), attempts=3, max_attempts=3)
    summarizer = Mock()
    summarizer.summarize.side_effect = SummarizationError("timeout")
    audit_sink = Mock()
    audit_sink.update_audit_log_notes.return_value = True
    worker, task_queue = _worker(task, summarizer, audit_sink)

    worker.process_available_tasks()

    audit_sink.update_audit_log_notes.assert_called_once_with(
        "audit-1", "Merged 2 overlapping events"
    )
    task_queue.complete.assert_called_once_with(task.task_id)


def test_worker_replaces_blank_summary_with_fallback() -> None:
    """A whitespace-only summary stores the count note instead."""
    task = _task(_payload(), attempts=1)
    summarizer = Mock()
    summarizer.summarize.return_value = "  \n "
    audit_sink = Mock()
    audit_sink.update_audit_log_notes.return_value = True
    worker, task_queue = _worker(task, summarizer, audit_sink)

    worker.process_available_tasks()

    audit_sink.update_audit_log_notes.assert_called_once_with(
        "audit-1", "Merged 2 overlapping events"
    )
    task_queue.complete.assert_called_once_with(task.task_id)


def test_worker_fails_empty_payload() -> None:
    """An empty payload is an error, not a silent success."""
    task = _task({}, attempts=3, max_attempts=3)
    audit_sink = Mock()
    worker, task_queue = _worker(task, Mock(), audit_sink)

    worker.process_available_tasks()

    task_queue.fail.assert_called_once()
    assert task_queue.fail.call_args.kwargs["retry_at"] is None
    assert "ValidationError" in task_queue.fail.call_args.kwargs["error"]
    audit_sink.update_audit_log_notes.assert_not_called()
