"""Tests for domain model validation."""

from datetime import datetime

import pytest
import pytz
from pydantic import ValidationError as PydanticValidationError

from calendar_merge.domain.models import (
    BatchEventCreate,
    EventCreate,
    EventSnapshot,
    EventStatus,
    EventUpdate,
    Participant,
)
from tests.conftest import ALICE, BOB, CAROL, at, create_test_event


def test_status_priority_order() -> None:
    """COMPLETED > IN_PROGRESS > TODO > CANCELED."""
    ordered = sorted(EventStatus, key=lambda status: status.priority, reverse=True)

    assert ordered == [
        EventStatus.COMPLETED,
        EventStatus.IN_PROGRESS,
        EventStatus.TODO,
        EventStatus.CANCELED,
    ]


def test_participant_identity_is_the_id() -> None:
    """Display attributes do not affect equality."""
    assert Participant(id="u-1", name="A") == Participant(id="u-1", name="B")
    assert len({Participant(id="u-1"), Participant(id="u-1", email="x@y")}) == 1


def test_event_deduplicates_invitees() -> None:
    """Repeated invitees collapse to the first occurrence."""
    event = create_test_event(invitees=[BOB, CAROL, BOB])

    assert [p.id for p in event.invitees] == [BOB.id, CAROL.id]


def test_event_rejects_creator_among_invitees() -> None:
    """Creator and invitees are disjoint."""
    with pytest.raises(PydanticValidationError):
        create_test_event(creator=ALICE, invitees=[ALICE, BOB])


def test_naive_times_are_treated_as_utc() -> None:
    """Naive datetimes get the UTC zone."""
    event = create_test_event(
        start_time=datetime(2025, 3, 10, 9, 0), end_time=datetime(2025, 3, 10, 10, 0)
    )

    assert event.start_time.tzinfo is not None
    assert event.start_time == datetime(2025, 3, 10, 9, 0, tzinfo=pytz.UTC)


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"end_time": at(0)}, "start_time must be before end_time"),
        ({"invitee_ids": []}, "At least one invitee is required"),
        ({"invitee_ids": ["u-alice"]}, "Creator cannot be in the invitee list"),
    ],
)
def test_event_create_validation(overrides: dict[str, object], message: str) -> None:
    """Creation input enforces time order and the invitee rules."""
    data: dict[str, object] = {
        "title": "Planning",
        "start_time": at(0),
        "end_time": at(60),
        "creator_id": "u-alice",
        "invitee_ids": ["u-bob"],
    }
    data.update(overrides)

    with pytest.raises(PydanticValidationError) as exc_info:
        EventCreate.model_validate(data)

    assert message in str(exc_info.value)


def test_event_create_deduplicates_invitee_ids() -> None:
    """Duplicate ids are dropped, order kept."""
    payload = EventCreate(
        title="Planning",
        start_time=at(0),
        end_time=at(60),
        creator_id="u-alice",
        invitee_ids=["u-bob", "u-carol", "u-bob"],
    )

    assert payload.invitee_ids == ["u-bob", "u-carol"]


def test_event_update_rejects_empty_invitees() -> None:
    """An explicit empty list is not a valid invitee update."""
    with pytest.raises(PydanticValidationError):
        EventUpdate(invitee_ids=[])

    assert EventUpdate(title="New").invitee_ids is None


def test_batch_limits() -> None:
    """Batches hold between 1 and 500 events."""
    item = {
        "title": "Planning",
        "start_time": at(0),
        "end_time": at(60),
        "creator_id": "u-alice",
        "invitee_ids": ["u-bob"],
    }

    with pytest.raises(PydanticValidationError, match="Events array cannot be empty"):
        BatchEventCreate(events=[])
    with pytest.raises(PydanticValidationError, match="Maximum 500 events"):
        BatchEventCreate.model_validate({"events": [item] * 501})


def test_snapshot_round_trip_keeps_participants() -> None:
    """Snapshots rebuild the event without storage access."""
    event = create_test_event(title="Planning", invitees=[BOB, CAROL])

    rebuilt = EventSnapshot.from_event(event).to_event()

    assert rebuilt.id == event.id
    assert rebuilt.creator == event.creator
    assert [p.name for p in rebuilt.invitees] == ["Bob", "Carol"]
