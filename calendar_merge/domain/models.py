"""Domain models for the calendar merge engine.

All models use Pydantic v2 for validation and serialization.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from calendar_merge.domain.merge_constants import MAX_BATCH_SIZE


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _unique_ids(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


class EventStatus(str, Enum):
    """Event lifecycle status."""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"

    @property
    def priority(self) -> int:
        """Merge priority, higher wins when statuses are combined."""
        return STATUS_PRIORITY[self]


STATUS_PRIORITY: Final[dict[EventStatus, int]] = {
    EventStatus.COMPLETED: 4,
    EventStatus.IN_PROGRESS: 3,
    EventStatus.TODO: 2,
    EventStatus.CANCELED: 1,
}


class Participant(BaseModel):
    """User acting as creator or invitee.

    Identity is the ``id`` only: two participants with the same id but
    different display attributes compare equal and hash the same.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Opaque user identifier")
    name: str = Field(default="", description="Display name")
    email: str = Field(default="", description="Contact email")

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Participant):
            return self.id == other.id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)


class AuditLogView(BaseModel):
    """Response-shaping view of the audit record attached to a merged event."""

    id: str
    notes: str | None = None
    merged_event_ids: list[str] = Field(default_factory=list)
    created_at: datetime


class AuditLog(BaseModel):
    """Record of one merge operation."""

    id: str = Field(..., description="Audit log identifier")
    user_id: str = Field(..., description="Participant that invoked the merge")
    new_event_id: str = Field(..., description="Event produced by the merge")
    merged_event_ids: list[str] = Field(
        default_factory=list, description="Consumed event ids in merge order"
    )
    notes: str | None = Field(default=None, description="Summary text")
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)  # type: ignore[return-value]

    def to_view(self) -> AuditLogView:
        return AuditLogView(
            id=self.id,
            notes=self.notes,
            merged_event_ids=list(self.merged_event_ids),
            created_at=self.created_at,
        )


class _EventFields(BaseModel):
    """Fields shared by stored events and merge drafts."""

    title: str = Field(default="", description="Event title (may be empty)")
    description: str | None = Field(default=None, description="Free-form text")
    status: EventStatus = Field(default=EventStatus.TODO)
    start_time: datetime = Field(..., description="Start instant (UTC)")
    end_time: datetime = Field(..., description="End instant (UTC)")
    creator: Participant = Field(..., description="Event owner")
    invitees: list[Participant] = Field(
        default_factory=list, description="Invited participants, creator excluded"
    )

    @field_validator("start_time", "end_time")
    @classmethod
    def _times_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)  # type: ignore[return-value]

    @model_validator(mode="after")
    def _check_invitees(self) -> "_EventFields":
        unique: dict[str, Participant] = {}
        for invitee in self.invitees:
            unique.setdefault(invitee.id, invitee)
        if self.creator.id in unique:
            raise ValueError("creator must not be listed among invitees")
        if len(unique) != len(self.invitees):
            self.invitees = list(unique.values())
        return self

    def participant_ids(self) -> set[str]:
        """Return ``{creator} ∪ invitees`` as a set of ids."""
        ids = {invitee.id for invitee in self.invitees}
        ids.add(self.creator.id)
        return ids


class Event(_EventFields):
    """Stored calendar event.

    ``start_time < end_time`` is enforced by the input models at creation and
    update, not here: stored rows are taken as they are.
    """

    id: str = Field(..., description="Unique immutable identifier")
    merged_from: list[str] | None = Field(
        default=None, description="Source event ids when produced by a merge"
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None
    audit_log: AuditLogView | None = Field(default=None, exclude=True)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _timestamps_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)


class EventDraft(_EventFields):
    """Event not yet persisted (no id): a merge result or a validated creation."""

    merged_from: list[str] | None = None


class EventCreate(BaseModel):
    """Validated input for creating an event."""

    title: str = Field(..., min_length=1)
    description: str | None = None
    status: EventStatus = EventStatus.TODO
    start_time: datetime
    end_time: datetime
    creator_id: str = Field(..., min_length=1)
    invitee_ids: list[str] = Field(default_factory=list)

    @field_validator("start_time", "end_time")
    @classmethod
    def _times_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)  # type: ignore[return-value]

    @field_validator("invitee_ids")
    @classmethod
    def _dedupe_invitees(cls, value: list[str]) -> list[str]:
        return _unique_ids(value)

    @model_validator(mode="after")
    def _check_consistency(self) -> "EventCreate":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if not self.invitee_ids:
            raise ValueError("At least one invitee is required")
        if self.creator_id in self.invitee_ids:
            raise ValueError(
                "Creator cannot be in the invitee list. "
                "Invitees must be different from the creator."
            )
        return self


class EventUpdate(BaseModel):
    """Partial update; only fields that are set are applied."""

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: EventStatus | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    invitee_ids: list[str] | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _times_utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    @field_validator("invitee_ids")
    @classmethod
    def _check_invitees(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        if not value:
            raise ValueError("At least one invitee is required when updating invitees")
        return _unique_ids(value)


class BatchEventCreate(BaseModel):
    """Batch of event creations committed all-or-nothing."""

    events: list[EventCreate]

    @field_validator("events")
    @classmethod
    def _check_size(cls, value: list[EventCreate]) -> list[EventCreate]:
        if not value:
            raise ValueError("Events array cannot be empty")
        if len(value) > MAX_BATCH_SIZE:
            raise ValueError(f"Maximum {MAX_BATCH_SIZE} events allowed per batch")
        return value


class EventSnapshot(BaseModel):
    """Serializable copy of an event carried by async summary jobs."""

    id: str
    title: str
    description: str | None = None
    status: EventStatus
    start_time: datetime
    end_time: datetime
    creator: Participant
    invitees: list[Participant] = Field(default_factory=list)

    @classmethod
    def from_event(cls, event: Event) -> "EventSnapshot":
        return cls(
            id=event.id,
            title=event.title,
            description=event.description,
            status=event.status,
            start_time=event.start_time,
            end_time=event.end_time,
            creator=event.creator,
            invitees=list(event.invitees),
        )

    def to_event(self) -> Event:
        return Event(
            id=self.id,
            title=self.title,
            description=self.description,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time,
            creator=self.creator,
            invitees=list(self.invitees),
        )


class SummaryJobPayload(BaseModel):
    """Payload of a background summary job."""

    event_data: list[EventSnapshot]
    user_id: str
    merged_event_id: str
    merged_event_ids: list[str]
    audit_log_id: str

    def to_task_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
