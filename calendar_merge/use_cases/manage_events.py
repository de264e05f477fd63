"""Event management use case: create, batch create, read, update, delete."""

from collections.abc import Mapping, Sequence
from time import perf_counter
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.exceptions import (
    NotFoundError,
    PersistenceError,
    RepositoryError,
    ValidationError,
)
from calendar_merge.domain.merge_constants import BATCH_CREATE_TARGET_SECONDS
from calendar_merge.domain.models import (
    BatchEventCreate,
    Event,
    EventCreate,
    EventDraft,
    EventUpdate,
    Participant,
)
from calendar_merge.domain.protocols import EventStoreProtocol, UserDirectoryProtocol

logger = get_logger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)


def _parse(model: type[_ModelT], data: _ModelT | Mapping[str, Any]) -> _ModelT:
    """Validate raw input, mapping pydantic errors to the domain error."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        messages = "; ".join(
            str(error["msg"]).removeprefix("Value error, ") for error in exc.errors()
        )
        raise ValidationError(messages) from exc


class EventService:
    """CRUD over events with user-directory checks."""

    def __init__(
        self,
        *,
        event_store: EventStoreProtocol,
        user_directory: UserDirectoryProtocol,
    ) -> None:
        self._event_store = event_store
        self._user_directory = user_directory

    def _resolve_participants(
        self, creator_id: str, invitee_ids: Sequence[str]
    ) -> tuple[Participant, list[Participant]]:
        users = self._user_directory.get_users([creator_id, *invitee_ids])
        creator = users.get(creator_id)
        if creator is None:
            raise NotFoundError(f"Creator with ID {creator_id} not found")
        missing = [user_id for user_id in invitee_ids if user_id not in users]
        if missing:
            raise NotFoundError(f"One or more invitee IDs not found: {', '.join(missing)}")
        return creator, [users[user_id] for user_id in invitee_ids]

    def create(self, data: EventCreate | Mapping[str, Any]) -> Event:
        """Create one event.

        Raises:
            ValidationError: Invalid input
            NotFoundError: Unknown creator or invitee
            PersistenceError: Storage failure
        """
        payload = _parse(EventCreate, data)
        creator, invitees = self._resolve_participants(
            payload.creator_id, payload.invitee_ids
        )
        draft = EventDraft(
            title=payload.title,
            description=payload.description,
            status=payload.status,
            start_time=payload.start_time,
            end_time=payload.end_time,
            creator=creator,
            invitees=invitees,
        )
        try:
            with self._event_store.unit_of_work() as uow:
                event = uow.insert_event(draft)
        except RepositoryError as exc:
            raise PersistenceError(f"Failed to create event: {exc}") from exc

        logger.info("event_created", event_id=event.id, creator_id=creator.id)
        return event

    def batch_create(self, data: BatchEventCreate | Mapping[str, Any]) -> list[Event]:
        """Create many events all-or-nothing.

        Every creator and invitee is checked before anything is written.

        Args:
            data: Batch of up to 500 event creations

        Returns:
            Created events in input order

        Raises:
            ValidationError: Empty or oversized batch, or invalid item
            NotFoundError: Unknown creators or invitees (ids listed)
            PersistenceError: Storage failure (nothing written)
        """
        started = perf_counter()
        batch = _parse(BatchEventCreate, data)

        creator_ids = list(dict.fromkeys(item.creator_id for item in batch.events))
        invitee_ids = list(
            dict.fromkeys(uid for item in batch.events for uid in item.invitee_ids)
        )
        users = self._user_directory.get_users([*creator_ids, *invitee_ids])

        missing_creators = [uid for uid in creator_ids if uid not in users]
        if missing_creators:
            raise NotFoundError(f"Creators not found: {', '.join(missing_creators)}")
        missing_invitees = [uid for uid in invitee_ids if uid not in users]
        if missing_invitees:
            raise NotFoundError(f"Invitees not found: {', '.join(missing_invitees)}")

        drafts = [
            EventDraft(
                title=item.title,
                description=item.description,
                status=item.status,
                start_time=item.start_time,
                end_time=item.end_time,
                creator=users[item.creator_id],
                invitees=[users[uid] for uid in item.invitee_ids],
            )
            for item in batch.events
        ]

        try:
            with self._event_store.unit_of_work() as uow:
                events = uow.insert_events(drafts)
        except RepositoryError as exc:
            raise PersistenceError(f"Failed to create events: {exc}") from exc

        duration = perf_counter() - started
        logger.info(
            "events_batch_created",
            event_count=len(events),
            duration_seconds=round(duration, 3),
        )
        if duration > BATCH_CREATE_TARGET_SECONDS:
            logger.warning(
                "events_batch_slow",
                event_count=len(events),
                duration_seconds=round(duration, 3),
                target_seconds=BATCH_CREATE_TARGET_SECONDS,
            )
        return events

    def get(self, event_id: str) -> Event:
        event = self._event_store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event with ID {event_id} not found")
        return event

    def update(self, event_id: str, data: EventUpdate | Mapping[str, Any]) -> Event:
        """Apply a partial update.

        When a time changes it is checked against the stored counterpart.
        Other edits leave stored times unchecked.

        Raises:
            ValidationError: Invalid input or resulting time range
            NotFoundError: Unknown event or invitee
            PersistenceError: Storage failure
        """
        changes = _parse(EventUpdate, data)
        stored = self.get(event_id)

        start_time = changes.start_time or stored.start_time
        end_time = changes.end_time or stored.end_time
        times_changed = (
            changes.start_time is not None or changes.end_time is not None
        )
        if times_changed and start_time >= end_time:
            raise ValidationError("start_time must be before end_time")

        invitees = list(stored.invitees)
        if changes.invitee_ids is not None:
            if stored.creator.id in changes.invitee_ids:
                raise ValidationError(
                    "Creator cannot be in the invitee list. "
                    "Invitees must be different from the creator."
                )
            users = self._user_directory.get_users(changes.invitee_ids)
            missing = [uid for uid in changes.invitee_ids if uid not in users]
            if missing:
                raise NotFoundError(
                    f"One or more invitee IDs not found: {', '.join(missing)}"
                )
            invitees = [users[uid] for uid in changes.invitee_ids]

        updated = stored.model_copy(
            update={
                "title": changes.title if changes.title is not None else stored.title,
                "description": (
                    changes.description
                    if "description" in changes.model_fields_set
                    else stored.description
                ),
                "status": changes.status or stored.status,
                "start_time": start_time,
                "end_time": end_time,
                "invitees": invitees,
            }
        )

        try:
            with self._event_store.unit_of_work() as uow:
                event = uow.update_event(updated)
        except RepositoryError as exc:
            raise PersistenceError(f"Failed to update event: {exc}") from exc

        logger.info(
            "event_updated",
            event_id=event_id,
            fields=sorted(changes.model_fields_set),
        )
        return event

    def remove(self, event_id: str) -> None:
        self.get(event_id)
        try:
            with self._event_store.unit_of_work() as uow:
                uow.delete_events([event_id])
        except RepositoryError as exc:
            raise PersistenceError(f"Failed to delete event: {exc}") from exc
        logger.info("event_removed", event_id=event_id)


__all__ = ["EventService"]
