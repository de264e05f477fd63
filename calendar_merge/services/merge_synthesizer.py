"""Group selection and merged event synthesis.

Strategy:
- Largest group wins; ties go to the group starting earliest, then to the
  group discovered first
- Sorted by start time (stable) before any field is combined
- Union: participants (by id), minus the chosen creator
- Min/Max: start time / end time
- Highest priority: status (first in sorted order on ties)
"""

from collections.abc import Sequence

from calendar_merge.domain.exceptions import ValidationError
from calendar_merge.domain.merge_constants import (
    MERGED_DESCRIPTION_SEPARATOR,
    MERGED_TITLE_SEPARATOR,
    MIN_EVENTS_TO_MERGE,
)
from calendar_merge.domain.models import Event, EventDraft, Participant


def select_largest_group(groups: Sequence[Sequence[Event]]) -> list[Event]:
    """Pick the group to merge.

    Args:
        groups: Merge groups in discovery order

    Returns:
        Group with most members (earliest minimum start on ties)

    Raises:
        ValidationError: If no group is given
    """
    if not groups:
        raise ValidationError("No overlapping events found to merge")

    best = groups[0]
    best_start = min(event.start_time for event in best)
    for group in groups[1:]:
        start = min(event.start_time for event in group)
        if len(group) > len(best) or (len(group) == len(best) and start < best_start):
            best = group
            best_start = start

    return list(best)


def sort_by_start(events: Sequence[Event]) -> list[Event]:
    """Stable ascending sort by start time."""
    return sorted(events, key=lambda event: event.start_time)


def merge_titles(events: Sequence[Event]) -> str:
    return MERGED_TITLE_SEPARATOR.join(event.title for event in events)


def merge_descriptions(events: Sequence[Event]) -> str | None:
    descriptions = [
        event.description
        for event in events
        if event.description and event.description.strip()
    ]
    if not descriptions:
        return None
    return MERGED_DESCRIPTION_SEPARATOR.join(descriptions)


def merge_invitees(events: Sequence[Event], creator: Participant) -> list[Participant]:
    """Union of every creator and invitee, first instance per id, minus creator."""
    participants: dict[str, Participant] = {}
    for event in events:
        participants.setdefault(event.creator.id, event.creator)
        for invitee in event.invitees:
            participants.setdefault(invitee.id, invitee)

    participants.pop(creator.id, None)
    return list(participants.values())


def synthesize_merged_event(group: Sequence[Event]) -> EventDraft:
    """Combine a merge group into one draft event.

    Args:
        group: Events to merge (at least two)

    Returns:
        Draft carrying the merged fields and ``merged_from`` in start order

    Example:
        >>> draft = synthesize_merged_event([planning, team_meeting])
        >>> draft.title
        'Planning | Team Meeting'
    """
    if len(group) < MIN_EVENTS_TO_MERGE:
        raise ValidationError("A merge group needs at least 2 events")

    ordered = sort_by_start(group)
    first = ordered[0]

    top = first
    for event in ordered[1:]:
        if event.status.priority > top.status.priority:
            top = event

    creator = first.creator

    return EventDraft(
        title=merge_titles(ordered),
        description=merge_descriptions(ordered),
        status=top.status,
        start_time=min(event.start_time for event in ordered),
        end_time=max(event.end_time for event in ordered),
        creator=creator,
        invitees=merge_invitees(ordered, creator),
        merged_from=[event.id for event in ordered],
    )
