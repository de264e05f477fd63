"""Pairwise overlap rules.

Rules:
1. Time ranges intersect, touching boundaries included
2. Events share a participant other than the invoking user
3. Titles are compatible (see title_compatibility)

Status is not considered here: canceled events are filtered out before
grouping.
"""

from collections.abc import Sequence

from calendar_merge.domain.models import Event
from calendar_merge.services.title_compatibility import titles_compatible


def times_overlap(event1: Event, event2: Event) -> bool:
    """Inclusive interval intersection.

    Example:
        >>> # 10:00-11:00 and 11:00-12:00 touch at 11:00
        >>> times_overlap(morning, noon)
        True
    """
    return event1.start_time <= event2.end_time and event1.end_time >= event2.start_time


def shares_participant(event1: Event, event2: Event, user_id: str) -> bool:
    """Check for a common participant besides ``user_id``.

    Args:
        event1: First event
        event2: Second event
        user_id: Invoking user, removed from both participant sets

    Returns:
        True if the remaining participant sets intersect
    """
    participants1 = event1.participant_ids() - {user_id}
    participants2 = event2.participant_ids() - {user_id}
    return bool(participants1 & participants2)


def may_merge(event1: Event, event2: Event, user_id: str) -> bool:
    """Determine if two events may be merged for ``user_id``."""
    if not times_overlap(event1, event2):
        return False

    if not shares_participant(event1, event2, user_id):
        return False

    return titles_compatible(event1.title, event2.title) and titles_compatible(
        event2.title, event1.title
    )


def find_conflicts(events: Sequence[Event], user_id: str) -> list[Event]:
    """List every event that may merge with at least one other event.

    Events are returned in input order, each once.
    """
    conflicting: set[int] = set()
    for i, event1 in enumerate(events):
        for j in range(i + 1, len(events)):
            if may_merge(event1, events[j], user_id):
                conflicting.add(i)
                conflicting.add(j)

    return [event for index, event in enumerate(events) if index in conflicting]
