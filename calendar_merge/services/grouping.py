"""Connected-component grouping of mergeable events.

Groups are the transitive closure of ``may_merge``: if A merges with B and B
with C, then A, B and C form one group even when A and C do not overlap.
"""

from collections.abc import Sequence

from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.exceptions import ValidationError
from calendar_merge.domain.merge_constants import MIN_EVENTS_TO_MERGE
from calendar_merge.domain.models import Event
from calendar_merge.services.overlap import may_merge

logger = get_logger(__name__)

NO_OVERLAP_MESSAGE = "No overlapping events found to merge"


def _expand_group(
    seed: int,
    events: Sequence[Event],
    processed: list[bool],
    user_id: str,
) -> list[Event]:
    group = [events[seed]]
    processed[seed] = True

    grew = True
    while grew:
        grew = False
        for index, candidate in enumerate(events):
            if processed[index]:
                continue
            if any(may_merge(member, candidate, user_id) for member in group):
                group.append(candidate)
                processed[index] = True
                grew = True

    return group


def group_overlapping_events(events: Sequence[Event], user_id: str) -> list[list[Event]]:
    """Partition events into merge groups.

    Seeds are taken in input order; each seed grows by repeated full passes
    over the unprocessed events until a pass adds nothing.

    Args:
        events: Candidate events (canceled events already excluded)
        user_id: Invoking user

    Returns:
        Groups with at least two members, in discovery order

    Raises:
        ValidationError: Fewer than two candidates, or no group found
    """
    if len(events) < MIN_EVENTS_TO_MERGE:
        raise ValidationError(
            "Need at least 2 non-canceled events to perform merge operation"
        )

    processed = [False] * len(events)
    groups: list[list[Event]] = []

    for seed in range(len(events)):
        if processed[seed]:
            continue
        group = _expand_group(seed, events, processed, user_id)
        if len(group) >= MIN_EVENTS_TO_MERGE:
            groups.append(group)

    logger.debug(
        "events_grouped",
        candidate_count=len(events),
        group_sizes=[len(group) for group in groups],
    )

    if not groups:
        raise ValidationError(NO_OVERLAP_MESSAGE)

    return groups
