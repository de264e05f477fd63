"""Business rules and constants for event merging.

All merge thresholds and formatting rules are centralized here to keep the
grouping, synthesis and orchestration code consistent.
"""

from typing import Final

MIN_EVENTS_TO_MERGE: Final[int] = 2
"""Smallest number of events (and smallest group size) a merge can consume."""

MAX_BATCH_SIZE: Final[int] = 500
"""Upper bound for batch event creation.

Business rule: a single batch carries at most 500 events. The same ceiling
bounds the per-user snapshot the merge engine works on.
"""

BATCH_CREATE_TARGET_SECONDS: Final[float] = 2.0
"""Batch creation above this duration is logged as a warning."""

MERGED_TITLE_SEPARATOR: Final[str] = " | "
"""Separator between source titles in a merged title.

Empty source titles keep their (empty) segment:
    - ["", "Sync"] → " | Sync"
"""

MERGED_DESCRIPTION_SEPARATOR: Final[str] = "\n\n"
"""Blank line between non-blank source descriptions."""

FALLBACK_NOTE_TEMPLATE: Final[str] = "Merged {count} overlapping events"
"""Audit note written when no summary can be produced."""

SUMMARY_CACHE_KEY_PREFIX: Final[str] = "event-summary"
DEFAULT_SUMMARY_CACHE_TTL_SECONDS: Final[int] = 3600
SUMMARY_MAX_CHARS: Final[int] = 150
SUMMARY_TASK_MAX_ATTEMPTS: Final[int] = 3


def fallback_note(count: int) -> str:
    """Render the deterministic audit note for a merge of ``count`` events."""
    return FALLBACK_NOTE_TEMPLATE.format(count=count)
