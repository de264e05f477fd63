"""Title compatibility filter.

Vetoes merges between semantically distinct meeting categories using the
static rule table in ``calendar_merge.domain.title_rules``.
"""

from collections.abc import Sequence

from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.title_rules import TITLE_INCOMPATIBILITY_RULES, TitleRule

logger = get_logger(__name__)


def normalize_title(title: str | None) -> str:
    """Lower-case and trim a title (``None`` becomes empty)."""
    return (title or "").strip().lower()


def find_blocking_rule(
    title1: str | None,
    title2: str | None,
    rules: Sequence[TitleRule] = TITLE_INCOMPATIBILITY_RULES,
) -> TitleRule | None:
    """Return the first rule that blocks merging the two titles.

    A rule fires when either title matches its trigger. For every title that
    matched, the other title is tested against the blocked patterns. Empty
    titles match nothing.

    Args:
        title1: First title
        title2: Second title
        rules: Ordered rule table

    Returns:
        Blocking rule or None when the titles are compatible
    """
    t1 = normalize_title(title1)
    t2 = normalize_title(title2)
    if not t1 and not t2:
        return None

    for rule in rules:
        for own, other in ((t1, t2), (t2, t1)):
            if not own or not rule.trigger.search(own):
                continue
            if any(pattern.search(other) for pattern in rule.blocked):
                return rule
    return None


def titles_compatible(
    title1: str | None,
    title2: str | None,
    rules: Sequence[TitleRule] = TITLE_INCOMPATIBILITY_RULES,
) -> bool:
    """Check whether two titles may ever be merged.

    Symmetric: ``titles_compatible(a, b) == titles_compatible(b, a)``.

    Example:
        >>> titles_compatible("1:1 manager call", "demo meeting")
        False
        >>> titles_compatible("Planning", "Team Meeting")
        True
    """
    rule = find_blocking_rule(title1, title2, rules)
    if rule is None:
        return True

    logger.debug(
        "titles_incompatible",
        title1=title1,
        title2=title2,
        rule=rule.name,
    )
    return False
