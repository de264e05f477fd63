"""Title incompatibility rules.

Each rule pairs a trigger pattern with the patterns it refuses to be merged
with. Patterns run against lower-cased, trimmed titles. Rules are evaluated in
order and the first blocking rule decides.

Example:
    - "1:1 with Dana" vs "Team sync"
    - Rule 1 fires on "1:1", "team" is blocked → incompatible
"""

import re
from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class TitleRule:
    """Trigger pattern plus the patterns it cannot be merged with."""

    name: str
    trigger: re.Pattern[str]
    blocked: tuple[re.Pattern[str], ...]


def _word_pattern(*alternatives: str) -> re.Pattern[str]:
    return re.compile(r"\b(" + "|".join(alternatives) + r")\b", re.IGNORECASE)


_ONE_ON_ONE: Final[tuple[str, ...]] = ("1:1", "one[- ]on[- ]one")

TITLE_INCOMPATIBILITY_RULES: Final[tuple[TitleRule, ...]] = (
    TitleRule(
        name="one_on_one_vs_group",
        trigger=_word_pattern(*_ONE_ON_ONE, "one[- ]to[- ]one", "individual"),
        blocked=(
            _word_pattern(
                "demo",
                "demonstration",
                "presentation",
                "standup",
                "sync",
                "review",
                "team",
                "group",
            ),
        ),
    ),
    TitleRule(
        name="senior_call_vs_showcase",
        trigger=re.compile(
            r"\b(manager|executive|director|vp|ceo|cto|cfo)\s+"
            r"(call|meeting|1:1|one[- ]on[- ]one)\b",
            re.IGNORECASE,
        ),
        blocked=(
            _word_pattern("demo", "demonstration", "presentation", "client", "customer"),
        ),
    ),
    TitleRule(
        name="private_vs_public",
        trigger=_word_pattern("personal", "private", "confidential"),
        blocked=(
            _word_pattern("team", "group", "public", "all[- ]hands", "company"),
        ),
    ),
    TitleRule(
        name="external_vs_internal",
        trigger=_word_pattern("client", "customer", "external", "vendor", "partner"),
        blocked=(
            _word_pattern("internal", "team", "standup", "sync", *_ONE_ON_ONE),
        ),
    ),
    TitleRule(
        name="showcase_vs_private",
        trigger=_word_pattern("demo", "demonstration", "presentation"),
        blocked=(
            _word_pattern(
                *_ONE_ON_ONE, "manager", "executive", "personal", "private"
            ),
        ),
    ),
)
