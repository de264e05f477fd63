"""Merge a user's overlapping events, or list their conflicts.

Usage:
    python scripts/merge_events.py --user-id u-1
    python scripts/merge_events.py --user-id u-1 --conflicts-only
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from calendar_merge.adapters.repository_factory import create_repository
from calendar_merge.config.logging_config import get_logger
from calendar_merge.config.settings import get_settings
from calendar_merge.domain.exceptions import (
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from calendar_merge.use_cases.merge_events import build_merge_events_use_case
from scripts import worker_runtime

logger = get_logger(__name__)

EXIT_NOT_FOUND = 2
EXIT_INVALID = 3
EXIT_PERSISTENCE = 4


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Merge overlapping calendar events")
    parser.add_argument("--user-id", required=True, help="Invoking user id")
    parser.add_argument(
        "--conflicts-only",
        action="store_true",
        help="List conflicting events without merging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    worker_runtime.initialize_logging(settings, json_logs=args.json_logs)

    repository = create_repository(settings)
    use_case = build_merge_events_use_case(settings, repository)

    try:
        if args.conflicts_only:
            conflicts = use_case.find_conflicts(args.user_id)
            output = [event.model_dump(mode="json") for event in conflicts]
        else:
            merged = use_case.merge_all(args.user_id)
            output = merged.model_dump(mode="json")
            if merged.audit_log is not None:
                output["audit_log"] = merged.audit_log.model_dump(mode="json")
    except NotFoundError as exc:
        logger.error("merge_cli_not_found", error=str(exc))
        return EXIT_NOT_FOUND
    except ValidationError as exc:
        logger.error("merge_cli_invalid", error=str(exc))
        return EXIT_INVALID
    except PersistenceError as exc:
        logger.error("merge_cli_persistence_failed", error=str(exc))
        return EXIT_PERSISTENCE

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
