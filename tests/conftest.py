"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest
import pytz

from calendar_merge.adapters.repository_factory import create_repository
from calendar_merge.config.settings import Settings
from calendar_merge.domain.models import Event, EventDraft, EventStatus, Participant
from calendar_merge.domain.protocols import RepositoryProtocol

BASE_TIME = datetime(2025, 3, 10, 9, 0, tzinfo=pytz.UTC)

ALICE = Participant(id="u-alice", name="Alice", email="alice@example.com")
BOB = Participant(id="u-bob", name="Bob", email="bob@example.com")
CAROL = Participant(id="u-carol", name="Carol", email="carol@example.com")
DAVE = Participant(id="u-dave", name="Dave", email="dave@example.com")
ERIN = Participant(id="u-erin", name="Erin", email="erin@example.com")

ALL_USERS = (ALICE, BOB, CAROL, DAVE, ERIN)


def at(minutes: int) -> datetime:
    """Instant ``minutes`` after the shared base time."""
    return BASE_TIME + timedelta(minutes=minutes)


def create_test_event(
    title: str = "Planning",
    start: int = 0,
    end: int = 60,
    creator: Participant = ALICE,
    invitees: list[Participant] | None = None,
    status: EventStatus = EventStatus.TODO,
    description: str | None = None,
    **kwargs: Any,
) -> Event:
    """Helper to create an in-memory event; times are minutes from BASE_TIME."""
    defaults: dict[str, Any] = {
        "id": str(uuid4()),
        "title": title,
        "description": description,
        "status": status,
        "start_time": at(start),
        "end_time": at(end),
        "creator": creator,
        "invitees": [BOB] if invitees is None else invitees,
    }
    defaults.update(kwargs)
    return Event(**defaults)


def store_event(repository: RepositoryProtocol, **kwargs: Any) -> Event:
    """Persist an event built like ``create_test_event`` and return the stored copy."""
    template = create_test_event(**kwargs)
    draft = EventDraft(
        title=template.title,
        description=template.description,
        status=template.status,
        start_time=template.start_time,
        end_time=template.end_time,
        creator=template.creator,
        invitees=template.invitees,
    )
    with repository.unit_of_work() as uow:
        return uow.insert_event(draft)


@pytest.fixture
def settings(tmp_path_factory: pytest.TempPathFactory) -> Settings:
    """Settings pointing at a fresh SQLite file with mock summaries."""

    base_settings = Settings()
    db_path = tmp_path_factory.mktemp("db") / "test.sqlite"
    return base_settings.model_copy(
        update={
            "database_type": "sqlite",
            "db_path": str(db_path),
            "summarizer_use_mock": True,
            "openai_api_key": None,
        }
    )


@pytest.fixture
def repo(settings: Settings) -> Generator[RepositoryProtocol, None, None]:
    """Provide a repository with the shared users already saved."""

    repository = create_repository(settings)
    repository.save_users(list(ALL_USERS))

    try:
        yield repository
    finally:
        db_path = Path(settings.db_path)
        if db_path.exists():
            try:
                db_path.unlink()
            except OSError:
                pass
