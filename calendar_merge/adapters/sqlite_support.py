"""Shared SQLite helpers (connections, timestamp encoding)."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime

# Fixed-width encoding keeps TEXT timestamps lexicographically ordered.
_DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

ConnectionProvider = Callable[[], AbstractContextManager[sqlite3.Connection]]


def to_db_timestamp(value: datetime) -> str:
    """Encode a datetime as a UTC TEXT column value."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_DB_TIMESTAMP_FORMAT)


def from_db_timestamp(raw: str | None) -> datetime | None:
    """Decode a TEXT column value written by ``to_db_timestamp``."""
    if not raw:
        return None
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def open_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    return conn


def connection_provider(db_path: str) -> ConnectionProvider:
    """Build a provider yielding a fresh connection closed on exit."""

    @contextmanager
    def _scope() -> Iterator[sqlite3.Connection]:
        conn = open_connection(db_path)
        try:
            yield conn
        finally:
            conn.close()

    return _scope


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))
