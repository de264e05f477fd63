"""SQLite repository adapter for local storage.

Implements RepositoryProtocol with SQLite backend.
"""

import json
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import cast
from uuid import uuid4

from calendar_merge.adapters.sqlite_support import (
    connection_provider,
    from_db_timestamp,
    open_connection,
    placeholders,
    to_db_timestamp,
)
from calendar_merge.adapters.sqlite_task_queue import SQLiteTaskQueue
from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.exceptions import RepositoryError
from calendar_merge.domain.models import (
    AuditLog,
    Event,
    EventDraft,
    EventStatus,
    Participant,
)
from calendar_merge.ports.task_queue import TaskQueuePort

logger = get_logger(__name__)


def _load_participants(
    conn: sqlite3.Connection, user_ids: Sequence[str]
) -> dict[str, Participant]:
    if not user_ids:
        return {}
    unique_ids = list(dict.fromkeys(user_ids))
    rows = conn.execute(
        f"SELECT id, name, email FROM users WHERE id IN ({placeholders(len(unique_ids))})",
        unique_ids,
    ).fetchall()
    return {
        row["id"]: Participant(id=row["id"], name=row["name"] or "", email=row["email"] or "")
        for row in rows
    }


def _hydrate_events(conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Event]:
    """Attach creators and invitees to event rows, preserving row order."""
    if not rows:
        return []

    event_ids = [row["id"] for row in rows]
    invitee_rows = conn.execute(
        f"""
        SELECT event_id, user_id FROM event_invitees
        WHERE event_id IN ({placeholders(len(event_ids))})
        ORDER BY event_id, position
        """,
        event_ids,
    ).fetchall()

    invitee_ids: dict[str, list[str]] = {}
    for invitee_row in invitee_rows:
        invitee_ids.setdefault(invitee_row["event_id"], []).append(invitee_row["user_id"])

    all_user_ids = [row["creator_id"] for row in rows]
    for ids in invitee_ids.values():
        all_user_ids.extend(ids)
    users = _load_participants(conn, all_user_ids)

    def participant(user_id: str) -> Participant:
        return users.get(user_id) or Participant(id=user_id)

    events: list[Event] = []
    for row in rows:
        merged_from_raw = row["merged_from"]
        events.append(
            Event(
                id=row["id"],
                title=row["title"] or "",
                description=row["description"],
                status=EventStatus(row["status"]),
                start_time=cast(datetime, from_db_timestamp(row["start_time"])),
                end_time=cast(datetime, from_db_timestamp(row["end_time"])),
                creator=participant(row["creator_id"]),
                invitees=[participant(uid) for uid in invitee_ids.get(row["id"], [])],
                merged_from=json.loads(merged_from_raw) if merged_from_raw else None,
                created_at=from_db_timestamp(row["created_at"]),
                updated_at=from_db_timestamp(row["updated_at"]),
            )
        )
    return events


def _row_to_audit_log(row: sqlite3.Row) -> AuditLog:
    return AuditLog(
        id=row["id"],
        user_id=row["user_id"],
        new_event_id=row["new_event_id"],
        merged_event_ids=json.loads(row["merged_event_ids"] or "[]"),
        notes=row["notes"],
        created_at=cast(datetime, from_db_timestamp(row["created_at"])),
    )


class SQLiteUnitOfWork:
    """Write operations bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _write_invitees(self, event_id: str, invitees: Sequence[Participant]) -> None:
        self._conn.executemany(
            "INSERT INTO event_invitees (event_id, user_id, position) VALUES (?, ?, ?)",
            [(event_id, invitee.id, position) for position, invitee in enumerate(invitees)],
        )

    def insert_event(self, draft: EventDraft) -> Event:
        event_id = str(uuid4())
        now = datetime.now(tz=UTC)
        try:
            self._conn.execute(
                """
                INSERT INTO events (
                    id, title, description, status, start_time, end_time,
                    creator_id, merged_from, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event_id,
                    draft.title,
                    draft.description,
                    draft.status.value,
                    to_db_timestamp(draft.start_time),
                    to_db_timestamp(draft.end_time),
                    draft.creator.id,
                    json.dumps(draft.merged_from) if draft.merged_from is not None else None,
                    to_db_timestamp(now),
                    to_db_timestamp(now),
                ),
            )
            self._write_invitees(event_id, draft.invitees)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to insert event: {exc}") from exc

        return Event(
            id=event_id,
            title=draft.title,
            description=draft.description,
            status=draft.status,
            start_time=draft.start_time,
            end_time=draft.end_time,
            creator=draft.creator,
            invitees=list(draft.invitees),
            merged_from=list(draft.merged_from) if draft.merged_from is not None else None,
            created_at=now,
            updated_at=now,
        )

    def insert_events(self, drafts: Sequence[EventDraft]) -> list[Event]:
        return [self.insert_event(draft) for draft in drafts]

    def update_event(self, event: Event) -> Event:
        now = datetime.now(tz=UTC)
        try:
            cursor = self._conn.execute(
                """
                UPDATE events
                SET title = ?, description = ?, status = ?, start_time = ?,
                    end_time = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    event.title,
                    event.description,
                    event.status.value,
                    to_db_timestamp(event.start_time),
                    to_db_timestamp(event.end_time),
                    to_db_timestamp(now),
                    event.id,
                ),
            )
            if cursor.rowcount == 0:
                raise RepositoryError(f"Event not found: {event.id}")
            self._conn.execute("DELETE FROM event_invitees WHERE event_id = ?", (event.id,))
            self._write_invitees(event.id, event.invitees)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update event: {exc}") from exc

        return event.model_copy(update={"updated_at": now})

    def delete_events(self, event_ids: Sequence[str]) -> int:
        if not event_ids:
            return 0
        ids = list(event_ids)
        marks = placeholders(len(ids))
        try:
            self._conn.execute(f"DELETE FROM event_invitees WHERE event_id IN ({marks})", ids)
            cursor = self._conn.execute(f"DELETE FROM events WHERE id IN ({marks})", ids)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to delete events: {exc}") from exc
        return cursor.rowcount

    def create_audit_log(
        self,
        *,
        user_id: str,
        new_event_id: str,
        merged_event_ids: Sequence[str],
        notes: str | None = None,
    ) -> AuditLog:
        audit_log = AuditLog(
            id=str(uuid4()),
            user_id=user_id,
            new_event_id=new_event_id,
            merged_event_ids=list(merged_event_ids),
            notes=notes,
        )
        try:
            self._conn.execute(
                """
                INSERT INTO audit_logs (
                    id, user_id, new_event_id, merged_event_ids, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    audit_log.id,
                    audit_log.user_id,
                    audit_log.new_event_id,
                    json.dumps(audit_log.merged_event_ids),
                    audit_log.notes,
                    to_db_timestamp(audit_log.created_at),
                ),
            )
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create audit log: {exc}") from exc
        return audit_log


class SQLiteRepository:
    """SQLite-based repository for events, users, audit logs and caches."""

    def __init__(self, db_path: str) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        return open_connection(self.db_path)

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        conn = self._get_connection()
        try:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    email TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL DEFAULT '',
                    description TEXT,
                    status TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    creator_id TEXT NOT NULL,
                    merged_from TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_events_creator ON events(creator_id);

                CREATE TABLE IF NOT EXISTS event_invitees (
                    event_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (event_id, user_id)
                );
                CREATE INDEX IF NOT EXISTS idx_event_invitees_user
                    ON event_invitees(user_id);

                CREATE TABLE IF NOT EXISTS audit_logs (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    new_event_id TEXT NOT NULL,
                    merged_event_ids TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS summary_cache (
                    cache_key TEXT PRIMARY KEY,
                    summary TEXT NOT NULL,
                    cached_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS pipeline_tasks (
                    task_id TEXT PRIMARY KEY,
                    task_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    run_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    idempotency_key TEXT NOT NULL UNIQUE,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    locked_at TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_pipeline_tasks_lease
                    ON pipeline_tasks(status, task_type, run_at);
                """
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create schema: {exc}") from exc
        finally:
            conn.close()

    # Users -------------------------------------------------------------

    def save_users(self, users: Sequence[Participant]) -> int:
        """Upsert users by id."""
        if not users:
            return 0
        conn = self._get_connection()
        try:
            conn.executemany(
                """
                INSERT INTO users (id, name, email) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET name = excluded.name, email = excluded.email
                """,
                [(user.id, user.name, user.email) for user in users],
            )
            conn.commit()
            return len(users)
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to save users: {exc}") from exc
        finally:
            conn.close()

    def user_exists(self, user_id: str) -> bool:
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone()
            return row is not None
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to look up user: {exc}") from exc
        finally:
            conn.close()

    def get_users(self, user_ids: Sequence[str]) -> dict[str, Participant]:
        conn = self._get_connection()
        try:
            return _load_participants(conn, user_ids)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load users: {exc}") from exc
        finally:
            conn.close()

    # Events ------------------------------------------------------------

    def load_events_involving(self, user_id: str) -> list[Event]:
        """Load events where the user is creator or invitee, in insertion order."""
        conn = self._get_connection()
        try:
            rows = conn.execute(
                """
                SELECT e.* FROM events e
                WHERE e.creator_id = ?
                   OR EXISTS (
                       SELECT 1 FROM event_invitees i
                       WHERE i.event_id = e.id AND i.user_id = ?
                   )
                ORDER BY e.rowid
                """,
                (user_id, user_id),
            ).fetchall()
            return _hydrate_events(conn, rows)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load events: {exc}") from exc
        finally:
            conn.close()

    def get_event(self, event_id: str) -> Event | None:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchall()
            events = _hydrate_events(conn, rows)
            return events[0] if events else None
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to get event: {exc}") from exc
        finally:
            conn.close()

    def get_events(self, event_ids: Sequence[str]) -> list[Event]:
        if not event_ids:
            return []
        ids = list(event_ids)
        conn = self._get_connection()
        try:
            rows = conn.execute(
                f"SELECT * FROM events WHERE id IN ({placeholders(len(ids))}) ORDER BY rowid",
                ids,
            ).fetchall()
            return _hydrate_events(conn, rows)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to get events: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def unit_of_work(self) -> Iterator[SQLiteUnitOfWork]:
        """Run writes in one ``BEGIN IMMEDIATE`` transaction.

        Raises:
            RepositoryError: On storage errors (the transaction is rolled back)
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield SQLiteUnitOfWork(conn)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Transaction failed: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    # Audit logs --------------------------------------------------------

    def get_audit_log(self, audit_log_id: str) -> AuditLog | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM audit_logs WHERE id = ?", (audit_log_id,)
            ).fetchone()
            return _row_to_audit_log(row) if row else None
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to get audit log: {exc}") from exc
        finally:
            conn.close()

    def update_audit_log_notes(self, audit_log_id: str, notes: str) -> bool:
        """Write notes once; later writes are ignored."""
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "UPDATE audit_logs SET notes = ? WHERE id = ? AND notes IS NULL",
                (notes, audit_log_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to update audit log notes: {exc}") from exc
        finally:
            conn.close()

    # Summary cache -----------------------------------------------------

    def get_cached_summary(
        self, cache_key: str, *, max_age: timedelta | None = None
    ) -> str | None:
        """Get cached summary by key.

        Args:
            cache_key: Cache key
            max_age: Optional TTL duration

        Returns:
            Cached summary or None
        """
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT summary, cached_at FROM summary_cache WHERE cache_key = ?",
                (cache_key,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to get cached summary: {exc}") from exc
        finally:
            conn.close()

        if not row:
            return None

        if max_age is not None:
            cached_at = from_db_timestamp(row["cached_at"])
            if cached_at is None or cached_at < datetime.now(tz=UTC) - max_age:
                logger.info("summary_cache_entry_expired", cache_key=cache_key)
                self.invalidate_cached_summary(cache_key)
                return None

        return cast(str, row["summary"])

    def save_cached_summary(self, cache_key: str, summary: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO summary_cache (cache_key, summary, cached_at) VALUES (?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE
                SET summary = excluded.summary, cached_at = excluded.cached_at
                """,
                (cache_key, summary, to_db_timestamp(datetime.now(tz=UTC))),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to save cached summary: {exc}") from exc
        finally:
            conn.close()

    def invalidate_cached_summary(self, cache_key: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute("DELETE FROM summary_cache WHERE cache_key = ?", (cache_key,))
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to invalidate cached summary: {exc}") from exc
        finally:
            conn.close()

    # Task queue --------------------------------------------------------

    def task_queue(self) -> TaskQueuePort:
        """Task queue stored in the same database file."""
        return SQLiteTaskQueue(connection_provider(self.db_path))
