"""SQLite persistence for strikes and suspensions.

One database file (``~/.kidguard/moderation/moderation.db``) holds:
- ``strikes`` -- append-only violation log, one row per disallowed submission
- ``suspensions`` -- at most one row per user with the ``until`` timestamp

Timestamps are stored as UTC ISO-8601 strings with fixed microsecond
precision so they compare correctly as text.  Every write runs inside a
``BEGIN IMMEDIATE`` transaction; concurrent writers for the same user
serialize on the database lock instead of overwriting each other.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from kidguard.moderation.models import StrikeRecord, Surface, SuspensionWindow

_SCHEMA = """
CREATE TABLE IF NOT EXISTS strikes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    surface TEXT NOT NULL,
    created_at TEXT NOT NULL,
    categories TEXT NOT NULL DEFAULT '[]',
    reason TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_strikes_user_time ON strikes (user_id, created_at);
CREATE TABLE IF NOT EXISTS suspensions (
    user_id TEXT PRIMARY KEY,
    until TEXT NOT NULL,
    strike_count_at_trigger INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
"""


class LedgerUnavailable(RuntimeError):
    """The strike/suspension store could not be read or written."""


def as_utc(dt: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_db_time(dt: datetime) -> str:
    return as_utc(dt).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


class ModerationStore:
    """Transactional store behind the strike ledger and suspension state."""

    def __init__(self, base_dir: str | Path | None = None, timeout: float = 10.0) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".kidguard" / "moderation"
        self._base.mkdir(parents=True, exist_ok=True)
        self._db_path = self._base / "moderation.db"
        self._timeout = timeout
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @property
    def path(self) -> Path:
        return self._db_path

    # -- connection helpers --------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise LedgerUnavailable(f"cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as exc:
            logger.error(f"[store] database error: {exc}")
            raise LedgerUnavailable(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # -- strikes -------------------------------------------------------------

    def append_strike(self, record: StrikeRecord, window_start: datetime) -> int:
        """Insert *record* and return the user's strike count since *window_start*.

        Insert and count share one write transaction, so the returned value
        already includes every concurrent strike committed before it.
        Strikes stamped later than *record* still count: a concurrent writer
        may commit a newer timestamp first.
        """
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO strikes (user_id, surface, created_at, categories, reason) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    record.user_id,
                    record.surface.value,
                    to_db_time(record.timestamp),
                    json.dumps(sorted(record.categories)),
                    record.reason,
                ),
            )
            row = conn.execute(
                "SELECT COUNT(*) FROM strikes WHERE user_id = ? AND created_at > ?",
                (record.user_id, to_db_time(window_start)),
            ).fetchone()
        return int(row[0])

    def count_strikes(self, user_id: str, window_start: datetime, window_end: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM strikes WHERE user_id = ? AND created_at > ? AND created_at <= ?",
                (user_id, to_db_time(window_start), to_db_time(window_end)),
            ).fetchone()
        return int(row[0])

    def list_strikes(self, user_id: str, since: Optional[datetime] = None) -> list[StrikeRecord]:
        query = "SELECT * FROM strikes WHERE user_id = ?"
        params: list[str] = [user_id]
        if since is not None:
            query += " AND created_at > ?"
            params.append(to_db_time(since))
        query += " ORDER BY created_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            StrikeRecord(
                user_id=r["user_id"],
                timestamp=from_db_time(r["created_at"]),
                surface=Surface(r["surface"]),
                categories=json.loads(r["categories"]),
                reason=r["reason"],
            )
            for r in rows
        ]

    def delete_strikes_before(self, cutoff: datetime) -> int:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM strikes WHERE created_at <= ?", (to_db_time(cutoff),))
        return cur.rowcount

    def clear_strikes(self, user_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM strikes WHERE user_id = ?", (user_id,))

    # -- suspensions ---------------------------------------------------------

    def get_suspension(self, user_id: str) -> Optional[SuspensionWindow]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT user_id, until, strike_count_at_trigger FROM suspensions WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return SuspensionWindow(
            user_id=row["user_id"],
            until=from_db_time(row["until"]),
            strike_count_at_trigger=row["strike_count_at_trigger"],
        )

    def upsert_suspension(self, window: SuspensionWindow, now: datetime) -> SuspensionWindow:
        """Store *window*, keeping an existing later ``until``; return the stored row."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO suspensions (user_id, until, strike_count_at_trigger, created_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(user_id) DO UPDATE SET "
                "until = MAX(suspensions.until, excluded.until), "
                "strike_count_at_trigger = CASE WHEN excluded.until > suspensions.until "
                "THEN excluded.strike_count_at_trigger ELSE suspensions.strike_count_at_trigger END, "
                "created_at = excluded.created_at",
                (
                    window.user_id,
                    to_db_time(window.until),
                    window.strike_count_at_trigger,
                    to_db_time(now),
                ),
            )
            row = conn.execute(
                "SELECT until, strike_count_at_trigger FROM suspensions WHERE user_id = ?",
                (window.user_id,),
            ).fetchone()
        return SuspensionWindow(
            user_id=window.user_id,
            until=from_db_time(row["until"]),
            strike_count_at_trigger=row["strike_count_at_trigger"],
        )

    def delete_suspension(self, user_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM suspensions WHERE user_id = ?", (user_id,))
        return cur.rowcount > 0

    def delete_suspensions_before(self, now: datetime) -> int:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM suspensions WHERE until <= ?", (to_db_time(now),))
        return cur.rowcount
