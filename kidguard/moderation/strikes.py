"""Per-user rolling violation counter."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from loguru import logger

from kidguard.moderation.models import StrikeRecord, Surface
from kidguard.moderation.store import ModerationStore, as_utc

DEFAULT_WINDOW = timedelta(hours=24)


class StrikeLedger:
    """Counts a user's violations inside a trailing time window.

    Records outside the window are ignored when counting; :meth:`prune`
    removes them lazily.
    """

    def __init__(self, store: ModerationStore, window: timedelta = DEFAULT_WINDOW) -> None:
        self._store = store
        self.window = window

    def record_strike(
        self,
        user_id: str,
        surface: Surface,
        now: datetime,
        categories: Iterable[str] = (),
        reason: str = "",
    ) -> int:
        """Append a strike and return the post-increment count in the window."""
        record = StrikeRecord(
            user_id=user_id,
            timestamp=now,
            surface=Surface(surface),
            categories=sorted(categories),
            reason=reason,
        )
        count = self._store.append_strike(record, window_start=now - self.window)
        logger.info(f"[strikes] user={user_id} surface={record.surface.value} count={count}")
        return count

    def count_recent(self, user_id: str, now: datetime, window: timedelta | None = None) -> int:
        span = window or self.window
        return self._store.count_strikes(user_id, window_start=now - span, window_end=now)

    def recent_strikes(self, user_id: str, now: datetime) -> list[StrikeRecord]:
        return [r for r in self._store.list_strikes(user_id, since=now - self.window) if r.timestamp <= as_utc(now)]

    def prune(self, now: datetime) -> int:
        """Delete records that fell out of the window; return how many."""
        removed = self._store.delete_strikes_before(now - self.window)
        if removed:
            logger.debug(f"[strikes] pruned {removed} expired strike(s)")
        return removed

    def reset(self, user_id: str) -> None:
        self._store.clear_strikes(user_id)
