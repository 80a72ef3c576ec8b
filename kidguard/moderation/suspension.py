"""Write-access state derived from the strike ledger.

States are ``Active`` and ``Suspended(until)``.  Crossing the strike
threshold stores a suspension window; the way back to ``Active`` is implicit:
a window whose ``until`` has passed reads as Active without any write.
Suspension only blocks writes (comments, chat, posts), never reads.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from loguru import logger

from kidguard.moderation.models import SuspensionStatus, SuspensionWindow
from kidguard.moderation.store import ModerationStore, as_utc

STRIKE_THRESHOLD = 3
SUSPENSION_DURATION = timedelta(hours=24)


class SuspensionStateMachine:
    """Applies the strike threshold and answers ``is_suspended`` queries."""

    def __init__(
        self,
        store: ModerationStore,
        threshold: int = STRIKE_THRESHOLD,
        duration: timedelta = SUSPENSION_DURATION,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._store = store
        self.threshold = threshold
        self.duration = duration

    def register_strikes(self, user_id: str, strike_count: int, now: datetime) -> SuspensionStatus:
        """Fire Active -> Suspended when *strike_count* reaches the threshold."""
        if strike_count < self.threshold:
            return self.is_suspended(user_id, now)

        window = self._store.upsert_suspension(
            SuspensionWindow(
                user_id=user_id,
                until=now + self.duration,
                strike_count_at_trigger=strike_count,
            ),
            now=now,
        )
        logger.warning(
            f"[suspension] user={user_id} suspended until {window.until.isoformat()} "
            f"after {strike_count} strike(s)"
        )
        return SuspensionStatus(suspended=True, until=window.until)

    def is_suspended(self, user_id: str, now: datetime) -> SuspensionStatus:
        window = self._store.get_suspension(user_id)
        if window is None or as_utc(now) >= window.until:
            return SuspensionStatus(suspended=False)
        return SuspensionStatus(suspended=True, until=window.until)

    def lift(self, user_id: str) -> bool:
        """End a suspension early (administrative action)."""
        lifted = self._store.delete_suspension(user_id)
        if lifted:
            logger.info(f"[suspension] user={user_id} suspension lifted")
        return lifted

    def clear_expired(self, now: datetime) -> int:
        return self._store.delete_suspensions_before(now)
