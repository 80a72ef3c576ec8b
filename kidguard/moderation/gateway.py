"""Moderation gateway: one entry point per content submission.

Checks run in this order:
1. Suspended users are rejected outright (text and media alike).
2. Text goes through the local normalizer + pattern matcher; a disallowed
   text records a strike and may trigger a suspension.
3. Images go to the vision-moderation client and never touch the strike
   ledger.

Store outages degrade instead of failing the caller: the suspension check
reads as Active and strike recording reports ``strikes=None``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from kidguard.moderation.events import ModerationEventLog
from kidguard.moderation.image_client import ImageModerationClient
from kidguard.moderation.models import (
    ImageCheckResult,
    ImageSource,
    ModerationDecision,
    Surface,
    SuspensionStatus,
    TextCheckResult,
)
from kidguard.moderation.normalizer import normalize
from kidguard.moderation.patterns import PatternMatcher
from kidguard.moderation.store import LedgerUnavailable
from kidguard.moderation.strikes import StrikeLedger
from kidguard.moderation.suspension import SuspensionStateMachine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def suspension_reason(status: SuspensionStatus, now: datetime) -> str:
    """User-facing explanation of a write block, with the remaining time."""
    if status.until is None:
        return "Cuenta bloqueada temporalmente por seguridad."
    remaining = status.format_remaining(now)
    reason = f"Cuenta bloqueada hasta las {status.until.strftime('%H:%M')} UTC"
    if remaining:
        reason += f" ({remaining} restantes)"
    return reason


class ModerationGateway:
    """Orchestrates text/image checks, strikes and suspension for one user."""

    def __init__(
        self,
        ledger: StrikeLedger,
        suspensions: SuspensionStateMachine,
        image_client: Optional[ImageModerationClient] = None,
        *,
        matcher: Optional[PatternMatcher] = None,
        events: Optional[ModerationEventLog] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ledger = ledger
        self.suspensions = suspensions
        self.image_client = image_client or ImageModerationClient()
        self.matcher = matcher or PatternMatcher()
        self.events = events
        self._clock = clock

    # -- helpers -------------------------------------------------------------

    def _suspension(self, user_id: str, now: datetime) -> SuspensionStatus:
        try:
            return self.suspensions.is_suspended(user_id, now)
        except LedgerUnavailable as exc:
            logger.error(f"[gateway] suspension lookup failed for user={user_id}: {exc}")
            return SuspensionStatus(suspended=False)

    def _journal(self, **kwargs) -> None:
        if self.events is None:
            return
        try:
            self.events.log_event(**kwargs)
        except OSError as exc:
            logger.error(f"[gateway] cannot write moderation event: {exc}")

    def is_suspended(self, user_id: str, now: Optional[datetime] = None) -> SuspensionStatus:
        return self._suspension(user_id, now or self._clock())

    # -- text ----------------------------------------------------------------

    def check_text(
        self,
        text: str,
        surface: Surface,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> TextCheckResult:
        """Decide whether *text* may be published by *user_id* on *surface*."""
        now = now or self._clock()
        surface = Surface(surface)

        status = self._suspension(user_id, now)
        if status.suspended:
            return TextCheckResult(
                allowed=False,
                reason=suspension_reason(status, now),
                suspended=True,
                suspended_until=status.until,
            )

        if not text or not text.strip():
            return TextCheckResult(allowed=True)

        normalized = normalize(text)
        decision = self.matcher.match(normalized.spaced, normalized.tight, normalized.source)
        if decision is None:
            decision = ModerationDecision(allowed=True)

        self._journal(
            user_id=user_id,
            surface=surface.value,
            kind="text",
            snippet=text,
            allowed=decision.allowed,
            categories=sorted(decision.categories),
            severity=decision.severity.value if decision.severity else None,
            reason=decision.reason or "",
            now=now,
        )

        if decision.allowed:
            return TextCheckResult(allowed=True)

        result = TextCheckResult(
            allowed=False,
            reason=decision.reason,
            categories=sorted(decision.categories),
            severity=decision.severity,
        )
        try:
            result.strikes = self.ledger.record_strike(
                user_id, surface, now, categories=decision.categories, reason=decision.reason or ""
            )
            after = self.suspensions.register_strikes(user_id, result.strikes, now)
        except LedgerUnavailable as exc:
            logger.error(f"[gateway] strike not recorded for user={user_id}: {exc}")
            return result

        if after.suspended:
            result.suspended = True
            result.suspended_until = after.until
        return result

    # -- images --------------------------------------------------------------

    async def check_image(
        self,
        image: ImageSource,
        surface: Surface,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> ImageCheckResult:
        """Decide whether *image* may be published; never updates strikes."""
        now = now or self._clock()
        surface = Surface(surface)

        status = await asyncio.to_thread(self._suspension, user_id, now)
        if status.suspended:
            return ImageCheckResult(
                allowed=False,
                reason=suspension_reason(status, now),
                suspended=True,
                suspended_until=status.until,
            )

        decision = await self.image_client.check_image(image, surface)

        await asyncio.to_thread(
            self._journal,
            user_id=user_id,
            surface=surface.value,
            kind="image",
            snippet=image.describe(),
            allowed=decision.allowed,
            categories=sorted(decision.categories),
            severity=decision.severity.value if decision.severity else None,
            reason=decision.reason or "",
            fallback=decision.fallback,
            now=now,
        )

        return ImageCheckResult(
            allowed=decision.allowed,
            categories=sorted(decision.categories),
            severity=decision.severity,
            reason=decision.reason,
            fallback=decision.fallback,
        )
