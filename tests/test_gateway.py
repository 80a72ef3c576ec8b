"""Tests for the moderation gateway."""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx

from kidguard.moderation.events import ModerationEventLog
from kidguard.moderation.gateway import ModerationGateway, suspension_reason
from kidguard.moderation.image_client import ImageModerationClient
from kidguard.moderation.models import ImageSource, Surface, SuspensionStatus
from kidguard.moderation.store import LedgerUnavailable, ModerationStore
from kidguard.moderation.strikes import StrikeLedger
from kidguard.moderation.suspension import SuspensionStateMachine

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _gateway(tmp, image_client=None):
    store = ModerationStore(Path(tmp) / "db")
    return ModerationGateway(
        StrikeLedger(store),
        SuspensionStateMachine(store),
        image_client,
        events=ModerationEventLog(Path(tmp) / "events"),
        clock=lambda: T0,
    )


class _BrokenStore:
    """Store whose every call fails the way an unreachable database does."""

    def _fail(self, *args, **kwargs):
        raise LedgerUnavailable("database is locked")

    append_strike = count_strikes = list_strikes = get_suspension = upsert_suspension = _fail


# --- Text ---


def test_clean_text_allowed_without_strike():
    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp)
        result = gw.check_text("me encanta tu dibujo", Surface.COMMENT, "u1")
        assert result.allowed
        assert result.strikes is None
        assert gw.ledger.count_recent("u1", T0) == 0


def test_empty_text_allowed():
    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp)
        assert gw.check_text("   ", Surface.CHAT, "u1").allowed


def test_violation_records_strike():
    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp)
        result = gw.check_text("eres un idiota", Surface.CHAT, "u1")
        assert not result.allowed
        assert result.categories == ["bullying"]
        assert result.strikes == 1
        assert not result.suspended


def test_third_violation_suspends_and_blocks_writes():
    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp)
        for i in range(2):
            gw.check_text("mierda", Surface.COMMENT, "u1", now=T0 + timedelta(minutes=i))
        third = gw.check_text("p.u.t.a", Surface.COMMENT, "u1", now=T0 + timedelta(minutes=2))
        assert third.strikes == 3
        assert third.suspended
        assert third.suspended_until == T0 + timedelta(hours=24, minutes=2)

        blocked = gw.check_text("hola", Surface.CHAT, "u1", now=T0 + timedelta(hours=1))
        assert not blocked.allowed
        assert blocked.suspended
        assert blocked.strikes is None
        assert blocked.reason.startswith("Cuenta bloqueada hasta las 12:02 UTC")

        # a rejection while suspended is not a new strike
        assert gw.ledger.count_recent("u1", T0 + timedelta(hours=1)) == 3


def test_other_users_unaffected_by_suspension():
    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp)
        gw.suspensions.register_strikes("u1", 3, T0)
        assert gw.check_text("hola", Surface.CHAT, "u2").allowed


def test_journal_records_decisions():
    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp)
        gw.check_text("hola amigo", Surface.CHAT, "u1", now=T0)
        gw.check_text("gilipollas", Surface.CHAT, "u1", now=T0 + timedelta(seconds=1))
        events = gw.events.get_events(user_id="u1")
        assert [e.allowed for e in events] == [False, True]
        assert events[0].categories == ["profanity"]
        assert events[0].kind == "text"


def test_store_outage_degrades():
    with tempfile.TemporaryDirectory() as tmp:
        store = _BrokenStore()
        gw = ModerationGateway(
            StrikeLedger(store),
            SuspensionStateMachine(store),
            events=ModerationEventLog(Path(tmp)),
            clock=lambda: T0,
        )
        assert gw.check_text("hola", Surface.COMMENT, "u1").allowed
        result = gw.check_text("mierda", Surface.COMMENT, "u1")
        assert not result.allowed
        assert result.strikes is None
        assert not gw.is_suspended("u1").suspended


# --- Images ---


def _vision(handler):
    return ImageModerationClient("https://vision.test/moderate", transport=httpx.MockTransport(handler))


def test_blocked_image_records_no_strike():
    def handler(request):
        return httpx.Response(200, json={"allowed": False, "categories": ["nudity"], "severity": "high", "reason": "x"})

    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp, _vision(handler))
        result = asyncio.run(gw.check_image(ImageSource(url="https://cdn.test/a.jpg"), Surface.POST, "u1"))
        assert not result.allowed
        assert result.categories == ["nudity"]
        assert gw.ledger.count_recent("u1", T0) == 0


def test_image_fail_open_is_journalled():
    def handler(request):
        return httpx.Response(500)

    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp, _vision(handler))
        result = asyncio.run(gw.check_image(ImageSource(data=b"\xff\xd8jpeg"), Surface.POST, "u1"))
        assert result.allowed
        assert result.fallback
        events = gw.events.get_events(fallback=True)
        assert len(events) == 1
        assert events[0].kind == "image"
        assert events[0].snippet == "[inline image]"


def test_suspended_user_cannot_post_images():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"allowed": True})

    with tempfile.TemporaryDirectory() as tmp:
        gw = _gateway(tmp, _vision(handler))
        gw.suspensions.register_strikes("u1", 3, T0)
        result = asyncio.run(gw.check_image(ImageSource(url="https://cdn.test/a.jpg"), Surface.POST, "u1"))
        assert not result.allowed
        assert result.suspended
        assert calls == []


def test_suspension_reason_without_until():
    assert "temporalmente" in suspension_reason(SuspensionStatus(suspended=True), T0)
