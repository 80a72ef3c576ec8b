"""Tests for the strike ledger, its store and the suspension state machine."""

import tempfile
import threading
from datetime import datetime, timedelta, timezone

from kidguard.moderation.models import Surface
from kidguard.moderation.store import ModerationStore
from kidguard.moderation.strikes import StrikeLedger
from kidguard.moderation.suspension import SuspensionStateMachine

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _setup(tmp):
    store = ModerationStore(tmp)
    return StrikeLedger(store), SuspensionStateMachine(store)


# --- Ledger ---


def test_record_strike_returns_post_increment_count():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, _ = _setup(tmp)
        assert ledger.record_strike("u1", Surface.COMMENT, T0) == 1
        assert ledger.record_strike("u1", Surface.CHAT, T0 + timedelta(minutes=1)) == 2
        assert ledger.record_strike("u2", Surface.POST, T0) == 1


def test_window_excludes_old_strikes():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, _ = _setup(tmp)
        ledger.record_strike("u1", Surface.COMMENT, T0)
        later = T0 + timedelta(hours=25)
        assert ledger.count_recent("u1", later) == 0
        assert ledger.record_strike("u1", Surface.COMMENT, later) == 1


def test_recent_strikes_keep_details():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, _ = _setup(tmp)
        ledger.record_strike("u1", Surface.CHAT, T0, categories={"profanity"}, reason="Lenguaje")
        strikes = ledger.recent_strikes("u1", T0 + timedelta(minutes=5))
        assert len(strikes) == 1
        assert strikes[0].surface == Surface.CHAT
        assert strikes[0].categories == ["profanity"]
        assert strikes[0].reason == "Lenguaje"
        assert strikes[0].timestamp == T0


def test_prune_and_reset():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, _ = _setup(tmp)
        ledger.record_strike("u1", Surface.COMMENT, T0)
        ledger.record_strike("u1", Surface.COMMENT, T0 + timedelta(hours=20))
        assert ledger.prune(T0 + timedelta(hours=30)) == 1
        ledger.reset("u1")
        assert ledger.count_recent("u1", T0 + timedelta(hours=21)) == 0


def test_concurrent_strikes_are_not_lost():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, _ = _setup(tmp)
        counts = []
        lock = threading.Lock()

        def worker(i):
            count = ledger.record_strike("u1", Surface.CHAT, T0 + timedelta(seconds=i))
            with lock:
                counts.append(count)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert ledger.count_recent("u1", T0 + timedelta(minutes=1)) == 8
        assert sorted(counts) == list(range(1, 9))


def test_later_stamped_strike_committed_first_is_counted():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, machine = _setup(tmp)
        counts = []
        for offset in (0, 2, 1):
            when = T0 + timedelta(seconds=offset)
            count = ledger.record_strike("u1", Surface.CHAT, when)
            counts.append(count)
            status = machine.register_strikes("u1", count, when)

        assert counts == [1, 2, 3]
        assert status.suspended
        assert machine.is_suspended("u1", T0 + timedelta(seconds=3)).suspended


def test_store_survives_reopen():
    with tempfile.TemporaryDirectory() as tmp:
        StrikeLedger(ModerationStore(tmp)).record_strike("u1", Surface.POST, T0)
        assert StrikeLedger(ModerationStore(tmp)).count_recent("u1", T0) == 1


# --- Suspension ---


def test_suspension_after_three_strikes():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, machine = _setup(tmp)
        for i in range(2):
            count = ledger.record_strike("u1", Surface.COMMENT, T0 + timedelta(minutes=i))
            assert not machine.register_strikes("u1", count, T0 + timedelta(minutes=i)).suspended

        third = T0 + timedelta(minutes=2)
        count = ledger.record_strike("u1", Surface.COMMENT, third)
        status = machine.register_strikes("u1", count, third)
        assert status.suspended
        assert status.until == third + timedelta(hours=24)
        assert machine.is_suspended("u1", third + timedelta(hours=23)).suspended


def test_suspension_expires_without_writes():
    with tempfile.TemporaryDirectory() as tmp:
        _, machine = _setup(tmp)
        machine.register_strikes("u1", 3, T0)
        assert machine.is_suspended("u1", T0 + timedelta(hours=24)).suspended is False
        assert machine.is_suspended("u1", T0 + timedelta(hours=24) - timedelta(seconds=1)).suspended


def test_fresh_count_after_expiry():
    with tempfile.TemporaryDirectory() as tmp:
        ledger, machine = _setup(tmp)
        for i in range(3):
            count = ledger.record_strike("u1", Surface.COMMENT, T0)
        machine.register_strikes("u1", count, T0)

        after = T0 + timedelta(hours=24, minutes=1)
        assert not machine.is_suspended("u1", after).suspended
        count = ledger.record_strike("u1", Surface.COMMENT, after)
        assert count == 1
        assert not machine.register_strikes("u1", count, after).suspended


def test_retrigger_keeps_later_until():
    with tempfile.TemporaryDirectory() as tmp:
        _, machine = _setup(tmp)
        first = machine.register_strikes("u1", 3, T0 + timedelta(hours=1))
        second = machine.register_strikes("u1", 4, T0)
        assert second.until == first.until


def test_lift_and_clear_expired():
    with tempfile.TemporaryDirectory() as tmp:
        _, machine = _setup(tmp)
        machine.register_strikes("u1", 3, T0)
        machine.register_strikes("u2", 3, T0)
        assert machine.lift("u1")
        assert not machine.lift("u1")
        assert not machine.is_suspended("u1", T0).suspended
        assert machine.clear_expired(T0 + timedelta(days=2)) == 1


def test_naive_now_is_treated_as_utc():
    with tempfile.TemporaryDirectory() as tmp:
        _, machine = _setup(tmp)
        machine.register_strikes("u1", 3, T0)
        assert machine.is_suspended("u1", T0.replace(tzinfo=None)).suspended


def test_remaining_time_formatting():
    with tempfile.TemporaryDirectory() as tmp:
        _, machine = _setup(tmp)
        machine.register_strikes("u1", 3, T0)
        status = machine.is_suspended("u1", T0)
        assert status.format_remaining(T0 + timedelta(hours=21, minutes=45)) == "2h 15min"
        assert status.format_remaining(T0 + timedelta(hours=23, minutes=20)) == "40 minutos"
