"""Tests for heartbeat-timeout reclamation."""

from __future__ import annotations

import threading

import pytest

from conftest import START_TIME, wait_until
from mongo_dlock.core.config import LockOptions, ReaperConfig
from mongo_dlock.core.exceptions import ConfigurationError, StoreTransportError
from mongo_dlock.locks.coordinator import ReleaseStatus
from mongo_dlock.locks.reaper import Reaper
from mongo_dlock.locks.schema import LockState

SHORT = LockOptions(inactive_lock_timeout_ms=1_000, heartbeat_interval_ms=200)


def _state(store, name: str) -> str:
    return store.collection.find_one({"_id": name})["state"]


def test_stale_lock_is_reclaimed(coordinator, store, server_clock, recorder) -> None:
    held = coordinator.acquire("stale-job", SHORT)
    server_clock.advance(seconds=2)

    reclaimed = Reaper(coordinator).run_once()

    assert reclaimed == ["stale-job"]
    doc = store.collection.find_one({"_id": "stale-job"})
    assert doc["state"] == LockState.UNLOCKED.value
    assert doc["lockToken"] is None
    assert doc["ownerAppName"] is None
    event = recorder.events[-1]
    assert event.kind.value == "reclaimed"
    assert event.reason == "timeout"
    assert event.lock_token == held.token
    assert event.owner.hostname == "worker-7"
    assert event.held_for.total_seconds() == 2


def test_fresh_lock_is_left_alone(coordinator, store, server_clock) -> None:
    coordinator.acquire("busy-job", SHORT)
    server_clock.advance(milliseconds=900)

    assert Reaper(coordinator).run_once() == []
    assert _state(store, "busy-job") == LockState.LOCKED.value


def test_timeout_boundary_is_exclusive(coordinator, store, server_clock) -> None:
    coordinator.acquire("edge-job", SHORT)
    server_clock.advance(milliseconds=1_000)

    assert Reaper(coordinator).run_once() == []
    server_clock.advance(milliseconds=1)
    assert Reaper(coordinator).run_once() == ["edge-job"]


def test_heartbeat_after_scan_prevents_reclamation(coordinator, store, server_clock, monkeypatch) -> None:
    held = coordinator.acquire("racing-job", SHORT)
    server_clock.advance(seconds=2)
    real_iter_locked = store.iter_locked

    def scan_then_heartbeat(batch_size):
        docs = list(real_iter_locked(batch_size))
        assert coordinator.heartbeat("racing-job", held.token)
        return docs

    monkeypatch.setattr(store, "iter_locked", scan_then_heartbeat)

    assert Reaper(coordinator).run_once() == []
    doc = store.collection.find_one({"_id": "racing-job"})
    assert doc["state"] == LockState.LOCKED.value
    assert doc["lockToken"] == held.token


def test_reacquire_after_scan_prevents_reclamation(coordinator, store, server_clock, monkeypatch) -> None:
    held = coordinator.acquire("racing-job", SHORT)
    server_clock.advance(seconds=2)
    real_iter_locked = store.iter_locked
    fresh = {}

    def scan_then_handover(batch_size):
        docs = list(real_iter_locked(batch_size))
        coordinator.release("racing-job", held.token)
        fresh["token"] = coordinator.acquire("racing-job", SHORT).token
        return docs

    monkeypatch.setattr(store, "iter_locked", scan_then_handover)

    assert Reaper(coordinator).run_once() == []
    assert store.collection.find_one({"_id": "racing-job"})["lockToken"] == fresh["token"]


def test_previous_holder_loses_lock_after_reclamation(coordinator, server_clock) -> None:
    held = coordinator.acquire("stale-job", SHORT)
    server_clock.advance(seconds=2)
    Reaper(coordinator).run_once()

    assert not coordinator.heartbeat("stale-job", held.token)
    assert coordinator.release("stale-job", held.token).status is ReleaseStatus.NOT_HELD
    assert coordinator.acquire("stale-job", SHORT).acquired


def test_batch_size_limits_each_scan(coordinator, server_clock) -> None:
    for name in ("job-a", "job-b", "job-c"):
        coordinator.acquire(name, SHORT)
    server_clock.advance(seconds=5)
    reaper = Reaper(coordinator, ReaperConfig(interval_seconds=1.0, batch_size=2))

    assert len(reaper.run_once()) == 2
    assert len(reaper.run_once()) == 1
    assert reaper.run_once() == []
    assert reaper.scans == 3
    assert reaper.reclaimed_total == 3


def test_stale_lock_behind_live_locks_is_reached(coordinator, store, server_clock) -> None:
    hourly = LockOptions(inactive_lock_timeout_ms=3_600_000)
    coordinator.acquire("long-running-a", hourly)
    coordinator.acquire("long-running-b", hourly)
    server_clock.advance(seconds=1)
    coordinator.acquire("abandoned", SHORT)
    server_clock.advance(seconds=60)
    reaper = Reaper(coordinator, ReaperConfig(batch_size=2))

    assert reaper.run_once() == ["abandoned"]
    assert _state(store, "abandoned") == LockState.UNLOCKED.value
    assert _state(store, "long-running-a") == LockState.LOCKED.value
    assert _state(store, "long-running-b") == LockState.LOCKED.value
    assert reaper.run_once() == []


def test_reaper_thread_reclaims_and_stops(coordinator, store, server_clock) -> None:
    coordinator.acquire("stale-job", SHORT)
    server_clock.advance(seconds=2)
    reaper = Reaper(coordinator, ReaperConfig(interval_seconds=0.05))

    reaper.start()
    try:
        assert reaper.running
        assert wait_until(lambda: _state(store, "stale-job") == LockState.UNLOCKED.value)
    finally:
        reaper.stop()

    assert not reaper.running


def test_reaper_loop_survives_transport_errors(coordinator, monkeypatch, caplog) -> None:
    reaper = Reaper(coordinator, ReaperConfig(interval_seconds=0.01))
    calls = []

    def flaky_run_once(stop=None):
        calls.append(1)
        if len(calls) == 1:
            raise StoreTransportError("Lock store operation failed", operation="find")
        return []

    monkeypatch.setattr(reaper, "run_once", flaky_run_once)

    reaper.start()
    try:
        assert wait_until(lambda: len(calls) >= 3)
    finally:
        reaper.stop()
    assert "Lock reaper scan failed" in caplog.text


def test_reaper_loop_survives_malformed_documents(coordinator, store, server_clock, caplog) -> None:
    store.collection.insert_one(
        {"_id": "broken", "state": "LOCKED", "lastHeartbeat": START_TIME, "inactiveTimeout": "soon"}
    )
    server_clock.advance(seconds=5)
    reaper = Reaper(coordinator, ReaperConfig(interval_seconds=0.01))

    reaper.start()
    try:
        assert wait_until(lambda: caplog.text.count("Lock reaper scan failed unexpectedly") >= 2)
        assert reaper.running
    finally:
        reaper.stop()


def test_restart_while_previous_loop_is_stopping(coordinator, monkeypatch) -> None:
    reaper = Reaper(coordinator, ReaperConfig(interval_seconds=0.01))
    first_scan_entered = threading.Event()
    release_first_scan = threading.Event()
    stop_events = []

    def slow_first_scan(stop=None):
        stop_events.append(stop)
        if len(stop_events) == 1:
            first_scan_entered.set()
            release_first_scan.wait(5)
        return []

    monkeypatch.setattr(reaper, "run_once", slow_first_scan)

    reaper.start()
    try:
        assert first_scan_entered.wait(2)
        old_thread = reaper._thread
        reaper.stop(timeout=0.05)
        assert old_thread.is_alive()

        reaper.start()
        assert reaper._thread is not old_thread
        assert wait_until(lambda: len(stop_events) >= 2)

        release_first_scan.set()
        old_thread.join(timeout=2)
        assert not old_thread.is_alive()
        assert reaper.running
        assert stop_events[0].is_set()
        assert not stop_events[-1].is_set()
    finally:
        release_first_scan.set()
        reaper.stop()


def test_start_twice_keeps_single_thread(coordinator) -> None:
    reaper = Reaper(coordinator, ReaperConfig(interval_seconds=0.05))
    reaper.start()
    try:
        first = reaper._thread
        reaper.start()
        assert reaper._thread is first
    finally:
        reaper.stop()


@pytest.mark.parametrize(
    "config,field",
    [
        (ReaperConfig(interval_seconds=0), "interval_seconds"),
        (ReaperConfig(batch_size=0), "batch_size"),
    ],
)
def test_invalid_reaper_config_rejected(coordinator, config, field) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        Reaper(coordinator, config)
    assert exc_info.value.field == field
