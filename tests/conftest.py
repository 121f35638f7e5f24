"""Pytest configuration and fixtures for mongo-dlock tests"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Any

import mongomock
import pytest

from mongo_dlock.core.config import LockSvcOptions
from mongo_dlock.locks.clock import ClockSync
from mongo_dlock.locks.coordinator import LockCoordinator
from mongo_dlock.locks.events import EventDispatcher, LockEvent
from mongo_dlock.locks.store import LockStore

START_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeServerClock:
    """Stand-in for ``serverStatus.localTime``; optionally advances per call."""

    def __init__(self, start: datetime = START_TIME, tick: timedelta = timedelta(0)):
        self.current = start
        self.tick = tick
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self.calls += 1
            value = self.current
            self.current = self.current + self.tick
            return value

    def advance(self, **kwargs: float) -> None:
        with self._lock:
            self.current = self.current + timedelta(**kwargs)


class SerializedCollection:
    """Collection proxy applying one operation at a time.

    MongoDB makes each single-document operation atomic and linearizable;
    mongomock does not promise that across threads, so the proxy does.
    """

    _serialized = {
        "find_one",
        "find_one_and_update",
        "insert_one",
        "update_one",
        "create_index",
        "index_information",
    }

    def __init__(self, collection: Any):
        self._collection = collection
        self._lock = threading.Lock()

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._collection, name)
        if name not in self._serialized:
            return attr

        def _call(*args: Any, **kwargs: Any) -> Any:
            with self._lock:
                return attr(*args, **kwargs)

        return _call


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[LockEvent] = []

    def __call__(self, event: LockEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [event.kind.value for event in self.events]


def frozen_clock_sync(sample_count: int = 1) -> ClockSync:
    """ClockSync whose local clock never moves: zero latency, zero drift."""
    return ClockSync(sample_count, clock=lambda: 0.0)


@pytest.fixture
def server_clock() -> FakeServerClock:
    return FakeServerClock()


@pytest.fixture
def mongo_client() -> mongomock.MongoClient:
    return mongomock.MongoClient()


@pytest.fixture
def collection(mongo_client: mongomock.MongoClient) -> SerializedCollection:
    return SerializedCollection(mongo_client["lock_tests"]["locks"])


@pytest.fixture
def store(collection: SerializedCollection, server_clock: FakeServerClock) -> LockStore:
    lock_store = LockStore(collection)
    lock_store.server_time = server_clock  # type: ignore[method-assign]
    return lock_store


@pytest.fixture
def svc_options() -> LockSvcOptions:
    return LockSvcOptions(
        db_name="lock_tests",
        app_name="test-app",
        host_address="10.0.0.7",
        hostname="worker-7",
        library_version="test",
    )


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def coordinator(store: LockStore, svc_options: LockSvcOptions, recorder: EventRecorder) -> LockCoordinator:
    return LockCoordinator(
        store,
        svc_options,
        clock_sync=frozen_clock_sync(),
        events=EventDispatcher([recorder]),
    )


def wait_until(predicate, timeout_seconds: float = 3.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
