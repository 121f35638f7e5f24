"""Public entry point wiring the store, coordinator, reaper and listeners."""

from __future__ import annotations

import logging
from typing import Any

from bson import ObjectId
from pymongo import MongoClient

from mongo_dlock.core.config import LockOptions, LockSvcOptions, ReaperConfig
from mongo_dlock.core.exceptions import ConfigurationError
from mongo_dlock.locks.clock import ClockSync
from mongo_dlock.locks.coordinator import AcquireResult, LockCoordinator, ReleaseResult
from mongo_dlock.locks.events import EventDispatcher, HistoryRecorder, LockEventListener, LoggingEventListener
from mongo_dlock.locks.indexes import IndexProvisioner
from mongo_dlock.locks.manager import LockManager
from mongo_dlock.locks.reaper import Reaper
from mongo_dlock.locks.schema import LockDocument, LockState
from mongo_dlock.locks.store import HistoryStore, LockStore

logger = logging.getLogger(__name__)


class LockService:
    """Distributed lock service backed by one MongoDB collection.

    Args:
        svc_options: Service options; validated eagerly
        client: Existing pymongo client; one is created from ``svc_options.uri`` if omitted
        clock_sync: Override for server time estimation (tests)
    """

    def __init__(
        self,
        svc_options: LockSvcOptions,
        client: Any | None = None,
        *,
        clock_sync: ClockSync | None = None,
    ):
        svc_options.validate()
        self.svc_options = svc_options
        self._owns_client = client is None
        self.client = client if client is not None else MongoClient(
            svc_options.uri,
            serverSelectionTimeoutMS=svc_options.server_selection_timeout_ms,
            socketTimeoutMS=svc_options.socket_timeout_ms,
            appname=svc_options.app_name,
        )
        database = self.client[svc_options.db_name]
        self.store = LockStore(database[svc_options.collection_name], use_sessions=svc_options.use_sessions)

        self.events = EventDispatcher([LoggingEventListener()])
        self.history: HistoryStore | None = None
        if svc_options.enable_history:
            self.history = HistoryStore(database[svc_options.history_collection_name])
            self.events.add(HistoryRecorder(self.history))

        self.coordinator = LockCoordinator(self.store, svc_options, clock_sync=clock_sync, events=self.events)
        self._reaper: Reaper | None = None
        self._is_setup = False

    def setup(self) -> list[str]:
        """Validate options and ensure indexes; safe to call repeatedly."""
        self.svc_options.validate()
        created = IndexProvisioner(self.store).setup()
        self._is_setup = True
        return created

    def acquire(self, lock_name: str, lock_options: LockOptions | None = None) -> AcquireResult:
        _require_name(lock_name)
        return self.coordinator.acquire(lock_name, lock_options)

    def release(self, lock_name: str, token: ObjectId, lock_options: LockOptions | None = None) -> ReleaseResult:
        _require_name(lock_name)
        return self.coordinator.release(lock_name, token, lock_options)

    def heartbeat(self, lock_name: str, token: ObjectId) -> bool:
        _require_name(lock_name)
        return self.coordinator.heartbeat(lock_name, token)

    def lock(self, lock_name: str, lock_options: LockOptions | None = None, *, heartbeat: bool = True) -> LockManager:
        """Return a holder handle; use it as a context manager or call acquire()."""
        _require_name(lock_name)
        return LockManager(self.coordinator, lock_name, lock_options, heartbeat=heartbeat)

    def get_info(self, lock_name: str) -> LockDocument | None:
        doc = self.store.find_one(lock_name)
        return LockDocument.from_document(doc) if doc is not None else None

    def list_locks(self, state: LockState | None = None) -> list[LockDocument]:
        return [LockDocument.from_document(doc) for doc in self.store.find_all(state)]

    def add_listener(self, listener: LockEventListener) -> None:
        self.events.add(listener)

    @property
    def reaper(self) -> Reaper | None:
        return self._reaper

    def start_reaper(self, config: ReaperConfig | None = None) -> Reaper:
        if not self._is_setup:
            logger.warning("Starting lock reaper before setup(); reaper scans may be unindexed")
        if self._reaper is not None and self._reaper.running:
            return self._reaper
        self._reaper = Reaper(self.coordinator, config)
        self._reaper.start()
        return self._reaper

    def stop_reaper(self) -> None:
        if self._reaper is not None:
            self._reaper.stop()

    def close(self) -> None:
        self.stop_reaper()
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> LockService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _require_name(lock_name: str) -> None:
    if not isinstance(lock_name, str) or not lock_name:
        raise ConfigurationError("Lock name must be a non-empty string", field="lock_name")
