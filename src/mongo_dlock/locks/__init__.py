"""Locking subsystem for cross-process coordination through MongoDB.

This package centralizes the lock protocol behind a small service API so
application modules never issue lock writes themselves.
"""

from mongo_dlock.locks.clock import ClockSync, ServerTimeSample, estimate_server_time
from mongo_dlock.locks.coordinator import (
    AcquireResult,
    AcquireStatus,
    LockCoordinator,
    ReleaseResult,
    ReleaseStatus,
)
from mongo_dlock.locks.events import (
    EventDispatcher,
    HistoryRecorder,
    LockEvent,
    LockEventKind,
    LoggingEventListener,
)
from mongo_dlock.locks.indexes import LOCK_INDEXES, IndexProvisioner, setup_indexes
from mongo_dlock.locks.manager import LockManager
from mongo_dlock.locks.reaper import Reaper
from mongo_dlock.locks.schema import LockDocument, LockField, LockState, OwnerInfo
from mongo_dlock.locks.service import LockService
from mongo_dlock.locks.store import HistoryStore, LockStore

__all__ = [
    "AcquireResult",
    "AcquireStatus",
    "ClockSync",
    "EventDispatcher",
    "HistoryRecorder",
    "HistoryStore",
    "IndexProvisioner",
    "LOCK_INDEXES",
    "LockCoordinator",
    "LockDocument",
    "LockEvent",
    "LockEventKind",
    "LockField",
    "LockManager",
    "LockService",
    "LockState",
    "LockStore",
    "LoggingEventListener",
    "OwnerInfo",
    "Reaper",
    "ReleaseResult",
    "ReleaseStatus",
    "ServerTimeSample",
    "estimate_server_time",
    "setup_indexes",
]
