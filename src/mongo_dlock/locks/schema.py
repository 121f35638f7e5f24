"""Persisted lock document schema.

Design principles:
- Lock truth is ``state`` plus ``lockToken``; nothing else decides ownership.
- Owner fields are diagnostic and are never read by lock logic.
- Timestamps are in the store's clock domain and stored as UTC datetimes.
"""

from __future__ import annotations

import multiprocessing
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from bson import ObjectId


class LockField(str, Enum):
    """Field names of a lock document."""

    ID = "_id"
    LIBRARY_VERSION = "libraryVersion"
    UPDATED = "updated"
    LAST_HEARTBEAT = "lastHeartbeat"
    LOCK_ACQUIRED_TIME = "lockAcquiredTime"
    LOCK_TOKEN = "lockToken"
    STATE = "state"
    OWNER_APP_NAME = "ownerAppName"
    OWNER_ADDRESS = "ownerAddress"
    OWNER_HOSTNAME = "ownerHostname"
    OWNER_THREAD_ID = "ownerThreadId"
    OWNER_THREAD_NAME = "ownerThreadName"
    OWNER_PROCESS_NAME = "ownerProcessName"
    ATTEMPT_COUNT = "attemptCount"
    INACTIVE_TIMEOUT = "inactiveTimeout"


OWNER_FIELDS: tuple[LockField, ...] = (
    LockField.OWNER_APP_NAME,
    LockField.OWNER_ADDRESS,
    LockField.OWNER_HOSTNAME,
    LockField.OWNER_THREAD_ID,
    LockField.OWNER_THREAD_NAME,
    LockField.OWNER_PROCESS_NAME,
)


class LockState(str, Enum):
    """State of a lock document."""

    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"

    @classmethod
    def from_value(cls, value: object) -> LockState:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown lock state {value!r}") from None


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize driver datetimes (naive UTC by default) to aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def new_lock_token() -> ObjectId:
    return ObjectId()


@dataclass(frozen=True)
class OwnerInfo:
    """Diagnostic identity of a lock holder.

    The execution unit is the current thread; its group is the process.
    """

    app_name: str
    host_address: str
    hostname: str
    thread_id: int
    thread_name: str
    process_name: str

    @classmethod
    def current(cls, app_name: str, host_address: str, hostname: str) -> OwnerInfo:
        thread = threading.current_thread()
        return cls(
            app_name=app_name,
            host_address=host_address,
            hostname=hostname,
            thread_id=threading.get_ident(),
            thread_name=thread.name,
            process_name=multiprocessing.current_process().name,
        )

    def to_fields(self) -> dict[str, Any]:
        return {
            LockField.OWNER_APP_NAME.value: self.app_name,
            LockField.OWNER_ADDRESS.value: self.host_address,
            LockField.OWNER_HOSTNAME.value: self.hostname,
            LockField.OWNER_THREAD_ID.value: self.thread_id,
            LockField.OWNER_THREAD_NAME.value: self.thread_name,
            LockField.OWNER_PROCESS_NAME.value: self.process_name,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> OwnerInfo | None:
        if doc.get(LockField.OWNER_APP_NAME.value) is None:
            return None
        return cls(
            app_name=str(doc.get(LockField.OWNER_APP_NAME.value, "")),
            host_address=str(doc.get(LockField.OWNER_ADDRESS.value, "")),
            hostname=str(doc.get(LockField.OWNER_HOSTNAME.value, "")),
            thread_id=int(doc.get(LockField.OWNER_THREAD_ID.value) or 0),
            thread_name=str(doc.get(LockField.OWNER_THREAD_NAME.value, "")),
            process_name=str(doc.get(LockField.OWNER_PROCESS_NAME.value, "")),
        )


def cleared_owner_fields() -> dict[str, None]:
    return {owner_field.value: None for owner_field in OWNER_FIELDS}


def locked_fields(
    token: ObjectId,
    owner: OwnerInfo,
    now: datetime,
    inactive_timeout_ms: int,
    library_version: str,
) -> dict[str, Any]:
    """Fields written by every UNLOCKED -> LOCKED transition."""
    fields: dict[str, Any] = {
        LockField.STATE.value: LockState.LOCKED.value,
        LockField.LOCK_TOKEN.value: token,
        LockField.LOCK_ACQUIRED_TIME.value: now,
        LockField.LAST_HEARTBEAT.value: now,
        LockField.UPDATED.value: now,
        LockField.ATTEMPT_COUNT.value: 0,
        LockField.INACTIVE_TIMEOUT.value: inactive_timeout_ms,
        LockField.LIBRARY_VERSION.value: library_version,
    }
    fields.update(owner.to_fields())
    return fields


def unlocked_fields(now: datetime, inactive_timeout_ms: int) -> dict[str, Any]:
    """Fields written by every LOCKED -> UNLOCKED transition."""
    fields: dict[str, Any] = {
        LockField.STATE.value: LockState.UNLOCKED.value,
        LockField.LOCK_TOKEN.value: None,
        LockField.LOCK_ACQUIRED_TIME.value: None,
        LockField.UPDATED.value: now,
        LockField.ATTEMPT_COUNT.value: 0,
        LockField.INACTIVE_TIMEOUT.value: inactive_timeout_ms,
    }
    fields.update(cleared_owner_fields())
    return fields


def held_filter(lock_name: str, token: ObjectId) -> dict[str, Any]:
    """Filter matching the lock only while ``token`` still holds it."""
    return {
        LockField.ID.value: lock_name,
        LockField.LOCK_TOKEN.value: token,
        LockField.STATE.value: LockState.LOCKED.value,
    }


@dataclass(frozen=True)
class LockDocument:
    """Read-only view of a persisted lock document."""

    name: str
    state: LockState
    lock_token: ObjectId | None
    owner: OwnerInfo | None
    lock_acquired_time: datetime | None
    last_heartbeat: datetime | None
    updated: datetime | None
    attempt_count: int
    inactive_timeout_ms: int | None
    library_version: str | None

    @property
    def is_locked(self) -> bool:
        return self.state is LockState.LOCKED

    @property
    def inactive_timeout(self) -> timedelta | None:
        if self.inactive_timeout_ms is None:
            return None
        return timedelta(milliseconds=self.inactive_timeout_ms)

    def is_stale(self, now: datetime) -> bool:
        """True when a LOCKED document's heartbeat is older than its timeout."""
        if not self.is_locked or self.last_heartbeat is None or self.inactive_timeout is None:
            return False
        return as_utc(now) - self.last_heartbeat > self.inactive_timeout

    def held_for(self, now: datetime) -> timedelta | None:
        if self.lock_acquired_time is None:
            return None
        return as_utc(now) - self.lock_acquired_time

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> LockDocument:
        return cls(
            name=str(doc[LockField.ID.value]),
            state=LockState.from_value(doc.get(LockField.STATE.value)),
            lock_token=doc.get(LockField.LOCK_TOKEN.value),
            owner=OwnerInfo.from_document(doc),
            lock_acquired_time=as_utc(doc.get(LockField.LOCK_ACQUIRED_TIME.value)),
            last_heartbeat=as_utc(doc.get(LockField.LAST_HEARTBEAT.value)),
            updated=as_utc(doc.get(LockField.UPDATED.value)),
            attempt_count=int(doc.get(LockField.ATTEMPT_COUNT.value) or 0),
            inactive_timeout_ms=doc.get(LockField.INACTIVE_TIMEOUT.value),
            library_version=doc.get(LockField.LIBRARY_VERSION.value),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for diagnostics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "lock_token": str(self.lock_token) if self.lock_token is not None else None,
            "owner": None if self.owner is None else {
                "app_name": self.owner.app_name,
                "host_address": self.owner.host_address,
                "hostname": self.owner.hostname,
                "thread_id": self.owner.thread_id,
                "thread_name": self.owner.thread_name,
                "process_name": self.owner.process_name,
            },
            "lock_acquired_time": self.lock_acquired_time.isoformat() if self.lock_acquired_time else None,
            "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            "updated": self.updated.isoformat() if self.updated else None,
            "attempt_count": self.attempt_count,
            "inactive_timeout_ms": self.inactive_timeout_ms,
            "library_version": self.library_version,
        }
