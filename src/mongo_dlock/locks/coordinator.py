"""Acquire/release protocol built on single-document conditional writes.

Design principles:
- Mutual exclusion is delegated entirely to the store: an acquire only
  succeeds when its insert-if-absent or its ``state=UNLOCKED`` conditional
  update matched, and a release only succeeds when ``lockToken`` matched.
- No client-side mutex is taken. Concurrent calls from many threads are
  safe because every decision is made by one atomic store operation.
- The plain read at the start of ``acquire`` only selects a code path; it
  is never used to decide ownership.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from bson import ObjectId

from mongo_dlock.core.config import LockOptions, LockSvcOptions
from mongo_dlock.core.constants import DEFAULT_LOCK_OPTIONS
from mongo_dlock.core.logging import with_log_context
from mongo_dlock.locks.clock import ClockSync, ServerTimeSample
from mongo_dlock.locks.events import EventDispatcher, LockEvent, LockEventKind
from mongo_dlock.locks.schema import (
    LockField,
    LockState,
    OwnerInfo,
    held_filter,
    locked_fields,
    new_lock_token,
    unlocked_fields,
)
from mongo_dlock.locks.store import LockStore

logger = logging.getLogger(__name__)


class AcquireStatus(Enum):
    ACQUIRED = "acquired"
    UNAVAILABLE = "unavailable"


class ReleaseStatus(Enum):
    RELEASED = "released"
    NOT_HELD = "not_held"


@dataclass(frozen=True)
class AcquireResult:
    lock_name: str
    status: AcquireStatus
    token: ObjectId | None = None
    acquired_at: datetime | None = None

    @property
    def acquired(self) -> bool:
        return self.status is AcquireStatus.ACQUIRED

    def __bool__(self) -> bool:
        return self.acquired


@dataclass(frozen=True)
class ReleaseResult:
    lock_name: str
    status: ReleaseStatus
    event: LockEvent | None = None

    @property
    def released(self) -> bool:
        return self.status is ReleaseStatus.RELEASED

    def __bool__(self) -> bool:
        return self.released


class LockCoordinator:
    """Run the lock state transitions for one lock collection.

    Args:
        store: Lock collection adapter
        svc_options: Service options (owner identity, version, sampling)
        clock_sync: Server clock estimator; built from ``svc_options`` if omitted
        events: Dispatcher notified of acquisitions and releases
    """

    def __init__(
        self,
        store: LockStore,
        svc_options: LockSvcOptions,
        *,
        clock_sync: ClockSync | None = None,
        events: EventDispatcher | None = None,
    ):
        self.store = store
        self.svc_options = svc_options
        self.clock_sync = clock_sync or ClockSync(svc_options.server_time_samples)
        self.events = events or EventDispatcher()

    def _owner(self) -> OwnerInfo:
        return OwnerInfo.current(
            app_name=self.svc_options.app_name,
            host_address=self.svc_options.host_address,
            hostname=self.svc_options.hostname,
        )

    def acquire(self, lock_name: str, lock_options: LockOptions | None = None) -> AcquireResult:
        """Make one attempt to take ``lock_name``; never waits."""
        options = lock_options or DEFAULT_LOCK_OPTIONS
        log = with_log_context(logger, lock_name=lock_name)

        with self.store.session() as session:
            lock_doc = self.store.find_one(lock_name, session=session)
            clock = self.clock_sync.sample(self.store)

            if lock_doc is None:
                result = self._try_insert_new(lock_name, options, clock, session)
                if result is not None:
                    return self._acquired(result, log)
                # A concurrent creator won the insert; continue with its document.
                lock_doc = self.store.find_one(lock_name, session=session)

            if lock_doc is not None and lock_doc.get(LockField.STATE.value) == LockState.UNLOCKED.value:
                result = self._try_lock_existing(lock_name, options, clock, session)
                if result is not None:
                    return self._acquired(result, log)

            self.store.increment_attempts(lock_name, session=session)

        log.debug("Lock '%s' unavailable", lock_name)
        return AcquireResult(lock_name=lock_name, status=AcquireStatus.UNAVAILABLE)

    def _try_insert_new(
        self,
        lock_name: str,
        options: LockOptions,
        clock: ServerTimeSample,
        session: Any,
    ) -> AcquireResult | None:
        token = new_lock_token()
        now = clock.now()
        document = {LockField.ID.value: lock_name}
        document.update(
            locked_fields(token, self._owner(), now, options.inactive_lock_timeout_ms, self.svc_options.library_version)
        )
        if not self.store.insert_if_absent(document, session=session):
            return None
        return AcquireResult(lock_name=lock_name, status=AcquireStatus.ACQUIRED, token=token, acquired_at=now)

    def _try_lock_existing(
        self,
        lock_name: str,
        options: LockOptions,
        clock: ServerTimeSample,
        session: Any,
    ) -> AcquireResult | None:
        token = new_lock_token()
        now = clock.now()
        query = {LockField.ID.value: lock_name, LockField.STATE.value: LockState.UNLOCKED.value}
        fields = locked_fields(
            token, self._owner(), now, options.inactive_lock_timeout_ms, self.svc_options.library_version
        )
        if self.store.conditional_update(query, fields, session=session) is None:
            # Someone else beat us to the punch.
            return None
        return AcquireResult(lock_name=lock_name, status=AcquireStatus.ACQUIRED, token=token, acquired_at=now)

    def _acquired(self, result: AcquireResult, log: logging.Logger | logging.LoggerAdapter) -> AcquireResult:
        log.debug("Lock '%s' acquired", result.lock_name, extra={"lock_token": str(result.token)})
        self.events.emit(
            LockEvent(
                kind=LockEventKind.ACQUIRED,
                lock_name=result.lock_name,
                lock_token=result.token,
                owner=self._owner(),
                occurred_at=result.acquired_at,
            )
        )
        return result

    def release(
        self,
        lock_name: str,
        token: ObjectId,
        lock_options: LockOptions | None = None,
    ) -> ReleaseResult:
        """Unlock ``lock_name`` only if ``token`` still holds it."""
        options = lock_options or DEFAULT_LOCK_OPTIONS
        now = self.clock_sync.estimate(self.store)
        pre_image = self.store.conditional_update(
            held_filter(lock_name, token),
            unlocked_fields(now, options.inactive_lock_timeout_ms),
        )
        if pre_image is None:
            logger.warning(
                "Release of lock '%s' ignored: token %s does not hold it",
                lock_name,
                token,
                extra={"lock_name": lock_name, "lock_token": str(token)},
            )
            return ReleaseResult(lock_name=lock_name, status=ReleaseStatus.NOT_HELD)

        event = LockEvent.from_pre_image(LockEventKind.RELEASED, pre_image, now, reason="released")
        self.events.emit(event)
        return ReleaseResult(lock_name=lock_name, status=ReleaseStatus.RELEASED, event=event)

    def heartbeat(self, lock_name: str, token: ObjectId) -> bool:
        """Refresh ``lastHeartbeat``; False means ``token`` no longer holds the lock."""
        now = self.clock_sync.estimate(self.store)
        matched = self.store.conditional_update(
            held_filter(lock_name, token),
            {LockField.LAST_HEARTBEAT.value: now, LockField.UPDATED.value: now},
        )
        return matched is not None

    def reclaim(self, lock_doc: dict[str, Any], now: datetime, reason: str = "timeout") -> LockEvent | None:
        """Unlock an abandoned lock as observed at scan time.

        The condition pins both the observed token and the observed heartbeat,
        so a release, re-acquire or heartbeat after the scan makes this a no-op.
        """
        lock_name = lock_doc[LockField.ID.value]
        query = held_filter(lock_name, lock_doc.get(LockField.LOCK_TOKEN.value))
        query[LockField.LAST_HEARTBEAT.value] = lock_doc.get(LockField.LAST_HEARTBEAT.value)
        timeout_ms = lock_doc.get(LockField.INACTIVE_TIMEOUT.value) or DEFAULT_LOCK_OPTIONS.inactive_lock_timeout_ms

        pre_image = self.store.conditional_update(query, unlocked_fields(now, timeout_ms))
        if pre_image is None:
            return None
        event = LockEvent.from_pre_image(LockEventKind.RECLAIMED, pre_image, now, reason=reason)
        self.events.emit(event)
        return event
