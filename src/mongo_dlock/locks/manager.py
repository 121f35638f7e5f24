"""Holder-side handle for one named lock.

The handle owns the token returned by a successful acquire and keeps the
lock alive with a heartbeat thread. Its in-process mutex only guards the
handle's own bookkeeping; ownership itself is decided by the store.
"""

from __future__ import annotations

import logging
import threading
from types import TracebackType

from bson import ObjectId

from mongo_dlock.core.config import LockOptions
from mongo_dlock.core.constants import DEFAULT_LOCK_OPTIONS, HEARTBEAT_JOIN_TIMEOUT_SECONDS
from mongo_dlock.core.exceptions import LockOwnershipLostError, LockUnavailableError, StoreTransportError
from mongo_dlock.core.logging import with_log_context
from mongo_dlock.locks.coordinator import AcquireResult, LockCoordinator, ReleaseResult, ReleaseStatus
from mongo_dlock.locks.events import LockEvent, LockEventKind
from mongo_dlock.locks.schema import LockDocument

logger = logging.getLogger(__name__)


class LockManager:
    """Non-blocking acquire/release of one lock name, with heartbeats."""

    def __init__(
        self,
        coordinator: LockCoordinator,
        lock_name: str,
        lock_options: LockOptions | None = None,
        *,
        heartbeat: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.coordinator = coordinator
        self.lock_name = lock_name
        self.lock_options = lock_options or DEFAULT_LOCK_OPTIONS
        self.lock_options.validate()
        self.heartbeat_enabled = heartbeat
        self.logger = with_log_context(logger or logging.getLogger(__name__), lock_name=lock_name)

        self._token: ObjectId | None = None
        self._heartbeat_stop = threading.Event()
        self._heartbeat_thread: threading.Thread | None = None
        self._state_lock = threading.RLock()
        self._lock_lost = threading.Event()
        self._lock_lost_reason: str | None = None

    @property
    def acquired(self) -> bool:
        with self._state_lock:
            return self._token is not None

    @property
    def token(self) -> ObjectId | None:
        with self._state_lock:
            return self._token

    @property
    def lock_lost(self) -> bool:
        return self._lock_lost.is_set()

    def acquire(self) -> bool:
        """Attempt lock acquisition without blocking."""
        with self._state_lock:
            if self._token is not None:
                return True

        result: AcquireResult = self.coordinator.acquire(self.lock_name, self.lock_options)
        if not result.acquired:
            return False

        with self._state_lock:
            self._token = result.token
            self._lock_lost.clear()
            self._lock_lost_reason = None
        self._start_heartbeat_if_needed()
        return True

    def release(self) -> ReleaseResult | None:
        """Release the lock if held; None when this handle held nothing."""
        self._stop_heartbeat()
        with self._state_lock:
            token = self._token
            self._token = None
        if token is None:
            return None

        result = self.coordinator.release(self.lock_name, token, self.lock_options)
        if result.status is ReleaseStatus.NOT_HELD:
            self._mark_lost("lock was reclaimed or released elsewhere before release")
        return result

    def read_info(self) -> dict | None:
        """Read lock metadata for diagnostics."""
        doc = self.coordinator.store.find_one(self.lock_name)
        if doc is None:
            return None
        return LockDocument.from_document(doc).to_dict()

    def ensure_held(self) -> None:
        with self._state_lock:
            if self._token is not None:
                return
            if self._lock_lost.is_set():
                raise LockOwnershipLostError(self.lock_name, reason=self._lock_lost_reason)
        raise LockOwnershipLostError(self.lock_name, reason="lock was never acquired")

    def __enter__(self) -> LockManager:
        if not self.acquire():
            doc = self.coordinator.store.find_one(self.lock_name)
            attempts = LockDocument.from_document(doc).attempt_count if doc is not None else None
            raise LockUnavailableError(self.lock_name, attempt_count=attempts)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    def _start_heartbeat_if_needed(self) -> None:
        with self._state_lock:
            if not self.heartbeat_enabled or self._token is None:
                return
            if self._heartbeat_thread is not None and self._heartbeat_thread.is_alive():
                return

            interval_seconds = self.lock_options.effective_heartbeat_interval_ms / 1000.0
            self._heartbeat_stop.clear()
            self._heartbeat_thread = threading.Thread(
                target=self._heartbeat_loop,
                args=(interval_seconds,),
                daemon=True,
                name=f"lock-heartbeat-{self.lock_name}",
            )
            self._heartbeat_thread.start()

    def _stop_heartbeat(self) -> None:
        self._heartbeat_stop.set()
        thread = self._heartbeat_thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=HEARTBEAT_JOIN_TIMEOUT_SECONDS)
        self._heartbeat_thread = None

    def _heartbeat_loop(self, interval_seconds: float) -> None:
        while not self._heartbeat_stop.wait(interval_seconds):
            with self._state_lock:
                token = self._token
            if token is None:
                return
            try:
                refreshed = self.coordinator.heartbeat(self.lock_name, token)
            except StoreTransportError as e:
                # Transient: the next beat retries well before the inactive timeout.
                self.logger.warning("Lock heartbeat failed for '%s': %s", self.lock_name, e)
                continue
            if not refreshed:
                self._handle_heartbeat_miss(token)
                return

    def _handle_heartbeat_miss(self, token: ObjectId) -> None:
        with self._state_lock:
            if self._token != token:
                return
            self._token = None
        self._heartbeat_stop.set()
        self._mark_lost("heartbeat did not match; lock was reclaimed")
        self.logger.error("Lost lock '%s' (token %s); heartbeat no longer matches", self.lock_name, token)
        self.coordinator.events.emit(
            LockEvent(kind=LockEventKind.LOST, lock_name=self.lock_name, lock_token=token, reason="heartbeat miss")
        )

    def _mark_lost(self, reason: str) -> None:
        with self._state_lock:
            self._lock_lost_reason = reason
            self._lock_lost.set()
