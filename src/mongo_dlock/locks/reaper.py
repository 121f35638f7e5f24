"""Background reclamation of locks whose holder stopped heartbeating."""

from __future__ import annotations

import logging
import threading

from mongo_dlock.core.config import ReaperConfig
from mongo_dlock.core.constants import DEFAULT_REAPER, REAPER_JOIN_TIMEOUT_SECONDS
from mongo_dlock.core.exceptions import StoreTransportError
from mongo_dlock.locks.coordinator import LockCoordinator
from mongo_dlock.locks.schema import LockDocument, LockField

logger = logging.getLogger(__name__)


class Reaper:
    """Periodically scan for stale LOCKED documents and unlock them.

    Each reclamation is a single conditional update, so stopping the reaper
    between (or during) scans never leaves a half-written lock behind.
    """

    def __init__(self, coordinator: LockCoordinator, config: ReaperConfig | None = None):
        self.coordinator = coordinator
        self.config = config or DEFAULT_REAPER
        self.config.validate()

        # Each loop thread owns its stop event; a restart never revives a stopping loop.
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self.scans = 0
        self.reclaimed_total = 0

    @property
    def running(self) -> bool:
        with self._state_lock:
            return self._thread is not None and self._thread.is_alive()

    def run_once(self, stop: threading.Event | None = None) -> list[str]:
        """Reclaim up to ``batch_size`` stale locks and return their names.

        Live locks are skipped without counting against the batch, so stale
        locks sorted behind long-timeout holders are still reached.
        """
        stop = stop or self._stop
        store = self.coordinator.store
        now = self.coordinator.clock_sync.estimate(store)
        reclaimed: list[str] = []
        candidates = 0

        for raw in store.iter_locked(self.config.batch_size):
            if stop.is_set() or candidates >= self.config.batch_size:
                break
            if not LockDocument.from_document(raw).is_stale(now):
                continue
            candidates += 1
            event = self.coordinator.reclaim(raw, now, reason="timeout")
            if event is None:
                logger.debug("Lock '%s' changed since scan; skipping reclamation", raw.get(LockField.ID.value))
                continue
            reclaimed.append(event.lock_name)

        self.scans += 1
        self.reclaimed_total += len(reclaimed)
        if reclaimed:
            logger.info("Reclaimed %d inactive lock(s): %s", len(reclaimed), ", ".join(reclaimed))
        return reclaimed

    def start(self) -> None:
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._loop, args=(self._stop,), daemon=True, name="mongo-dlock-reaper"
            )
            self._thread.start()
        logger.info(
            "Lock reaper started (interval=%.1fs, batch_size=%d)", self.config.interval_seconds, self.config.batch_size
        )

    def stop(self, timeout: float = REAPER_JOIN_TIMEOUT_SECONDS) -> None:
        with self._state_lock:
            stop = self._stop
            thread = self._thread
            self._thread = None
        stop.set()
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Lock reaper did not stop within %.1fs", timeout)

    def _loop(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                self.run_once(stop)
            except StoreTransportError as e:
                logger.error("Lock reaper scan failed: %s", e)
            except Exception:
                logger.exception("Lock reaper scan failed unexpectedly")
            if stop.wait(self.config.interval_seconds):
                return
