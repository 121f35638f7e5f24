"""Lock lifecycle events and their consumers.

Listeners are observability sidecars: a failing listener is logged and
never changes the outcome of the lock operation that emitted the event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from mongo_dlock.core.exceptions import StoreTransportError
from mongo_dlock.locks.schema import LockDocument, OwnerInfo
from mongo_dlock.locks.store import HistoryStore

logger = logging.getLogger(__name__)


class LockEventKind(str, Enum):
    ACQUIRED = "acquired"
    RELEASED = "released"
    RECLAIMED = "reclaimed"
    LOST = "lost"


@dataclass(frozen=True)
class LockEvent:
    """A single lock state transition observed by this process."""

    kind: LockEventKind
    lock_name: str
    lock_token: Any = None
    owner: OwnerInfo | None = None
    held_for: timedelta | None = None
    reason: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_pre_image(
        cls,
        kind: LockEventKind,
        pre_image: dict[str, Any],
        now: datetime,
        reason: str | None = None,
    ) -> LockEvent:
        doc = LockDocument.from_document(pre_image)
        return cls(
            kind=kind,
            lock_name=doc.name,
            lock_token=doc.lock_token,
            owner=doc.owner,
            held_for=doc.held_for(now),
            reason=reason,
            occurred_at=now,
        )

    def to_log_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "lock_event": self.kind.value,
            "lock_name": self.lock_name,
            "lock_token": str(self.lock_token) if self.lock_token is not None else None,
            "reason": self.reason,
            "held_ms": int(self.held_for.total_seconds() * 1000) if self.held_for is not None else None,
        }
        if self.owner is not None:
            fields.update(
                owner_app_name=self.owner.app_name,
                owner_hostname=self.owner.hostname,
                owner_thread_name=self.owner.thread_name,
            )
        return fields


class LockEventListener(Protocol):
    def __call__(self, event: LockEvent) -> None: ...


class LoggingEventListener:
    """Log every lock event with structured ``extra`` fields."""

    def __init__(self, event_logger: logging.Logger | None = None):
        self.logger = event_logger or logging.getLogger("mongo_dlock.events")

    def __call__(self, event: LockEvent) -> None:
        level = logging.WARNING if event.kind in (LockEventKind.RECLAIMED, LockEventKind.LOST) else logging.DEBUG
        self.logger.log(
            level,
            "Lock '%s' %s%s",
            event.lock_name,
            event.kind.value,
            f" ({event.reason})" if event.reason else "",
            extra=event.to_log_fields(),
        )


class HistoryRecorder:
    """Persist a snapshot of every released or reclaimed lock."""

    recorded_kinds = (LockEventKind.RELEASED, LockEventKind.RECLAIMED)

    def __init__(self, history: HistoryStore):
        self.history = history

    def __call__(self, event: LockEvent) -> None:
        if event.kind not in self.recorded_kinds:
            return
        snapshot: dict[str, Any] = {
            "lockName": event.lock_name,
            "lockToken": event.lock_token,
            "reason": event.reason or event.kind.value,
            "releasedAt": event.occurred_at,
            "heldMs": int(event.held_for.total_seconds() * 1000) if event.held_for is not None else None,
        }
        if event.owner is not None:
            snapshot["lockAcquiredTime"] = event.occurred_at - event.held_for if event.held_for else None
            snapshot.update(event.owner.to_fields())
        try:
            self.history.record(snapshot)
        except StoreTransportError as e:
            logger.warning("Failed to record history for lock '%s': %s", event.lock_name, e)


class EventDispatcher:
    """Fan events out to registered listeners."""

    def __init__(self, listeners: list[LockEventListener] | None = None):
        self._listeners: list[LockEventListener] = list(listeners or [])

    def add(self, listener: LockEventListener) -> None:
        self._listeners.append(listener)

    def remove(self, listener: LockEventListener) -> None:
        self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: LockEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Lock event listener %r failed for '%s'", listener, event.lock_name)
