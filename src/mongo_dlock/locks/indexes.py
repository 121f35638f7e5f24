"""Idempotent index setup for the lock collection."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pymongo import ASCENDING

from mongo_dlock.locks.schema import LockField
from mongo_dlock.locks.store import LockStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexSpec:
    name: str
    keys: tuple[tuple[str, int], ...]
    unique: bool = False


def _single(field: LockField, name: str) -> IndexSpec:
    return IndexSpec(name=name, keys=((field.value, ASCENDING),))


LOCK_INDEXES: tuple[IndexSpec, ...] = (
    _single(LockField.LAST_HEARTBEAT, "lastHeartbeatV1Idx"),
    _single(LockField.OWNER_APP_NAME, "ownerAppNameV1Idx"),
    _single(LockField.STATE, "stateV1Idx"),
    _single(LockField.LOCK_TOKEN, "lockTokenV1Idx"),
    IndexSpec(
        name="idStateV1Idx",
        keys=((LockField.ID.value, ASCENDING), (LockField.STATE.value, ASCENDING)),
    ),
    IndexSpec(
        name="idLockTokenStateV1Idx",
        keys=(
            (LockField.ID.value, ASCENDING),
            (LockField.LOCK_TOKEN.value, ASCENDING),
            (LockField.STATE.value, ASCENDING),
        ),
    ),
    # Covers every non-_id field so reaper scans can be served from the index.
    IndexSpec(
        name="fullV1Idx",
        keys=tuple((field.value, ASCENDING) for field in LockField if field is not LockField.ID),
    ),
)


class IndexProvisioner:
    """Ensure the lock collection carries every index the protocol relies on."""

    def __init__(self, store: LockStore, indexes: tuple[IndexSpec, ...] = LOCK_INDEXES):
        self.store = store
        self.indexes = indexes

    def setup(self) -> list[str]:
        """Create missing indexes; returns the names that were created."""
        existing = self.store.index_information()
        created: list[str] = []
        for spec in self.indexes:
            current = existing.get(spec.name)
            if current is not None and tuple(tuple(key) for key in current.get("key", ())) == spec.keys:
                continue
            self.store.create_index(list(spec.keys), name=spec.name, unique=spec.unique)
            created.append(spec.name)

        if created:
            logger.info("Created lock indexes: %s", ", ".join(created))
        else:
            logger.debug("Lock indexes already present")
        return created


def setup_indexes(store: LockStore) -> list[str]:
    return IndexProvisioner(store).setup()
