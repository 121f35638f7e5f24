"""Tests for lock collection index provisioning."""

from __future__ import annotations

from unittest.mock import MagicMock

from mongo_dlock.locks.indexes import LOCK_INDEXES, IndexProvisioner, setup_indexes
from mongo_dlock.locks.schema import LockField
from mongo_dlock.locks.store import LockStore

EXPECTED_NAMES = {
    "lastHeartbeatV1Idx",
    "ownerAppNameV1Idx",
    "stateV1Idx",
    "lockTokenV1Idx",
    "idStateV1Idx",
    "idLockTokenStateV1Idx",
    "fullV1Idx",
}


def test_setup_creates_every_named_index(store) -> None:
    created = setup_indexes(store)

    assert set(created) == EXPECTED_NAMES
    info = store.index_information()
    assert EXPECTED_NAMES <= set(info)
    assert [tuple(key) for key in info["idLockTokenStateV1Idx"]["key"]] == [
        ("_id", 1),
        ("lockToken", 1),
        ("state", 1),
    ]


def test_setup_is_idempotent(store) -> None:
    setup_indexes(store)
    before = store.index_information()

    assert setup_indexes(store) == []
    assert store.index_information().keys() == before.keys()


def test_full_index_covers_every_non_id_field() -> None:
    full = next(spec for spec in LOCK_INDEXES if spec.name == "fullV1Idx")
    covered = [name for name, _direction in full.keys]

    assert LockField.ID.value not in covered
    assert set(covered) == {lock_field.value for lock_field in LockField} - {LockField.ID.value}


def test_only_missing_indexes_are_created() -> None:
    collection = MagicMock()
    collection.index_information.return_value = {
        "_id_": {"key": [("_id", 1)]},
        "stateV1Idx": {"key": [("state", 1)]},
        "lockTokenV1Idx": {"key": [("lockToken", 1)]},
    }

    created = IndexProvisioner(LockStore(collection)).setup()

    assert "stateV1Idx" not in created
    assert "lockTokenV1Idx" not in created
    assert len(created) == len(LOCK_INDEXES) - 2
    assert collection.create_index.call_count == len(LOCK_INDEXES) - 2
