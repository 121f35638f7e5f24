"""MongoDB access for lock documents.

Every method maps to a single round trip against one collection. Atomicity
and linearizability of each conditional write come from MongoDB's
single-document guarantees; this module adds none of its own.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

from bson import ObjectId
from pymongo import ASCENDING, ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from mongo_dlock.core.constants import SERVER_LOCAL_TIME_FIELD, SERVER_STATUS_COMMAND
from mongo_dlock.core.exceptions import StoreTransportError
from mongo_dlock.locks.schema import LockField, LockState, as_utc

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        raise StoreTransportError(
            "Lock store operation failed",
            operation=operation,
            details=str(e),
            original_error=e,
        ) from e


class LockStore:
    """Thin adapter over the lock collection.

    Args:
        collection: The pymongo collection holding lock documents
        use_sessions: Open a causally consistent session for ``session()``
    """

    def __init__(self, collection: Collection, *, use_sessions: bool = False):
        self.collection = collection
        self.use_sessions = use_sessions

    @property
    def database(self) -> Database:
        return self.collection.database

    @contextlib.contextmanager
    def session(self) -> Iterator[ClientSession | None]:
        """Scope a session over several round trips; always ended on exit."""
        if not self.use_sessions:
            yield None
            return
        with _translate_errors("start_session"):
            session = self.database.client.start_session(causal_consistency=True)
        try:
            yield session
        finally:
            session.end_session()

    def find_one(self, lock_name: str, session: ClientSession | None = None) -> dict[str, Any] | None:
        with _translate_errors("find_one"):
            return self.collection.find_one({LockField.ID.value: lock_name}, session=session)

    def conditional_update(
        self,
        query: dict[str, Any],
        fields: dict[str, Any],
        session: ClientSession | None = None,
    ) -> dict[str, Any] | None:
        """Atomically ``$set`` fields when ``query`` matches.

        Returns the pre-image of the matched document, or None when the
        condition did not hold.
        """
        with _translate_errors("find_one_and_update"):
            return self.collection.find_one_and_update(
                query,
                {"$set": fields},
                upsert=False,
                return_document=ReturnDocument.BEFORE,
                session=session,
            )

    def insert_if_absent(self, document: dict[str, Any], session: ClientSession | None = None) -> bool:
        """Insert ``document``; False when a document with its ``_id`` exists."""
        try:
            with _translate_errors("insert_one"):
                self.collection.insert_one(document, session=session)
        except DuplicateKeyError:
            logger.debug("Lock document '%s' already exists", document.get(LockField.ID.value))
            return False
        return True

    def increment_attempts(self, lock_name: str, session: ClientSession | None = None) -> None:
        with _translate_errors("update_one"):
            self.collection.update_one(
                {LockField.ID.value: lock_name},
                {"$inc": {LockField.ATTEMPT_COUNT.value: 1}},
                session=session,
            )

    def iter_locked(self, batch_size: int) -> Iterator[dict[str, Any]]:
        """LOCKED documents, oldest heartbeat first, fetched ``batch_size`` per round trip.

        The cursor is consumed lazily; callers stop iterating once they have
        examined as many documents as they need.
        """
        with _translate_errors("find"):
            cursor = (
                self.collection.find({LockField.STATE.value: LockState.LOCKED.value})
                .sort([(LockField.LAST_HEARTBEAT.value, ASCENDING), (LockField.ID.value, ASCENDING)])
                .batch_size(batch_size)
            )
        try:
            while True:
                with _translate_errors("find"):
                    doc = next(cursor, None)
                if doc is None:
                    return
                yield doc
        finally:
            cursor.close()

    def find_all(self, state: LockState | None = None) -> list[dict[str, Any]]:
        query = {} if state is None else {LockField.STATE.value: state.value}
        with _translate_errors("find"):
            return list(self.collection.find(query).sort(LockField.ID.value, ASCENDING))

    def create_index(self, keys: list[tuple[str, int]], name: str, unique: bool = False) -> str:
        with _translate_errors("create_index"):
            return self.collection.create_index(keys, name=name, unique=unique)

    def index_information(self) -> dict[str, Any]:
        with _translate_errors("index_information"):
            return self.collection.index_information()

    def server_time(self) -> datetime:
        """The server's current clock as reported by ``serverStatus``."""
        with _translate_errors(SERVER_STATUS_COMMAND):
            status = self.database.command(SERVER_STATUS_COMMAND)
        return as_utc(status[SERVER_LOCAL_TIME_FIELD])


class HistoryStore:
    """Append-only collection of released and reclaimed lock snapshots."""

    def __init__(self, collection: Collection):
        self.collection = collection

    def record(self, snapshot: dict[str, Any]) -> ObjectId:
        with _translate_errors("insert_one"):
            return self.collection.insert_one(snapshot).inserted_id

    def find_for(self, lock_name: str, limit: int = 50) -> list[dict[str, Any]]:
        with _translate_errors("find"):
            return list(self.collection.find({"lockName": lock_name}).sort("releasedAt", -1).limit(limit))
