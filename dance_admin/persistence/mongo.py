"""MongoDB implementation of the PersistenceGateway (motor)."""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Optional, Sequence

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from dance_admin.errors import Conflict, PermissionDenied, Unavailable
from dance_admin.persistence.gateway import (
    ChangeEvent,
    Ordering,
    PersistenceGateway,
    Predicate,
    StoredDocument,
    Subscription,
)

logger = logging.getLogger(__name__)

REVISION_FIELD = "_rev"
UNAUTHORIZED_CODES = {13, 8000}  # Unauthorized, Atlas AtlasError

_OPERATORS = {
    "==": "$eq",
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
    "in": "$in",
}


@contextmanager
def _driver_errors(action: str):
    """Translate pymongo errors into the engine's error taxonomy."""
    try:
        yield
    except DuplicateKeyError as e:
        raise Conflict(f"{action}: document already exists") from e
    except (ServerSelectionTimeoutError, NetworkTimeout, ExecutionTimeout, AutoReconnect, ConnectionFailure) as e:
        raise Unavailable(f"{action}: MongoDB unavailable ({e.__class__.__name__})") from e
    except OperationFailure as e:
        if e.code in UNAUTHORIZED_CODES:
            raise PermissionDenied(f"{action}: not authorized") from e
        raise


def _to_stored(raw: dict[str, Any]) -> StoredDocument:
    data = dict(raw)
    doc_id = str(data.pop("_id"))
    revision = int(data.pop(REVISION_FIELD, 0))
    return StoredDocument(id=doc_id, revision=revision, data=data)


def build_filter(predicates: Sequence[Predicate]) -> dict[str, Any]:
    query: dict[str, Any] = {}
    for p in predicates:
        if p.op not in _OPERATORS:
            raise ValueError(f"Unsupported predicate operator: {p.op}")
        field = "_id" if p.field == "id" else p.field
        value = list(p.value) if p.op == "in" else p.value
        query.setdefault(field, {})[_OPERATORS[p.op]] = value
    return query


class MongoGateway(PersistenceGateway):
    """Each collection name maps to a MongoDB collection; the revision lives in ``_rev``."""

    def __init__(self, database: AsyncIOMotorDatabase, client: Optional[AsyncIOMotorClient] = None):
        self._db = database
        self._client = client

    @classmethod
    def from_url(cls, url: str, db_name: str) -> "MongoGateway":
        client = AsyncIOMotorClient(url)
        return cls(client[db_name], client)

    async def ping(self) -> None:
        with _driver_errors("ping"):
            await self._db.command("ping")

    async def get(self, collection: str, id: str) -> Optional[StoredDocument]:
        with _driver_errors(f"get {collection}/{id}"):
            raw = await self._db[collection].find_one({"_id": id})
        return _to_stored(raw) if raw else None

    async def set(self, collection: str, id: str, value: dict[str, Any]) -> StoredDocument:
        with _driver_errors(f"set {collection}/{id}"):
            raw = await self._db[collection].find_one_and_update(
                {"_id": id},
                [{"$replaceWith": {"$mergeObjects": [
                    {"$literal": value},
                    {"_id": id, REVISION_FIELD: {"$add": [{"$ifNull": [f"${REVISION_FIELD}", 0]}, 1]}},
                ]}}],
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        return _to_stored(raw)

    async def set_if_revision(
        self,
        collection: str,
        id: str,
        value: dict[str, Any],
        expected_revision: Optional[int],
    ) -> StoredDocument:
        coll = self._db[collection]
        if expected_revision is None:
            body = {**value, "_id": id, REVISION_FIELD: 1}
            with _driver_errors(f"create {collection}/{id}"):
                await coll.insert_one(body)
            return StoredDocument(id=id, revision=1, data=dict(value))

        body = {**value, REVISION_FIELD: expected_revision + 1}
        with _driver_errors(f"update {collection}/{id}"):
            result = await coll.replace_one({"_id": id, REVISION_FIELD: expected_revision}, body)
        if result.matched_count == 0:
            raise Conflict(
                f"{collection}/{id} changed since revision {expected_revision}",
                {"collection": collection, "id": id},
            )
        return StoredDocument(id=id, revision=expected_revision + 1, data=dict(value))

    async def delete(self, collection: str, id: str) -> bool:
        with _driver_errors(f"delete {collection}/{id}"):
            result = await self._db[collection].delete_one({"_id": id})
        return result.deleted_count > 0

    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        ordering: Ordering = (),
    ) -> list[StoredDocument]:
        cursor = self._db[collection].find(build_filter(predicates))
        if ordering:
            cursor = cursor.sort([(f, DESCENDING if d == "desc" else ASCENDING) for f, d in ordering])
        with _driver_errors(f"query {collection}"):
            rows = await cursor.to_list(length=None)
        return [_to_stored(r) for r in rows]

    def watch(self, collection: str, id: Optional[str] = None) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue()
        pipeline = [{"$match": {"documentKey._id": id}}] if id is not None else []

        async def pump() -> None:
            try:
                async with self._db[collection].watch(pipeline, full_document="updateLookup") as stream:
                    async for change in stream:
                        queue.put_nowait(self._to_event(collection, change))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Change stream on {collection}/{id or '*'} stopped: {e}")
                queue.put_nowait(None)

        task = asyncio.get_running_loop().create_task(pump())
        return Subscription(queue, task.cancel)

    @staticmethod
    def _to_event(collection: str, change: dict[str, Any]) -> ChangeEvent:
        doc_id = str(change["documentKey"]["_id"])
        if change.get("operationType") == "delete":
            return ChangeEvent(collection=collection, id=doc_id, deleted=True)
        full = change.get("fullDocument") or {"_id": doc_id}
        stored = _to_stored(full)
        return ChangeEvent(collection=collection, id=doc_id, revision=stored.revision, data=stored.data)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
