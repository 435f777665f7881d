"""In-process document store with revisions and change notification."""
from __future__ import annotations

import asyncio
import copy
import logging
from collections import Counter, defaultdict
from typing import Any, Optional, Sequence

from dance_admin.errors import Conflict, LedgerError
from dance_admin.persistence.gateway import (
    ChangeEvent,
    Ordering,
    PersistenceGateway,
    Predicate,
    StoredDocument,
    Subscription,
    lookup,
)

logger = logging.getLogger(__name__)


class InMemoryGateway(PersistenceGateway):
    """
    Dict-backed PersistenceGateway.

    Every call yields to the event loop once before touching state, so
    concurrent tasks interleave the way they would against a real store.
    ``fail_next`` queues errors for a given operation, for fault injection.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, StoredDocument]] = defaultdict(dict)
        self._watchers: dict[tuple[str, Optional[str]], list[asyncio.Queue]] = defaultdict(list)
        self._faults: dict[str, list[LedgerError]] = defaultdict(list)
        self.calls: Counter = Counter()

    def fail_next(self, op: str, error: LedgerError, times: int = 1) -> None:
        self._faults[op].extend([error] * times)

    def watcher_count(self, collection: str, id: Optional[str] = None) -> int:
        return len(self._watchers.get((collection, id), []))

    async def _io(self, op: str) -> None:
        self.calls[op] += 1
        await asyncio.sleep(0)
        if self._faults[op]:
            raise self._faults[op].pop(0)

    def _store(self, collection: str, id: str, value: dict[str, Any], revision: int) -> StoredDocument:
        doc = StoredDocument(id=id, revision=revision, data=copy.deepcopy(value))
        self._collections[collection][id] = doc
        self._notify(ChangeEvent(collection=collection, id=id, revision=revision, data=copy.deepcopy(value)))
        return doc.model_copy(deep=True)

    def _notify(self, event: ChangeEvent) -> None:
        for key in ((event.collection, event.id), (event.collection, None)):
            for queue in list(self._watchers.get(key, [])):
                queue.put_nowait(event.model_copy(deep=True))

    async def get(self, collection: str, id: str) -> Optional[StoredDocument]:
        await self._io("get")
        doc = self._collections[collection].get(id)
        return doc.model_copy(deep=True) if doc else None

    async def set(self, collection: str, id: str, value: dict[str, Any]) -> StoredDocument:
        await self._io("set")
        current = self._collections[collection].get(id)
        return self._store(collection, id, value, (current.revision if current else 0) + 1)

    async def set_if_revision(
        self,
        collection: str,
        id: str,
        value: dict[str, Any],
        expected_revision: Optional[int],
    ) -> StoredDocument:
        await self._io("set_if_revision")
        current = self._collections[collection].get(id)
        current_revision = current.revision if current else None
        if current_revision != expected_revision:
            raise Conflict(
                f"{collection}/{id} is at revision {current_revision}, expected {expected_revision}",
                {"collection": collection, "id": id},
            )
        return self._store(collection, id, value, (current_revision or 0) + 1)

    async def delete(self, collection: str, id: str) -> bool:
        await self._io("delete")
        doc = self._collections[collection].pop(id, None)
        if doc is None:
            return False
        self._notify(ChangeEvent(collection=collection, id=id, revision=doc.revision, deleted=True))
        return True

    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        ordering: Ordering = (),
    ) -> list[StoredDocument]:
        await self._io("query")
        docs = [
            d.model_copy(deep=True)
            for d in self._collections[collection].values()
            if all(p.matches(d.data) for p in predicates)
        ]
        for field, direction in reversed(list(ordering)):
            docs.sort(
                key=lambda d: (lookup(d.data, field) is None, lookup(d.data, field)),
                reverse=direction == "desc",
            )
        return docs

    def watch(self, collection: str, id: Optional[str] = None) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue()
        key = (collection, id)
        self._watchers[key].append(queue)

        def release() -> None:
            if queue in self._watchers.get(key, []):
                self._watchers[key].remove(queue)

        return Subscription(queue, release)
