"""
Document store contract used by the ledger services.

Documents are nested mappings of scalars (and timestamps) with a revision the
store bumps on every write. Writes are atomic per document; ``set_if_revision``
is the only primitive the engine uses for read-modify-write.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_MISSING = object()


class StoredDocument(BaseModel):
    id: str
    revision: int
    data: dict[str, Any]


class ChangeEvent(BaseModel):
    collection: str
    id: str
    revision: int = 0
    data: Optional[dict[str, Any]] = None
    deleted: bool = False


def lookup(data: dict[str, Any], path: str) -> Any:
    """Resolve a dotted field path; missing fields resolve to None."""
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part, _MISSING)
        if value is _MISSING:
            return None
    return value


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str  # == != < <= > >= in
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        actual = lookup(data, self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if actual is None:
            return False
        if self.op == "<":
            return actual < self.value
        if self.op == "<=":
            return actual <= self.value
        if self.op == ">":
            return actual > self.value
        if self.op == ">=":
            return actual >= self.value
        raise ValueError(f"Unsupported predicate operator: {self.op}")


Ordering = Sequence[tuple[str, str]]  # (field, "asc" | "desc")


class Subscription:
    """
    Handle on a change stream.

    Use it as ``async with gateway.watch(...) as changes: async for event in changes``.
    The underlying listener is released when the block exits, when ``close()``
    is called, or when the handle is garbage collected.
    """

    def __init__(self, queue: asyncio.Queue, release: Callable[[], None]):
        self._queue = queue
        self._release: Optional[Callable[[], None]] = release

    @property
    def closed(self) -> bool:
        return self._release is None

    def close(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()
            self._queue.put_nowait(None)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def next_event(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Wait for the next event; None on timeout or once closed."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout)
        except (StopAsyncIteration, asyncio.TimeoutError):
            return None

    def __del__(self):
        if self._release is not None:
            try:
                self._release()
            except Exception:
                logger.exception("Failed to release dropped change subscription")
            self._release = None


class PersistenceGateway(ABC):
    """Abstract document store. Implementations translate driver errors to LedgerError."""

    @abstractmethod
    async def get(self, collection: str, id: str) -> Optional[StoredDocument]:
        ...

    @abstractmethod
    async def set(self, collection: str, id: str, value: dict[str, Any]) -> StoredDocument:
        ...

    @abstractmethod
    async def set_if_revision(
        self,
        collection: str,
        id: str,
        value: dict[str, Any],
        expected_revision: Optional[int],
    ) -> StoredDocument:
        """Write only if the stored revision equals ``expected_revision`` (None: must not exist)."""

    @abstractmethod
    async def delete(self, collection: str, id: str) -> bool:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        ordering: Ordering = (),
    ) -> list[StoredDocument]:
        ...

    @abstractmethod
    def watch(self, collection: str, id: Optional[str] = None) -> Subscription:
        """Subscribe to changes of one document (or the whole collection when id is None)."""

    async def close(self) -> None:
        return None
