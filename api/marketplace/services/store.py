from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from marketplace.services.repository import (
    ChangeListener,
    DocumentChange,
    DocumentTransaction,
    ErrorListener,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    Unwatch,
)

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Process-local document store for local development and tests.

    Writes are serialized by one lock. A transaction holds the lock for its
    whole body and restores a snapshot of every collection if the body raises.
    Change listeners are invoked after the write (or the transaction) commits.
    """

    def __init__(self) -> None:
        self.collections: defaultdict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._lock = asyncio.Lock()
        self._listeners: defaultdict[str, list[tuple[ChangeListener, ErrorListener | None]]] = defaultdict(list)

    async def close(self) -> None:
        self._listeners.clear()

    async def get(self, collection: str, document_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
        return _MemorySession(self).read(collection, document_id)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return _MemorySession(self).select(collection, filters, order_by=order_by, descending=descending, limit=limit)

    async def insert(self, collection: str, data: dict[str, Any], *, document_id: str | None = None) -> str:
        async with self._lock:
            session = _MemorySession(self)
            new_id = await session.insert(collection, data, document_id=document_id)
        self._dispatch(session.changes)
        return new_id

    async def update(self, collection: str, document_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            session = _MemorySession(self)
            updated = await session.update(collection, document_id, changes)
        self._dispatch(session.changes)
        return updated

    async def delete(self, collection: str, document_id: str) -> None:
        async with self._lock:
            session = _MemorySession(self)
            await session.delete(collection, document_id)
        self._dispatch(session.changes)

    async def increment(self, collection: str, document_id: str, field: str, amount: int = 1) -> int:
        async with self._lock:
            session = _MemorySession(self)
            value = await session.increment(collection, document_id, field, amount)
        self._dispatch(session.changes)
        return value

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DocumentTransaction]:
        async with self._lock:
            snapshot = copy.deepcopy(self.collections)
            session = _MemorySession(self)
            try:
                yield session
            except BaseException:
                self.collections = snapshot
                raise
        self._dispatch(session.changes)

    async def watch(
        self,
        collection: str,
        listener: ChangeListener,
        *,
        on_error: ErrorListener | None = None,
    ) -> Unwatch:
        entry = (listener, on_error)
        self._listeners[collection].append(entry)

        async def unwatch() -> None:
            entries = self._listeners.get(collection, [])
            if entry in entries:
                entries.remove(entry)

        return unwatch

    def fail_watchers(self, exc: Exception) -> None:
        """Report a change-feed failure to every watcher and drop them."""
        listeners = [entry for entries in self._listeners.values() for entry in entries]
        self._listeners.clear()
        for _, on_error in listeners:
            if on_error is not None:
                on_error(exc)

    def _dispatch(self, changes: list[DocumentChange]) -> None:
        for change in changes:
            for listener, _ in list(self._listeners.get(change.collection, [])):
                try:
                    listener(change)
                except Exception:
                    logger.exception(
                        "change listener failed collection=%s id=%s",
                        change.collection,
                        change.document_id,
                    )


class _MemorySession:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self.changes: list[DocumentChange] = []

    def read(self, collection: str, document_id: str) -> dict[str, Any] | None:
        document = self.store.collections[collection].get(document_id)
        if document is None:
            return None
        return {**copy.deepcopy(document), "id": document_id}

    def select(
        self,
        collection: str,
        filters: dict[str, Any] | None,
        *,
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        matches = [
            {**copy.deepcopy(document), "id": document_id}
            for document_id, document in self.store.collections[collection].items()
            if all(document.get(key) == value for key, value in (filters or {}).items())
        ]
        if order_by:
            present = [document for document in matches if document.get(order_by) is not None]
            missing = [document for document in matches if document.get(order_by) is None]
            present.sort(key=lambda document: document[order_by], reverse=descending)
            matches = present + missing
        if limit is not None:
            matches = matches[:limit]
        return matches

    async def get(self, collection: str, document_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
        return self.read(collection, document_id)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        return self.select(collection, filters, order_by=order_by, descending=descending, limit=limit)

    async def insert(self, collection: str, data: dict[str, Any], *, document_id: str | None = None) -> str:
        new_id = document_id or str(uuid4())
        documents = self.store.collections[collection]
        if new_id in documents:
            raise RepositoryConflictError(f"{collection} document already exists: {new_id}")
        documents[new_id] = {key: copy.deepcopy(value) for key, value in data.items() if key != "id"}
        self.changes.append(DocumentChange(collection=collection, document_id=new_id, kind="insert"))
        return new_id

    async def update(self, collection: str, document_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        document = self.store.collections[collection].get(document_id)
        if document is None:
            raise RepositoryNotFoundError(f"{collection} document not found: {document_id}")
        document.update({key: copy.deepcopy(value) for key, value in changes.items() if key != "id"})
        self.changes.append(DocumentChange(collection=collection, document_id=document_id, kind="update"))
        return {**copy.deepcopy(document), "id": document_id}

    async def delete(self, collection: str, document_id: str) -> None:
        documents = self.store.collections[collection]
        if document_id not in documents:
            raise RepositoryNotFoundError(f"{collection} document not found: {document_id}")
        del documents[document_id]
        self.changes.append(DocumentChange(collection=collection, document_id=document_id, kind="delete"))

    async def increment(self, collection: str, document_id: str, field: str, amount: int = 1) -> int:
        document = self.store.collections[collection].get(document_id)
        if document is None:
            raise RepositoryNotFoundError(f"{collection} document not found: {document_id}")
        current = document.get(field) or 0
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            raise RepositoryValidationError(f"{collection}.{field} is not numeric")
        document[field] = int(current) + amount
        self.changes.append(DocumentChange(collection=collection, document_id=document_id, kind="update"))
        return document[field]
