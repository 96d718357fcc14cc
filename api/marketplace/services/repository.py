from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from functools import lru_cache
from typing import Any, AsyncContextManager, Protocol
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from marketplace.core.config import get_settings

logger = logging.getLogger(__name__)

JOBS = "jobs"
PROPOSALS = "proposals"
PROFESSIONALS = "professionals"
REVIEWS = "reviews"
NOTIFICATIONS = "notifications"


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the store is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition or uniqueness rules."""


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(frozen=True, slots=True)
class DocumentChange:
    collection: str
    document_id: str
    kind: str


ChangeListener = Callable[[DocumentChange], None]
ErrorListener = Callable[[Exception], None]
Unwatch = Callable[[], Awaitable[None]]


class DocumentTransaction(Protocol):
    async def get(self, collection: str, document_id: str, *, for_update: bool = False) -> dict[str, Any] | None: ...

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, collection: str, data: dict[str, Any], *, document_id: str | None = None) -> str: ...

    async def update(self, collection: str, document_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...

    async def delete(self, collection: str, document_id: str) -> None: ...

    async def increment(self, collection: str, document_id: str, field: str, amount: int = 1) -> int: ...


class DocumentStore(DocumentTransaction, Protocol):
    def transaction(self) -> AsyncContextManager[DocumentTransaction]: ...

    async def watch(
        self,
        collection: str,
        listener: ChangeListener,
        *,
        on_error: ErrorListener | None = None,
    ) -> Unwatch: ...

    async def close(self) -> None: ...


SCHEMA_SQL = """
create table if not exists documents (
  collection text not null,
  id text not null,
  data jsonb not null default '{}'::jsonb,
  primary key (collection, id)
);

create index if not exists documents_data_path_idx on documents using gin (data jsonb_path_ops);
"""


@dataclass(eq=False, slots=True)
class _Watcher:
    collection: str
    listener: ChangeListener
    on_error: ErrorListener | None


class PostgresDocumentStore:
    """Document collections kept as jsonb rows in a single Postgres table.

    Change notifications arrive on one dedicated ``LISTEN`` connection opened
    outside the pool and shared by every watcher.
    """

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        command_timeout_seconds: float,
        notification_channel: str,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.command_timeout_seconds = command_timeout_seconds
        self.notification_channel = notification_channel
        self._pool: asyncpg.Pool | None = None
        self._listen_conn: asyncpg.Connection | None = None
        self._listen_lock = asyncio.Lock()
        self._watchers: list[_Watcher] = []

    async def close(self) -> None:
        async with self._listen_lock:
            self._watchers.clear()
            await self._close_listen_connection()
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)

    async def get(self, collection: str, document_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                return await self._session(conn).get(collection, document_id)

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                return await self._session(conn).query(
                    collection,
                    filters,
                    order_by=order_by,
                    descending=descending,
                    limit=limit,
                )

    async def insert(self, collection: str, data: dict[str, Any], *, document_id: str | None = None) -> str:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                return await self._session(conn).insert(collection, data, document_id=document_id)

    async def update(self, collection: str, document_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                return await self._session(conn).update(collection, document_id, changes)

    async def delete(self, collection: str, document_id: str) -> None:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                await self._session(conn).delete(collection, document_id)

    async def increment(self, collection: str, document_id: str, field: str, amount: int = 1) -> int:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                return await self._session(conn).increment(collection, document_id, field, amount)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DocumentTransaction]:
        pool = await self._get_pool()
        with _translate_errors():
            async with pool.acquire() as conn:
                async with conn.transaction():
                    yield self._session(conn)

    async def watch(
        self,
        collection: str,
        listener: ChangeListener,
        *,
        on_error: ErrorListener | None = None,
    ) -> Unwatch:
        watcher = _Watcher(collection, listener, on_error)
        async with self._listen_lock:
            await self._ensure_listen_connection()
            self._watchers.append(watcher)

        async def unwatch() -> None:
            async with self._listen_lock:
                if watcher in self._watchers:
                    self._watchers.remove(watcher)
                if not self._watchers:
                    await self._close_listen_connection()

        return unwatch

    async def _ensure_listen_connection(self) -> None:
        if self._listen_conn is not None and not self._listen_conn.is_closed():
            return
        if not self.database_url:
            raise RepositoryUnavailableError("MKT_DATABASE_URL is required")
        with _translate_errors():
            conn = await asyncpg.connect(dsn=self.database_url, command_timeout=self.command_timeout_seconds)
        try:
            with _translate_errors():
                await conn.add_listener(self.notification_channel, self._on_notify)
        except RepositoryError:
            await conn.close()
            raise
        conn.add_termination_listener(self._on_listen_terminated)
        self._listen_conn = conn

    async def _close_listen_connection(self) -> None:
        conn, self._listen_conn = self._listen_conn, None
        if conn is None or conn.is_closed():
            return
        conn.remove_termination_listener(self._on_listen_terminated)
        try:
            with _translate_errors():
                await conn.remove_listener(self.notification_channel, self._on_notify)
        finally:
            await conn.close()

    def _on_notify(self, _conn: Any, _pid: int, _channel: str, payload: str) -> None:
        change = _decode_change(payload)
        if change is None:
            return
        for watcher in list(self._watchers):
            if watcher.collection != change.collection:
                continue
            try:
                watcher.listener(change)
            except Exception:
                logger.exception("change listener failed collection=%s id=%s", change.collection, change.document_id)

    def _on_listen_terminated(self, conn: Any) -> None:
        if conn is not self._listen_conn:
            return
        logger.warning(
            "change feed connection closed channel=%s watchers=%d",
            self.notification_channel,
            len(self._watchers),
        )
        self._listen_conn = None
        watchers, self._watchers = self._watchers, []
        for watcher in watchers:
            if watcher.on_error is not None:
                watcher.on_error(RepositoryUnavailableError("change feed connection lost"))

    def _session(self, conn: asyncpg.Connection) -> "_PostgresSession":
        return _PostgresSession(conn, self.notification_channel)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("MKT_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=self.command_timeout_seconds,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc


class _PostgresSession:
    def __init__(self, conn: asyncpg.Connection, channel: str) -> None:
        self.conn = conn
        self.channel = channel

    async def get(self, collection: str, document_id: str, *, for_update: bool = False) -> dict[str, Any] | None:
        sql = "select id, data from documents where collection = $1 and id = $2"
        if for_update:
            sql += " for update"
        row = await self.conn.fetchrow(sql, collection, document_id)
        return _row_to_document(row) if row else None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        args: list[Any] = [collection, _dumps(filters or {})]
        sql = "select id, data from documents where collection = $1 and data @> $2::jsonb"
        if order_by:
            args.append(order_by)
            direction = "desc nulls last" if descending else "asc nulls last"
            sql += f" order by data -> ${len(args)}::text {direction}, id"
        if limit is not None:
            args.append(limit)
            sql += f" limit ${len(args)}"
        rows = await self.conn.fetch(sql, *args)
        return [_row_to_document(row) for row in rows]

    async def insert(self, collection: str, data: dict[str, Any], *, document_id: str | None = None) -> str:
        new_id = document_id or str(uuid4())
        payload = {key: value for key, value in data.items() if key != "id"}
        inserted = await self.conn.fetchval(
            """
            insert into documents (collection, id, data)
            values ($1, $2, $3::jsonb)
            on conflict (collection, id) do nothing
            returning id
            """,
            collection,
            new_id,
            _dumps(payload),
        )
        if inserted is None:
            raise RepositoryConflictError(f"{collection} document already exists: {new_id}")
        await self._notify(collection, new_id, "insert")
        return new_id

    async def update(self, collection: str, document_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in changes.items() if key != "id"}
        row = await self.conn.fetchrow(
            """
            update documents
            set data = data || $3::jsonb
            where collection = $1 and id = $2
            returning id, data
            """,
            collection,
            document_id,
            _dumps(payload),
        )
        if row is None:
            raise RepositoryNotFoundError(f"{collection} document not found: {document_id}")
        await self._notify(collection, document_id, "update")
        return _row_to_document(row)

    async def delete(self, collection: str, document_id: str) -> None:
        deleted = await self.conn.fetchval(
            "delete from documents where collection = $1 and id = $2 returning id",
            collection,
            document_id,
        )
        if deleted is None:
            raise RepositoryNotFoundError(f"{collection} document not found: {document_id}")
        await self._notify(collection, document_id, "delete")

    async def increment(self, collection: str, document_id: str, field: str, amount: int = 1) -> int:
        value = await self.conn.fetchval(
            """
            update documents
            set data = jsonb_set(
              data,
              array[$3::text],
              to_jsonb(coalesce((data ->> $3::text)::numeric, 0) + $4::integer)
            )
            where collection = $1 and id = $2
            returning (data ->> $3::text)::numeric
            """,
            collection,
            document_id,
            field,
            amount,
        )
        if value is None:
            raise RepositoryNotFoundError(f"{collection} document not found: {document_id}")
        await self._notify(collection, document_id, "update")
        return int(value)

    async def _notify(self, collection: str, document_id: str, kind: str) -> None:
        await self.conn.execute(
            "select pg_notify($1, $2)",
            self.channel,
            json.dumps({"collection": collection, "id": document_id, "kind": kind}),
        )


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except RepositoryError:
        raise
    except pg_exc.InsufficientPrivilegeError as exc:
        raise RepositoryForbiddenError("permission denied by store") from exc
    except pg_exc.DataError as exc:
        raise RepositoryValidationError(f"store rejected value: {exc}") from exc
    except pg_exc.TransactionRollbackError as exc:
        raise RepositoryUnavailableError("transaction aborted by store; retry the operation") from exc
    except (pg_exc.PostgresConnectionError, pg_exc.InterfaceError, OSError, asyncio.TimeoutError) as exc:
        raise RepositoryUnavailableError("database unavailable") from exc


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def _dumps(value: dict[str, Any]) -> str:
    return json.dumps(value, default=_json_default)


def _row_to_document(row: asyncpg.Record) -> dict[str, Any]:
    data = row["data"]
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            data = {}
    if not isinstance(data, dict):
        data = {}
    return {**data, "id": row["id"]}


def _decode_change(payload: str) -> DocumentChange | None:
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict):
        return None
    collection = raw.get("collection")
    document_id = raw.get("id")
    if not isinstance(collection, str) or not isinstance(document_id, str):
        return None
    return DocumentChange(collection=collection, document_id=document_id, kind=str(raw.get("kind") or "update"))


@lru_cache
def get_repository() -> DocumentStore:
    settings = get_settings()
    if settings.store_backend == "memory":
        from marketplace.services.store import InMemoryStore

        return InMemoryStore()
    return PostgresDocumentStore(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        command_timeout_seconds=settings.database_command_timeout_seconds,
        notification_channel=settings.notification_channel,
    )
