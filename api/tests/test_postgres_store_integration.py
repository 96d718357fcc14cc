from __future__ import annotations

import asyncio
import os
from collections.abc import Coroutine
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar
from uuid import uuid4

import pytest

from marketplace.core.auth import AccountType, AuthSession
from marketplace.services.notifications import NotificationService
from marketplace.services.repository import (
    DocumentChange,
    PostgresDocumentStore,
    RepositoryConflictError,
    RepositoryNotFoundError,
)
from marketplace.services.reviews import ReviewRegistry

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("MKT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require MKT_DATABASE_URL or DATABASE_URL")
    return url


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _store(database_url: str) -> PostgresDocumentStore:
    return PostgresDocumentStore(
        database_url=database_url,
        min_pool_size=1,
        max_pool_size=2,
        command_timeout_seconds=15.0,
        notification_channel="marketplace_documents_test",
    )


def test_crud_query_and_increment(database_url: str) -> None:
    collection = f"jobs_{uuid4().hex[:8]}"
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def scenario() -> None:
        store = _store(database_url)
        try:
            await store.ensure_schema()
            for offset, job_id in enumerate(["a", "b", "c"]):
                await store.insert(
                    collection,
                    {"category": "plumber", "proposals": 0, "created_at": base + timedelta(days=offset)},
                    document_id=job_id,
                )
            await store.insert(collection, {"category": "electrician", "proposals": 0}, document_id="d")

            rows = await store.query(collection, {"category": "plumber"}, order_by="created_at", limit=2)
            assert [row["id"] for row in rows] == ["c", "b"]

            assert await store.increment(collection, "a", "proposals") == 1
            merged = await store.update(collection, "a", {"title": "Fix sink"})
            assert merged["proposals"] == 1
            assert merged["title"] == "Fix sink"

            with pytest.raises(RepositoryConflictError):
                await store.insert(collection, {}, document_id="a")
            with pytest.raises(RepositoryNotFoundError):
                await store.update(collection, "missing", {"title": "x"})

            await store.delete(collection, "d")
            assert await store.get(collection, "d") is None
        finally:
            await store.close()

    _run(scenario())


def test_transaction_rolls_back(database_url: str) -> None:
    collection = f"reviews_{uuid4().hex[:8]}"

    async def scenario() -> None:
        store = _store(database_url)
        try:
            await store.ensure_schema()
            await store.insert(collection, {"reviews": 0}, document_id="pro-1")
            with pytest.raises(RuntimeError):
                async with store.transaction() as txn:
                    profile = await txn.get(collection, "pro-1", for_update=True)
                    assert profile is not None
                    await txn.increment(collection, "pro-1", "reviews")
                    raise RuntimeError("abort")
            profile = await store.get(collection, "pro-1")
            assert profile["reviews"] == 0
        finally:
            await store.close()

    _run(scenario())


def test_watch_receives_committed_changes(database_url: str) -> None:
    collection = f"notifications_{uuid4().hex[:8]}"

    async def scenario() -> list[DocumentChange]:
        store = _store(database_url)
        seen: list[DocumentChange] = []
        try:
            await store.ensure_schema()
            unwatch = await store.watch(collection, seen.append)
            await store.insert(collection, {"user_id": "u1", "read": False}, document_id="n1")
            for _ in range(50):
                if seen:
                    break
                await asyncio.sleep(0.05)
            await unwatch()
        finally:
            await store.close()
        return seen

    seen = _run(scenario())
    assert [(change.document_id, change.kind) for change in seen] == [("n1", "insert")]


def test_watchers_share_one_connection_outside_the_pool(database_url: str) -> None:
    collection = f"notifications_{uuid4().hex[:8]}"

    async def scenario() -> tuple[list[int], bool]:
        store = _store(database_url)
        seen: list[list[DocumentChange]] = [[], [], []]
        try:
            await store.ensure_schema()
            unwatches = await asyncio.wait_for(
                asyncio.gather(*(store.watch(collection, changes.append) for changes in seen)),
                timeout=5,
            )
            await asyncio.wait_for(
                store.insert(collection, {"user_id": "u1", "read": False}, document_id="n1"),
                timeout=5,
            )
            rows = await asyncio.wait_for(store.query(collection, {"user_id": "u1"}), timeout=5)
            assert [row["id"] for row in rows] == ["n1"]
            for _ in range(50):
                if all(seen):
                    break
                await asyncio.sleep(0.05)
            for unwatch in unwatches:
                await unwatch()
            released = store._listen_conn is None
        finally:
            await store.close()
        return [len(changes) for changes in seen], released

    counts, released = _run(scenario())
    assert counts == [1, 1, 1]
    assert released is True


def test_concurrent_reviews_for_same_pair_keep_only_one(database_url: str) -> None:
    suffix = uuid4().hex[:8]
    client = AuthSession.for_account(f"client-{suffix}", AccountType.CLIENT, display_name="Asha")
    professional_id = f"pro-{suffix}"

    async def scenario() -> tuple[list, dict, int]:
        store = _store(database_url)
        try:
            await store.ensure_schema()
            await store.insert(
                "professionals",
                {"user_id": professional_id, "name": "Ravi", "rating": 0.0, "reviews": 0, "rating_total": 0},
                document_id=professional_id,
            )
            await store.insert("jobs", {"client_id": client.user_id, "title": "Fix sink"}, document_id=f"job-{suffix}")
            await store.insert(
                "proposals",
                {"job_id": f"job-{suffix}", "professional_id": professional_id, "status": "accepted"},
                document_id=f"proposal-{suffix}",
            )

            def registry() -> ReviewRegistry:
                return ReviewRegistry(store, NotificationService(store), client)

            payload = {"professional_id": professional_id, "comment": "Tidy work"}
            results = await asyncio.gather(
                registry().create_review({**payload, "rating": 5}),
                registry().create_review({**payload, "rating": 1}),
                return_exceptions=True,
            )
            profile = await store.get("professionals", professional_id)
            reviews = await store.query("reviews", {"professional_id": professional_id})
        finally:
            await store.close()
        return results, profile, len(reviews)

    results, profile, review_count = _run(scenario())
    failures = [result for result in results if isinstance(result, BaseException)]
    assert len(failures) == 1
    assert isinstance(failures[0], RepositoryConflictError)
    assert review_count == 1
    assert profile["reviews"] == 1
