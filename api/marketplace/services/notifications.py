from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from marketplace.core.timestamps import to_instant, utc_now
from marketplace.services.repository import (
    NOTIFICATIONS,
    DocumentChange,
    DocumentStore,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    Unwatch,
)

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    JOB_POSTED = "job_posted"
    PROPOSAL_RECEIVED = "proposal_received"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    JOB_COMPLETED = "job_completed"
    REVIEW_RECEIVED = "review_received"


@dataclass(slots=True)
class NotificationDraft:
    user_id: str
    type: NotificationType
    title: str
    message: str
    action_url: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SideEffectResult:
    notification_id: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NotificationSink(Protocol):
    async def publish(self, draft: NotificationDraft) -> SideEffectResult: ...


def discard_side_effect(result: SideEffectResult, *, event: str, **context: Any) -> None:
    """Log a failed notification and drop it; the triggering mutation stands."""
    if result.ok:
        return
    details = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
    logger.warning("notification dropped event=%s %s error=%s", event, details, result.error)


# Message templates


def job_posted(*, client_id: str, job_title: str, job_id: str) -> NotificationDraft:
    return NotificationDraft(
        user_id=client_id,
        type=NotificationType.JOB_POSTED,
        title="Job Posted Successfully",
        message=f'Your job "{job_title}" has been posted and is now visible to professionals.',
        action_url="/my-jobs",
        metadata={"jobId": job_id},
    )


def proposal_received(
    *,
    client_id: str,
    job_title: str,
    professional_name: str,
    job_id: str,
    proposal_id: str,
) -> NotificationDraft:
    return NotificationDraft(
        user_id=client_id,
        type=NotificationType.PROPOSAL_RECEIVED,
        title="New Proposal Received",
        message=f'{professional_name} has submitted a proposal for your job "{job_title}".',
        action_url=f"/my-jobs/{job_id}/proposals",
        metadata={"jobId": job_id, "proposalId": proposal_id},
    )


def proposal_status_changed(
    *,
    professional_id: str,
    job_title: str,
    accepted: bool,
    job_id: str,
    proposal_id: str,
) -> NotificationDraft:
    if accepted:
        notification_type = NotificationType.PROPOSAL_ACCEPTED
        title = "Proposal Accepted!"
        message = f'Congratulations! Your proposal for "{job_title}" has been accepted.'
    else:
        notification_type = NotificationType.PROPOSAL_REJECTED
        title = "Proposal Update"
        message = f'Your proposal for "{job_title}" was not selected this time.'
    return NotificationDraft(
        user_id=professional_id,
        type=notification_type,
        title=title,
        message=message,
        action_url="/my-proposals",
        metadata={"jobId": job_id, "proposalId": proposal_id},
    )


def job_completed(*, professional_id: str, job_title: str, job_id: str, client_id: str) -> NotificationDraft:
    return NotificationDraft(
        user_id=professional_id,
        type=NotificationType.JOB_COMPLETED,
        title="Job Completed",
        message=f'The job "{job_title}" has been marked as completed.',
        action_url="/my-proposals",
        metadata={"jobId": job_id, "clientId": client_id},
    )


def review_received(
    *,
    recipient_id: str,
    client_name: str,
    rating: int,
    job_title: str | None,
    client_id: str,
    professional_id: str,
) -> NotificationDraft:
    job_clause = f' for "{job_title}"' if job_title else ""
    return NotificationDraft(
        user_id=recipient_id,
        type=NotificationType.REVIEW_RECEIVED,
        title="New Review Received",
        message=f"{client_name} left you a {rating}-star review{job_clause}.",
        action_url="/profile",
        metadata={"clientId": client_id, "professionalId": professional_id},
    )


NotificationCallback = Callable[[list[dict[str, Any]]], Awaitable[None] | None]


class NotificationService:
    def __init__(self, store: DocumentStore, *, default_limit: int = 50, max_limit: int = 200) -> None:
        self.store = store
        self.default_limit = max(1, default_limit)
        self.max_limit = max(self.default_limit, max_limit)

    async def publish(self, draft: NotificationDraft) -> SideEffectResult:
        document = {
            "user_id": draft.user_id,
            "type": draft.type.value,
            "title": draft.title,
            "message": draft.message,
            "read": False,
            "action_url": draft.action_url,
            "metadata": dict(draft.metadata),
            "created_at": utc_now(),
        }
        try:
            notification_id = await self.store.insert(NOTIFICATIONS, document)
        except Exception as exc:
            return SideEffectResult(error=exc)
        return SideEffectResult(notification_id=notification_id)

    async def list_for_user(self, user_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        documents = await self.store.query(
            NOTIFICATIONS,
            {"user_id": user_id},
            order_by="created_at",
            limit=self._bounded_limit(limit),
        )
        return [_hydrate_notification(document) for document in documents]

    async def get_unread_count(self, user_id: str) -> int:
        documents = await self.store.query(NOTIFICATIONS, {"user_id": user_id, "read": False})
        return len(documents)

    async def mark_as_read(self, notification_id: str, *, user_id: str | None = None) -> dict[str, Any]:
        document = await self.store.get(NOTIFICATIONS, notification_id)
        if document is None:
            raise RepositoryNotFoundError("notification not found")
        if user_id is not None and document.get("user_id") != user_id:
            raise RepositoryForbiddenError("notification belongs to another user")
        updated = await self.store.update(NOTIFICATIONS, notification_id, {"read": True})
        return _hydrate_notification(updated)

    async def mark_all_as_read(self, user_id: str) -> int:
        documents = await self.store.query(NOTIFICATIONS, {"user_id": user_id})
        unread = [document for document in documents if not document.get("read")]
        await asyncio.gather(*(self.mark_as_read(document["id"]) for document in unread))
        return len(unread)

    async def subscribe(
        self,
        user_id: str,
        callback: NotificationCallback,
        *,
        limit: int | None = None,
    ) -> NotificationSubscription:
        subscription = NotificationSubscription(self, user_id, callback, limit=self._bounded_limit(limit))
        await subscription.start()
        return subscription

    def _bounded_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        return max(1, min(limit, self.max_limit))


class NotificationSubscription:
    """Pushes a user's sorted notification list on every relevant change.

    If the store's change feed cannot be opened, or drops later, the
    subscriber receives one fresh fetch and the subscription stops being live.
    ``close()`` must be called when the owning session ends.
    """

    def __init__(
        self,
        service: NotificationService,
        user_id: str,
        callback: NotificationCallback,
        *,
        limit: int,
    ) -> None:
        self.service = service
        self.user_id = user_id
        self.callback = callback
        self.limit = limit
        self.closed = False
        self._unwatch: Unwatch | None = None
        self._feed_lost = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def live(self) -> bool:
        return self._unwatch is not None and not self._feed_lost and not self.closed

    async def start(self) -> None:
        try:
            self._unwatch = await self.service.store.watch(
                NOTIFICATIONS,
                self._on_change,
                on_error=self._on_feed_error,
            )
        except RepositoryError as exc:
            logger.warning(
                "notification feed unavailable user=%s; falling back to one-shot fetch: %s",
                self.user_id,
                exc,
            )
        try:
            await self._deliver()
        except BaseException:
            await self.close()
            raise

    async def flush(self) -> None:
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        unwatch, self._unwatch = self._unwatch, None
        for task in list(self._tasks):
            task.cancel()
        if unwatch is not None:
            await unwatch()

    def _on_change(self, change: DocumentChange) -> None:
        if self.closed:
            return
        self._schedule(self._refresh_if_relevant(change))

    def _on_feed_error(self, exc: Exception) -> None:
        logger.warning("notification feed lost user=%s; falling back to one-shot fetch: %s", self.user_id, exc)
        self._feed_lost = True
        if not self.closed:
            self._schedule(self._deliver())

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh_if_relevant(self, change: DocumentChange) -> None:
        if change.kind != "delete":
            try:
                document = await self.service.store.get(NOTIFICATIONS, change.document_id)
            except RepositoryError as exc:
                logger.warning("notification refresh failed user=%s: %s", self.user_id, exc)
                return
            if document is not None and document.get("user_id") != self.user_id:
                return
        await self._deliver()

    async def _deliver(self) -> None:
        try:
            notifications = await self.service.list_for_user(self.user_id, self.limit)
        except RepositoryError as exc:
            logger.warning("notification fetch failed user=%s: %s", self.user_id, exc)
            return
        if self.closed:
            return
        result = self.callback(notifications)
        if inspect.isawaitable(result):
            await result


def _hydrate_notification(document: dict[str, Any]) -> dict[str, Any]:
    metadata = document.get("metadata")
    return {
        **document,
        "read": bool(document.get("read", False)),
        "metadata": {str(key): str(value) for key, value in metadata.items()} if isinstance(metadata, dict) else {},
        "created_at": to_instant(document.get("created_at")),
    }
