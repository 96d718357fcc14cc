import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from marketplace.api.deps import build_notification_service, get_notification_service, http_errors
from marketplace.core.config import Settings, get_settings
from marketplace.core.security import get_auth_session, resolve_auth_session
from marketplace.schemas.notifications import MarkAllReadOut, NotificationOut, UnreadCountOut
from marketplace.services.notifications import NotificationSubscription
from marketplace.services.repository import get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
    session=Depends(get_auth_session),
    notifications=Depends(get_notification_service),
    limit: int | None = Query(default=None, ge=1),
) -> list[NotificationOut]:
    with http_errors():
        rows = await notifications.list_for_user(session.user_id, limit)
    return [NotificationOut(**row) for row in rows]


@router.get("/unread-count", response_model=UnreadCountOut)
async def get_unread_count(
    session=Depends(get_auth_session),
    notifications=Depends(get_notification_service),
) -> UnreadCountOut:
    with http_errors():
        count = await notifications.get_unread_count(session.user_id)
    return UnreadCountOut(count=count)


@router.post("/read-all", response_model=MarkAllReadOut)
async def mark_all_read(
    session=Depends(get_auth_session),
    notifications=Depends(get_notification_service),
) -> MarkAllReadOut:
    with http_errors():
        count = await notifications.mark_all_as_read(session.user_id)
    return MarkAllReadOut(count=count)


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: str,
    session=Depends(get_auth_session),
    notifications=Depends(get_notification_service),
) -> NotificationOut:
    with http_errors():
        row = await notifications.mark_as_read(notification_id, user_id=session.user_id)
    return NotificationOut(**row)


@router.websocket("/stream")
async def stream_notifications(
    websocket: WebSocket,
    token: str = Query(default=""),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> None:
    try:
        session = await resolve_auth_session(token, settings)
    except HTTPException as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(exc.detail))
        return

    await websocket.accept()
    service = build_notification_service(repository, settings)

    async def push(rows: list[dict[str, Any]]) -> None:
        await websocket.send_json([NotificationOut(**row).model_dump(mode="json") for row in rows])

    subscription: NotificationSubscription | None = None
    try:
        subscription = await service.subscribe(session.user_id, push)
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(
            "notification stream closed user=%s live=%s",
            session.user_id,
            subscription is not None and subscription.live,
        )
    finally:
        if subscription is not None:
            await subscription.close()
