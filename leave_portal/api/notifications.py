from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from leave_portal.core.deps import get_notifications, get_session
from leave_portal.core.identity import UserSession
from leave_portal.core.notifications import NotificationSink
from leave_portal.schemas.notification import Notification, UnreadCount

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
)


@router.get(
    "",
    response_model=List[Notification],
)
async def list_notifications(
    session: UserSession = Depends(get_session),
    sink: NotificationSink = Depends(get_notifications),
):
    return sink.list_for(session.user_id)


@router.get(
    "/unread-count",
    response_model=UnreadCount,
)
async def unread_count(
    session: UserSession = Depends(get_session),
    sink: NotificationSink = Depends(get_notifications),
):
    return UnreadCount(unread=sink.unread_count(session.user_id))


@router.post(
    "/{notification_id}/read",
    response_model=Notification,
)
async def mark_notification_read(
    notification_id: str,
    session: UserSession = Depends(get_session),
    sink: NotificationSink = Depends(get_notifications),
):
    item = sink.mark_read(notification_id, session.user_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return item
