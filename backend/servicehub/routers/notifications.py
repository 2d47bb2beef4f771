from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from servicehub.auth import assert_actor_authorized
from servicehub.models import NotificationRecord
from servicehub.routers.common import get_notifications
from servicehub.services.notification_store import NotificationStore

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRecord])
def list_notifications(
    user_id: str = Query(...),
    unread_only: bool = Query(default=False),
    notifications: NotificationStore = Depends(get_notifications),
):
    return notifications.list_for_user(user_id=user_id, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=NotificationRecord)
def mark_notification_read(
    notification_id: str,
    user_id: str = Query(...),
    notifications: NotificationStore = Depends(get_notifications),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    updated = notifications.mark_read(user_id=user_id, notification_id=notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Notification not found"})
    return updated
