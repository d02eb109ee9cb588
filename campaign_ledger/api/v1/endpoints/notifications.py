"""
In-app notification endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from campaign_ledger.api.deps import get_db, get_current_user
from campaign_ledger.models.db import User
from campaign_ledger.models.schemas.base import ResponseBase
from campaign_ledger.models.schemas.notifications import NotificationRead
from campaign_ledger.services import notifications
from campaign_ledger.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/mine",
    response_model=ResponseBase,
    summary="My notifications"
)
async def list_my_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    rows = notifications.list_for_user(db, current_user.id, unread_only=unread_only, limit=limit)
    return ResponseBase(data={
        "notifications": [NotificationRead.model_validate(n).model_dump(mode="json") for n in rows],
        "count": len(rows),
        "unread": sum(1 for n in rows if not n.is_read),
    })


@router.put(
    "/read-all",
    response_model=ResponseBase,
    summary="Mark all my notifications read"
)
async def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    updated = notifications.mark_all_read(db, current_user.id)
    return ResponseBase(message=f"{updated} notification(s) marked read", data={"updated": updated})


@router.put(
    "/{notification_id}/read",
    response_model=ResponseBase,
    summary="Mark a notification read"
)
async def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ResponseBase:
    row = notifications.mark_read(db, notification_id, current_user.id)
    if row is None:
        logger.warning("Notification not found", notification_id=notification_id, user_id=current_user.id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return ResponseBase(data={"notification": NotificationRead.model_validate(row).model_dump(mode="json")})
