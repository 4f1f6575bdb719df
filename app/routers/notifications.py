from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import Notification
from app.schemas import NotificationRead
from app.security import get_acting_user
from app.services.directory import ActingUser
from app.services.notifications import list_notifications_for_user, mark_notification_read

router = APIRouter(tags=["notifications"])


@router.get("/api/notifications", response_model=list[NotificationRead])
def list_my_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> list[Notification]:
    return list_notifications_for_user(db, actor.id, limit=limit)


@router.post("/api/notifications/{notification_id}/read", response_model=NotificationRead)
def read_notification(
    notification_id: int,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> Notification:
    return mark_notification_read(db, user_id=actor.id, notification_id=notification_id)
