from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import AppRole, Notification
from app.services.directory import list_user_ids_with_role

logger = logging.getLogger("app.notifications")


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    user_id: int
    title: str
    message: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationChannel:
    def send(self, db: Session, message: NotificationMessage) -> None:
        raise NotImplementedError


class InAppChannel(NotificationChannel):
    def send(self, db: Session, message: NotificationMessage) -> None:
        db.add(
            Notification(
                user_id=message.user_id,
                title=message.title,
                message=message.message,
                type=message.type,
                data=dict(message.data),
                is_read=False,
            )
        )


def messages_for_role(
    db: Session,
    role: AppRole,
    *,
    title: str,
    message: str,
    type: str,
    data: dict[str, Any] | None = None,
) -> list[NotificationMessage]:
    return [
        NotificationMessage(user_id=user_id, title=title, message=message, type=type, data=data or {})
        for user_id in list_user_ids_with_role(db, role)
    ]


def dispatch_notifications(
    db: Session,
    messages: Sequence[NotificationMessage],
    *,
    channel: NotificationChannel | None = None,
) -> int:
    """Deliver after the workflow has committed; a failure here never undoes the workflow."""
    if not messages:
        return 0

    resolved_channel = channel or InAppChannel()
    try:
        for item in messages:
            resolved_channel.send(db, item)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "notification_dispatch_failed",
            extra={
                "count": len(messages),
                "types": sorted({item.type for item in messages}),
            },
        )
        return 0

    logger.info(
        "notifications_dispatched",
        extra={
            "count": len(messages),
            "types": sorted({item.type for item in messages}),
            "user_ids": [item.user_id for item in messages],
        },
    )
    return len(messages)


def list_notifications_for_user(db: Session, user_id: int, *, limit: int = 50) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt).all())


def mark_notification_read(db: Session, *, user_id: int, notification_id: int) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("Notification not found.")
    if not notification.is_read:
        notification.is_read = True
        db.commit()
        db.refresh(notification)
    return notification
