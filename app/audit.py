from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog

logger = logging.getLogger("app.audit")


def log_audit(
    db: Session,
    *,
    actor_id: int | None,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
) -> None:
    actor_type = AuditActorType.SYSTEM if actor_id is None else AuditActorType.USER
    resolved_actor_id = "system" if actor_id is None else str(actor_id)
    resolved_entity_id = None if entity_id is None else str(entity_id)

    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=resolved_actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=resolved_entity_id,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": resolved_actor_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": resolved_actor_id,
            "entity_type": entity_type,
            "entity_id": resolved_entity_id,
            "success": success,
            "details": details or {},
        },
    )
