from __future__ import annotations

from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.services.directory import ActingUser
from app.services.status_labels import display_for
from app.schemas import StatusDisplayRead


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def status_read(value: Any) -> StatusDisplayRead:
    display = display_for(value)
    return StatusDisplayRead(value=display.value, label=display.label, tone=display.tone)


def audit_request(
    db: Session,
    request: Request,
    actor: ActingUser | None,
    *,
    action: str,
    entity_type: str,
    entity_id: int | str | None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    log_audit(
        db,
        actor_id=actor.id if actor is not None else None,
        action=action,
        success=success,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=getattr(request.state, "request_id", None),
    )
