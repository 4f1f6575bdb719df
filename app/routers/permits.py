from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import AuthorizationError
from app.models import AppRole, PermitApproval, StudentPermit
from app.routers.common import audit_request, status_read
from app.schemas import (
    PendingApprovalRead,
    PermitApprovalRead,
    PermitCreateRequest,
    PermitDecisionRequest,
    PermitRead,
)
from app.security import get_acting_user
from app.services.directory import ActingUser, get_student_for_user
from app.services.permits import (
    create_permit,
    get_permit,
    list_pending_approvals,
    list_permits_for_student,
    process_approval,
)
from app.services.status_labels import label_for

router = APIRouter(tags=["permits"])


def _to_approval_read(step: PermitApproval) -> PermitApprovalRead:
    return PermitApprovalRead(
        id=step.id,
        approval_order=step.approval_order,
        approver_role=step.approver_role,
        approver_role_label=label_for(step.approver_role),
        status=status_read(step.status),
        approver_id=step.approver_id,
        approved_at=step.approved_at,
        notes=step.notes,
    )


def _to_permit_read(permit: StudentPermit) -> PermitRead:
    return PermitRead(
        id=permit.id,
        student_id=permit.student_id,
        student_name=permit.student.full_name if permit.student else None,
        permit_type=permit.permit_type,
        permit_type_label=label_for(permit.permit_type),
        permit_category=permit.permit_category,
        urgency=status_read(permit.urgency_level),
        reason=permit.reason,
        start_date=permit.start_date,
        end_date=permit.end_date,
        start_time=permit.start_time,
        end_time=permit.end_time,
        activity_location=permit.activity_location,
        emergency_contact=permit.emergency_contact,
        parent_contact=permit.parent_contact,
        parent_approval=permit.parent_approval,
        status=status_read(permit.status),
        current_approval_stage=permit.current_approval_stage,
        submitted_at=permit.submitted_at,
        reviewed_by=permit.reviewed_by,
        reviewed_at=permit.reviewed_at,
        review_notes=permit.review_notes,
        approvals=[_to_approval_read(step) for step in sorted(permit.approvals, key=lambda s: s.approval_order)],
    )


def _ensure_can_view(actor: ActingUser, permit: StudentPermit) -> None:
    if actor.is_staff:
        return
    if actor.has_role(AppRole.SISWA) and permit.student is not None and permit.student.user_id == actor.id:
        return
    raise AuthorizationError("You cannot view this permit.")


@router.post("/api/permits", response_model=PermitRead, status_code=status.HTTP_201_CREATED)
def submit_permit(
    payload: PermitCreateRequest,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> PermitRead:
    permit = create_permit(db, actor, payload)
    audit_request(
        db,
        request,
        actor,
        action="PERMIT_SUBMITTED",
        entity_type="student_permit",
        entity_id=permit.id,
        details={
            "student_id": permit.student_id,
            "permit_type": permit.permit_type.value,
            "route_length": len(permit.approvals),
        },
    )
    return _to_permit_read(get_permit(db, permit.id))


@router.get("/api/permits/mine", response_model=list[PermitRead])
def list_my_permits(
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> list[PermitRead]:
    student = get_student_for_user(db, actor.id)
    if student is None:
        return []
    return [_to_permit_read(permit) for permit in list_permits_for_student(db, student.id)]


@router.get("/api/permits/{permit_id}", response_model=PermitRead)
def read_permit(
    permit_id: int,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> PermitRead:
    permit = get_permit(db, permit_id)
    _ensure_can_view(actor, permit)
    return _to_permit_read(permit)


@router.get("/api/permit-approvals/pending", response_model=list[PendingApprovalRead])
def list_my_pending_approvals(
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> list[PendingApprovalRead]:
    return [
        PendingApprovalRead(
            approval_id=step.id,
            approval_order=step.approval_order,
            approver_role=step.approver_role,
            permit=_to_permit_read(step.permit),
        )
        for step in list_pending_approvals(db, actor)
    ]


@router.post("/api/permits/{permit_id}/decision", response_model=PermitRead)
def decide_permit(
    permit_id: int,
    payload: PermitDecisionRequest,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> PermitRead:
    permit = process_approval(
        db,
        actor,
        permit_id,
        payload.decision,
        payload.notes,
        approval_order=payload.approval_order,
    )
    audit_request(
        db,
        request,
        actor,
        action="PERMIT_DECIDED",
        entity_type="student_permit",
        entity_id=permit.id,
        details={
            "decision": payload.decision,
            "permit_status": permit.status.value,
            "current_approval_stage": permit.current_approval_stage,
        },
    )
    return _to_permit_read(get_permit(db, permit.id))
