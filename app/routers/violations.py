from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import AppRole, CounselingReferral, ReferralStatus
from app.routers.common import audit_request, status_read
from app.schemas import ReferralRead, ReferralStatusUpdateRequest, ViolationCreateRequest, ViolationRead
from app.security import get_acting_user, require_roles
from app.services.directory import ActingUser
from app.services.referrals import accept_referral, list_referrals, update_referral_status
from app.services.violations import record_violation

router = APIRouter(tags=["violations"])
require_counselor = require_roles(AppRole.GURU_BK)


def _to_referral_read(referral: CounselingReferral) -> ReferralRead:
    return ReferralRead(
        id=referral.id,
        student_id=referral.student_id,
        referral_type=referral.referral_type,
        urgency=status_read(referral.urgency_level),
        referral_reason=referral.referral_reason,
        referred_by=referral.referred_by,
        assigned_counselor=referral.assigned_counselor,
        status=status_read(referral.status),
        accepted_at=referral.accepted_at,
        created_at=referral.created_at,
    )


@router.post("/api/violations", response_model=ViolationRead, status_code=status.HTTP_201_CREATED)
def create_violation(
    payload: ViolationCreateRequest,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> ViolationRead:
    violation, referrals = record_violation(db, actor, payload)
    audit_request(
        db,
        request,
        actor,
        action="VIOLATION_RECORDED",
        entity_type="student_violation",
        entity_id=violation.id,
        details={
            "student_id": violation.student_id,
            "violation_type_id": violation.violation_type_id,
            "referral_ids": [referral.id for referral in referrals],
        },
    )
    return ViolationRead(
        id=violation.id,
        student_id=violation.student_id,
        violation_type_id=violation.violation_type_id,
        violation_date=violation.violation_date,
        description=violation.description,
        point_deduction=violation.point_deduction,
        status=status_read(violation.status),
        referral_ids=[referral.id for referral in referrals],
    )


@router.get("/api/referrals", response_model=list[ReferralRead])
def list_counseling_referrals(
    include_completed: bool = Query(default=False),
    _actor: ActingUser = Depends(require_counselor),
    db: Session = Depends(get_db),
) -> list[ReferralRead]:
    return [_to_referral_read(item) for item in list_referrals(db, include_completed=include_completed)]


@router.post("/api/referrals/{referral_id}/accept", response_model=ReferralRead)
def accept_counseling_referral(
    referral_id: int,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> ReferralRead:
    referral = accept_referral(db, actor, referral_id)
    audit_request(
        db,
        request,
        actor,
        action="REFERRAL_ACCEPTED",
        entity_type="counseling_referral",
        entity_id=referral.id,
        details={"student_id": referral.student_id},
    )
    return _to_referral_read(referral)


@router.post("/api/referrals/{referral_id}/status", response_model=ReferralRead)
def update_counseling_referral_status(
    referral_id: int,
    payload: ReferralStatusUpdateRequest,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> ReferralRead:
    referral = update_referral_status(db, actor, referral_id, ReferralStatus(payload.status))
    audit_request(
        db,
        request,
        actor,
        action="REFERRAL_STATUS_UPDATED",
        entity_type="counseling_referral",
        entity_id=referral.id,
        details={"status": referral.status.value},
    )
    return _to_referral_read(referral)
