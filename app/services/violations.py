from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import AuthorizationError, PersistenceError, ValidationError
from app.models import CounselingReferral, StudentViolation, ViolationStatus, ViolationType
from app.schemas import ViolationCreateRequest
from app.services.directory import ActingUser, get_student
from app.services.local_time import local_today
from app.services.referrals import run_auto_referrals

logger = logging.getLogger("app.violations")

EARLY_DEPARTURE_TYPE_NAME = "Pulang Terlalu Awal"
LATE_DEPARTURE_TYPE_NAME = "Pulang Terlalu Malam"
DISCIPLINE_CATEGORY = "kedisiplinan"


def get_or_create_violation_type(db: Session, name: str, *, point_deduction: int) -> ViolationType:
    """Return the type by name, creating it (flushed, not committed) on first use."""
    violation_type = db.scalar(select(ViolationType).where(ViolationType.name == name))
    if violation_type is not None:
        return violation_type

    violation_type = ViolationType(
        name=name,
        category=DISCIPLINE_CATEGORY,
        point_deduction=point_deduction,
        is_active=True,
    )
    db.add(violation_type)
    db.flush()
    logger.info("violation_type_created", extra={"violation_type_id": violation_type.id, "violation_type_name": name})
    return violation_type


def build_violation(
    *,
    student_id: int,
    violation_type: ViolationType,
    violation_date: date,
    point_deduction: int,
    description: str | None,
    recorded_by: int | None,
) -> StudentViolation:
    return StudentViolation(
        student_id=student_id,
        violation_type_id=violation_type.id,
        violation_type=violation_type,
        violation_date=violation_date,
        description=description,
        point_deduction=point_deduction,
        status=ViolationStatus.ACTIVE,
        recorded_by=recorded_by,
    )


def record_violation(
    db: Session,
    actor: ActingUser,
    payload: ViolationCreateRequest,
    *,
    today: date | None = None,
) -> tuple[StudentViolation, list[CounselingReferral]]:
    if not actor.is_staff:
        raise AuthorizationError("Only school staff can record violations.")

    student = get_student(db, payload.student_id)
    violation_type = db.get(ViolationType, payload.violation_type_id)
    if violation_type is None or not violation_type.is_active:
        raise ValidationError("Violation type is unknown or inactive.", code="VIOLATION_TYPE_INVALID")

    resolved_today = today or local_today()
    violation = build_violation(
        student_id=student.id,
        violation_type=violation_type,
        violation_date=payload.violation_date or resolved_today,
        point_deduction=payload.point_deduction or violation_type.point_deduction,
        description=payload.description,
        recorded_by=actor.id,
    )
    db.add(violation)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("violation_record_failed", extra={"student_id": student.id})
        raise PersistenceError("The violation could not be saved. Please try again.") from exc

    db.refresh(violation)
    logger.info(
        "violation_recorded",
        extra={
            "violation_id": violation.id,
            "student_id": student.id,
            "violation_type": violation_type.name,
            "point_deduction": violation.point_deduction,
            "actor_id": actor.id,
        },
    )

    referrals = run_auto_referrals(db, student.id, evaluator_id=actor.id, today=resolved_today)
    return violation, referrals
