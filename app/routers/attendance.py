from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import AuthorizationError
from app.models import Student, StudentSelfAttendance
from app.routers.common import audit_request, status_read
from app.schemas import (
    AttendanceActionRequest,
    CheckInResponse,
    CheckOutResponse,
    SelfAttendanceRead,
    TodayAttendanceResponse,
)
from app.security import get_acting_user
from app.services.directory import ActingUser, get_student_for_user
from app.services.geolocation import PayloadGeolocationProvider, read_position
from app.services.local_time import local_now
from app.services.self_attendance import (
    check_in,
    check_out,
    get_today_attendance,
    resolve_schedule,
)

router = APIRouter(tags=["attendance"])


def _to_attendance_read(record: StudentSelfAttendance) -> SelfAttendanceRead:
    return SelfAttendanceRead(
        id=record.id,
        student_id=record.student_id,
        attendance_date=record.attendance_date,
        check_in_time=record.check_in_time,
        check_in_location_id=record.check_in_location_id,
        check_out_time=record.check_out_time,
        status=status_read(record.status),
        violation_created=record.violation_created,
        notes=record.notes,
    )


def _require_own_student(db: Session, actor: ActingUser) -> Student:
    student = get_student_for_user(db, actor.id)
    if student is None:
        raise AuthorizationError("No active student record is linked to this account.")
    return student


@router.get("/api/self-attendance/today", response_model=TodayAttendanceResponse)
def read_today_attendance(
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> TodayAttendanceResponse:
    student = _require_own_student(db, actor)
    today = local_now().date()
    record = get_today_attendance(db, student.id, today)
    return TodayAttendanceResponse(
        attendance_date=today,
        attendance=_to_attendance_read(record) if record is not None else None,
    )


@router.post("/api/self-attendance/check-in", response_model=CheckInResponse)
def self_check_in(
    payload: AttendanceActionRequest,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> CheckInResponse:
    student = _require_own_student(db, actor)
    now = local_now()
    position = read_position(PayloadGeolocationProvider(payload.lat, payload.lon, payload.accuracy_m))
    result = check_in(
        db,
        actor,
        student.id,
        now=now,
        schedule=resolve_schedule(db, student, now.date()),
        position=position,
    )
    request.state.student_id = student.id
    audit_request(
        db,
        request,
        actor,
        action="SELF_ATTENDANCE_CHECK_IN",
        entity_type="student_self_attendance",
        entity_id=result.attendance.id,
        details={"location_id": result.location.id, "check_in_time": result.attendance.check_in_time.isoformat()},
    )
    return CheckInResponse(
        attendance=_to_attendance_read(result.attendance),
        location_id=result.location.id,
        location_name=result.location.name,
    )


@router.post("/api/self-attendance/check-out", response_model=CheckOutResponse)
def self_check_out(
    payload: AttendanceActionRequest,
    request: Request,
    actor: ActingUser = Depends(get_acting_user),
    db: Session = Depends(get_db),
) -> CheckOutResponse:
    student = _require_own_student(db, actor)
    position = read_position(PayloadGeolocationProvider(payload.lat, payload.lon, payload.accuracy_m))
    result = check_out(db, actor, student.id, now=local_now(), position=position)
    request.state.student_id = student.id

    violation = result.violation
    audit_request(
        db,
        request,
        actor,
        action="SELF_ATTENDANCE_CHECK_OUT",
        entity_type="student_self_attendance",
        entity_id=result.attendance.id,
        details={
            "check_out_time": result.attendance.check_out_time.isoformat(),
            "violation_id": violation.id if violation is not None else None,
            "referral_ids": [referral.id for referral in result.referrals],
        },
    )
    if violation is None:
        message = "Check-out berhasil."
    else:
        message = f"Check-out tercatat dengan pelanggaran: {violation.violation_type.name}."
    return CheckOutResponse(
        attendance=_to_attendance_read(result.attendance),
        violation_id=violation.id if violation is not None else None,
        point_deduction=violation.point_deduction if violation is not None else None,
        message=message,
    )
