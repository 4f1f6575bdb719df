from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import (
    AuthorizationError,
    DuplicateError,
    LocationError,
    PersistenceError,
    ScheduleError,
    StateError,
)
from app.models import (
    AppRole,
    AttendanceLocation,
    AttendanceSchedule,
    CounselingReferral,
    SelfAttendanceStatus,
    Student,
    StudentSelfAttendance,
    StudentViolation,
)
from app.services.directory import ActingUser, get_student
from app.services.geolocation import GeoReading
from app.services.local_time import day_of_week, parse_clock, time_of_day, to_local
from app.services.location import is_within_location
from app.services.referrals import run_auto_referrals
from app.services.violations import (
    EARLY_DEPARTURE_TYPE_NAME,
    LATE_DEPARTURE_TYPE_NAME,
    build_violation,
    get_or_create_violation_type,
)
from app.settings import get_settings

logger = logging.getLogger("app.attendance")

ON_SCHEDULE_NOTE = "on-schedule"


@dataclass(slots=True)
class CheckInResult:
    attendance: StudentSelfAttendance
    location: AttendanceLocation


@dataclass(slots=True)
class CheckOutResult:
    attendance: StudentSelfAttendance
    violation: StudentViolation | None = None
    referrals: list[CounselingReferral] = field(default_factory=list)


def list_active_locations(db: Session) -> list[AttendanceLocation]:
    stmt = (
        select(AttendanceLocation)
        .where(AttendanceLocation.is_active.is_(True))
        .order_by(AttendanceLocation.id.asc())
    )
    return list(db.scalars(stmt).all())


def resolve_schedule(db: Session, student: Student, day: date) -> AttendanceSchedule | None:
    """A schedule for the student's class wins over one that applies to every class.

    Among equally specific schedules the most recently created one wins.
    """
    class_filter = AttendanceSchedule.applies_to_all_classes.is_(True)
    if student.current_class_id is not None:
        class_filter = or_(class_filter, AttendanceSchedule.class_id == student.current_class_id)

    candidates = db.scalars(
        select(AttendanceSchedule)
        .where(
            AttendanceSchedule.is_active.is_(True),
            AttendanceSchedule.day_of_week == day_of_week(day),
            class_filter,
        )
        .order_by(AttendanceSchedule.created_at.desc(), AttendanceSchedule.id.desc())
    ).all()

    if student.current_class_id is not None:
        for schedule in candidates:
            if schedule.class_id == student.current_class_id and not schedule.applies_to_all_classes:
                return schedule
    for schedule in candidates:
        if schedule.applies_to_all_classes:
            return schedule
    return None


def get_today_attendance(db: Session, student_id: int, today: date) -> StudentSelfAttendance | None:
    return db.scalar(
        select(StudentSelfAttendance).where(
            StudentSelfAttendance.student_id == student_id,
            StudentSelfAttendance.attendance_date == today,
        )
    )


def resolve_student_for_attendance(db: Session, actor: ActingUser, student_id: int) -> Student:
    student = get_student(db, student_id)
    if not actor.has_role(AppRole.SISWA) or student.user_id != actor.id:
        raise AuthorizationError("Students can only record their own attendance.")
    if not student.is_active:
        raise AuthorizationError("Student record is not active.")
    return student


def _write_failed(db: Session, *, student_id: int, action: str) -> PersistenceError:
    # Call from inside an except block so the traceback is logged.
    db.rollback()
    logger.exception("self_attendance_write_failed", extra={"student_id": student_id, "action": action})
    return PersistenceError("Attendance could not be saved. Please try again.")


def _commit_attendance(db: Session, *, student_id: int, action: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        if action == "check_in":
            db.rollback()
            raise DuplicateError("You have already checked in today.") from exc
        raise _write_failed(db, student_id=student_id, action=action) from exc
    except SQLAlchemyError as exc:
        raise _write_failed(db, student_id=student_id, action=action) from exc


def check_in(
    db: Session,
    actor: ActingUser,
    student_id: int,
    *,
    now: datetime,
    schedule: AttendanceSchedule | None,
    position: GeoReading,
) -> CheckInResult:
    student = resolve_student_for_attendance(db, actor, student_id)
    attendance_date = to_local(now).date()
    clock = time_of_day(now)

    record = get_today_attendance(db, student.id, attendance_date)
    if record is not None and record.check_in_time is not None:
        raise DuplicateError("You have already checked in today.")

    if schedule is None:
        raise ScheduleError("No attendance schedule applies to you today.", code="NO_SCHEDULE")
    if not (schedule.check_in_start <= clock <= schedule.check_in_end):
        raise ScheduleError(
            f"Check-in is open from {schedule.check_in_start:%H:%M} to {schedule.check_in_end:%H:%M}."
        )

    location = is_within_location(position.lat, position.lon, list_active_locations(db))
    if location is None:
        raise LocationError("You are not inside any registered attendance location.")

    if record is None:
        record = StudentSelfAttendance(student_id=student.id, attendance_date=attendance_date)
        db.add(record)
    record.check_in_time = clock
    record.check_in_location_id = location.id
    record.check_in_latitude = position.lat
    record.check_in_longitude = position.lon
    record.status = SelfAttendanceStatus.PRESENT

    _commit_attendance(db, student_id=student.id, action="check_in")
    db.refresh(record)

    logger.info(
        "self_checkin_recorded",
        extra={
            "student_id": student.id,
            "attendance_id": record.id,
            "attendance_date": attendance_date,
            "check_in_time": clock,
            "location_id": location.id,
            "accuracy_m": position.accuracy_m,
        },
    )
    return CheckInResult(attendance=record, location=location)


def _departure_violation(
    db: Session,
    *,
    student_id: int,
    attendance_date: date,
    clock: time,
    early_threshold: time,
    late_threshold: time,
    early_points: int,
    late_points: int,
) -> StudentViolation | None:
    if clock < early_threshold:
        type_name, points = EARLY_DEPARTURE_TYPE_NAME, early_points
        description = f"Pulang pada {clock:%H:%M:%S}, sebelum batas {early_threshold:%H:%M:%S}"
    elif clock > late_threshold:
        type_name, points = LATE_DEPARTURE_TYPE_NAME, late_points
        description = f"Pulang pada {clock:%H:%M:%S}, setelah batas {late_threshold:%H:%M:%S}"
    else:
        return None

    violation_type = get_or_create_violation_type(db, type_name, point_deduction=points)
    return build_violation(
        student_id=student_id,
        violation_type=violation_type,
        violation_date=attendance_date,
        point_deduction=points,
        description=description,
        recorded_by=None,
    )


def check_out(
    db: Session,
    actor: ActingUser,
    student_id: int,
    *,
    now: datetime,
    position: GeoReading,
    early_threshold: str | time | None = None,
    late_threshold: str | time | None = None,
) -> CheckOutResult:
    """Record departure outside every zone; leaving outside the window emits a violation."""
    settings = get_settings()
    early = parse_clock(early_threshold or settings.early_checkout_threshold)
    late = parse_clock(late_threshold or settings.late_checkout_threshold)

    student = resolve_student_for_attendance(db, actor, student_id)
    attendance_date = to_local(now).date()
    clock = time_of_day(now)

    record = get_today_attendance(db, student.id, attendance_date)
    if record is None or record.check_in_time is None:
        raise StateError("You have not checked in today.", code="NOT_CHECKED_IN")
    if record.check_out_time is not None:
        raise StateError("You have already checked out today.", code="ALREADY_CHECKED_OUT")

    inside = is_within_location(position.lat, position.lon, list_active_locations(db))
    if inside is not None:
        raise LocationError(
            f"Check-out must be done outside the school area ({inside.name}).",
            code="INSIDE_GEOFENCE",
        )

    record.check_out_time = clock
    record.check_out_latitude = position.lat
    record.check_out_longitude = position.lon

    try:
        violation = _departure_violation(
            db,
            student_id=student.id,
            attendance_date=attendance_date,
            clock=clock,
            early_threshold=early,
            late_threshold=late,
            early_points=settings.early_checkout_points,
            late_points=settings.late_checkout_points,
        )
    except SQLAlchemyError as exc:
        raise _write_failed(db, student_id=student.id, action="check_out") from exc
    if violation is None:
        record.violation_created = False
        record.notes = ON_SCHEDULE_NOTE
    else:
        db.add(violation)
        record.violation_created = True
        record.notes = violation.description

    _commit_attendance(db, student_id=student.id, action="check_out")
    db.refresh(record)

    logger.info(
        "self_checkout_recorded",
        extra={
            "student_id": student.id,
            "attendance_id": record.id,
            "check_out_time": clock,
            "violation_created": record.violation_created,
        },
    )
    if violation is None:
        return CheckOutResult(attendance=record)

    db.refresh(violation)
    logger.info(
        "checkout_violation_emitted",
        extra={
            "student_id": student.id,
            "violation_id": violation.id,
            "violation_type": violation.violation_type.name,
            "point_deduction": violation.point_deduction,
        },
    )
    referrals = run_auto_referrals(db, student.id, evaluator_id=None, today=attendance_date)
    return CheckOutResult(attendance=record, violation=violation, referrals=referrals)
