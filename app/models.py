from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [str(member.value) for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppRole(str, enum.Enum):
    ADMIN = "admin"
    KEPALA_SEKOLAH = "kepala_sekolah"
    WALI_KELAS = "wali_kelas"
    GURU_BK = "guru_bk"
    WAKA_KESISWAAN = "waka_kesiswaan"
    TPPK = "tppk"
    SISWA = "siswa"
    ORANG_TUA = "orang_tua"


class PermitType(str, enum.Enum):
    SAKIT = "sakit"
    IZIN_KELUARGA = "izin_keluarga"
    DISPENSASI_AKADEMIK = "dispensasi_akademik"
    KEGIATAN_EKSTERNAL = "kegiatan_eksternal"
    IZIN_PULANG_AWAL = "izin_pulang_awal"
    KEGIATAN_SETELAH_JAM_SEKOLAH = "kegiatan_setelah_jam_sekolah"
    KEPERLUAN_ADMINISTRASI = "keperluan_administrasi"
    LAINNYA = "lainnya"


class UrgencyLevel(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    CRITICAL = "critical"


class PermitStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalStepStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class LocationType(str, enum.Enum):
    RADIUS = "radius"
    POLYGON = "polygon"


class SelfAttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


class ViolationStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    roles: Mapped[list[UserRole]] = relationship(back_populates="user", cascade="all, delete-orphan")


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role: Mapped[AppRole] = mapped_column(
        Enum(AppRole, name="app_role", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    user: Mapped[User] = relationship(back_populates="roles")


class SchoolClass(Base):
    __tablename__ = "classes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    homeroom_teacher_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    students: Mapped[list[Student]] = relationship(back_populates="current_class")


class Student(Base):
    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    nis: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_class_id: Mapped[int | None] = mapped_column(
        ForeignKey("classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    current_class: Mapped[SchoolClass | None] = relationship(back_populates="students")


class StudentPermit(Base):
    __tablename__ = "student_permits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    permit_type: Mapped[PermitType] = mapped_column(
        Enum(PermitType, name="permit_type", values_callable=_enum_values),
        nullable=False,
    )
    permit_category: Mapped[str] = mapped_column(String(50), nullable=False)
    urgency_level: Mapped[UrgencyLevel] = mapped_column(
        Enum(UrgencyLevel, name="urgency_level", values_callable=_enum_values),
        nullable=False,
        default=UrgencyLevel.NORMAL,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    activity_location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    emergency_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    supporting_document_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[PermitStatus] = mapped_column(
        Enum(PermitStatus, name="permit_status", values_callable=_enum_values),
        nullable=False,
        default=PermitStatus.PENDING,
        index=True,
    )
    current_approval_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    submitted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    student: Mapped[Student] = relationship()
    approvals: Mapped[list[PermitApproval]] = relationship(
        back_populates="permit",
        cascade="all, delete-orphan",
        order_by="PermitApproval.approval_order",
    )


class PermitApproval(Base):
    __tablename__ = "permit_approvals"
    __table_args__ = (UniqueConstraint("permit_id", "approval_order", name="uq_permit_approvals_permit_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    permit_id: Mapped[int] = mapped_column(
        ForeignKey("student_permits.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_role: Mapped[AppRole] = mapped_column(
        Enum(AppRole, name="app_role", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    approval_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ApprovalStepStatus] = mapped_column(
        Enum(ApprovalStepStatus, name="permit_approval_status", values_callable=_enum_values),
        nullable=False,
        default=ApprovalStepStatus.PENDING,
        index=True,
    )
    approver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    permit: Mapped[StudentPermit] = relationship(back_populates="approvals")


class AttendanceLocation(Base):
    __tablename__ = "attendance_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_type: Mapped[LocationType] = mapped_column(
        Enum(LocationType, name="location_type", values_callable=_enum_values),
        nullable=False,
        default=LocationType.RADIUS,
    )
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    polygon_coordinates: Mapped[list[dict[str, float]] | None] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class AttendanceSchedule(Base):
    __tablename__ = "attendance_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    class_id: Mapped[int | None] = mapped_column(ForeignKey("classes.id", ondelete="CASCADE"), nullable=True)
    applies_to_all_classes: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    check_in_start: Mapped[time] = mapped_column(Time, nullable=False)
    check_in_end: Mapped[time] = mapped_column(Time, nullable=False)
    check_out_start: Mapped[time] = mapped_column(Time, nullable=False)
    check_out_end: Mapped[time] = mapped_column(Time, nullable=False)
    late_threshold_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15, server_default=text("15"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class StudentSelfAttendance(Base):
    __tablename__ = "student_self_attendances"
    __table_args__ = (
        UniqueConstraint("student_id", "attendance_date", name="uq_self_attendance_student_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check_in_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    check_in_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("attendance_locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    check_in_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    check_out_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[SelfAttendanceStatus] = mapped_column(
        Enum(SelfAttendanceStatus, name="self_attendance_status", values_callable=_enum_values),
        nullable=False,
        default=SelfAttendanceStatus.PRESENT,
    )
    violation_created: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class ViolationType(Base):
    __tablename__ = "violation_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    point_deduction: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class StudentViolation(Base):
    __tablename__ = "student_violations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    violation_type_id: Mapped[int] = mapped_column(
        ForeignKey("violation_types.id", ondelete="RESTRICT"),
        nullable=False,
    )
    violation_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    point_deduction: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ViolationStatus] = mapped_column(
        Enum(ViolationStatus, name="violation_status", values_callable=_enum_values),
        nullable=False,
        default=ViolationStatus.ACTIVE,
    )
    recorded_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    violation_type: Mapped[ViolationType] = relationship()


class CounselingReferral(Base):
    __tablename__ = "counseling_referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    referral_type: Mapped[str] = mapped_column(String(50), nullable=False)
    urgency_level: Mapped[UrgencyLevel] = mapped_column(
        Enum(UrgencyLevel, name="urgency_level", values_callable=_enum_values),
        nullable=False,
        default=UrgencyLevel.NORMAL,
    )
    referral_reason: Mapped[str] = mapped_column(Text, nullable=False)
    referred_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_counselor: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[ReferralStatus] = mapped_column(
        Enum(ReferralStatus, name="referral_status", values_callable=_enum_values),
        nullable=False,
        default=ReferralStatus.PENDING,
        index=True,
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
