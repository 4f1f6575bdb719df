from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models import (
    AppRole,
    LocationType,
    PermitType,
    UrgencyLevel,
)


class StatusDisplayRead(BaseModel):
    value: str
    label: str
    tone: str

    model_config = ConfigDict(from_attributes=True)


class PermitCreateRequest(BaseModel):
    student_id: int | None = Field(default=None, ge=1)
    permit_type: PermitType
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    reason: str = Field(max_length=2000)
    start_date: date
    end_date: date
    start_time: time | None = None
    end_time: time | None = None
    is_after_hours: bool = False
    activity_location: str | None = Field(default=None, max_length=500)
    emergency_contact: str | None = Field(default=None, max_length=255)
    parent_contact: str | None = Field(default=None, max_length=255)
    parent_approval: bool = False
    supporting_document_url: str | None = Field(default=None, max_length=1000)


class PermitDecisionRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    approval_order: int | None = Field(default=None, ge=1)
    notes: str | None = Field(default=None, max_length=2000)


class PermitApprovalRead(BaseModel):
    id: int
    approval_order: int
    approver_role: AppRole
    approver_role_label: str
    status: StatusDisplayRead
    approver_id: int | None = None
    approved_at: datetime | None = None
    notes: str | None = None


class PermitRead(BaseModel):
    id: int
    student_id: int
    student_name: str | None = None
    permit_type: PermitType
    permit_type_label: str
    permit_category: str
    urgency: StatusDisplayRead
    reason: str
    start_date: date
    end_date: date
    start_time: time | None = None
    end_time: time | None = None
    activity_location: str | None = None
    emergency_contact: str | None = None
    parent_contact: str | None = None
    parent_approval: bool
    status: StatusDisplayRead
    current_approval_stage: int
    submitted_at: datetime
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    approvals: list[PermitApprovalRead] = Field(default_factory=list)


class PendingApprovalRead(BaseModel):
    approval_id: int
    approval_order: int
    approver_role: AppRole
    permit: PermitRead


class AttendanceActionRequest(BaseModel):
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)


class SelfAttendanceRead(BaseModel):
    id: int
    student_id: int
    attendance_date: date
    check_in_time: time | None = None
    check_in_location_id: int | None = None
    check_out_time: time | None = None
    status: StatusDisplayRead
    violation_created: bool
    notes: str | None = None


class CheckInResponse(BaseModel):
    attendance: SelfAttendanceRead
    location_id: int
    location_name: str


class CheckOutResponse(BaseModel):
    attendance: SelfAttendanceRead
    violation_id: int | None = None
    point_deduction: int | None = None
    message: str


class TodayAttendanceResponse(BaseModel):
    attendance_date: date
    attendance: SelfAttendanceRead | None = None


class PolygonPoint(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class AttendanceLocationCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    location_type: LocationType = LocationType.RADIUS
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    radius_meters: float | None = None
    polygon_coordinates: list[PolygonPoint] | None = None
    is_active: bool = True


class AttendanceLocationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    radius_meters: float | None = None
    polygon_coordinates: list[PolygonPoint] | None = None
    is_active: bool | None = None


class AttendanceLocationRead(BaseModel):
    id: int
    name: str
    location_type: LocationType
    latitude: float
    longitude: float
    radius_meters: float | None = None
    polygon_coordinates: list[dict[str, float]] | None = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class AttendanceScheduleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    class_id: int | None = Field(default=None, ge=1)
    applies_to_all_classes: bool = True
    day_of_week: int = Field(ge=0, le=6)
    check_in_start: time
    check_in_end: time
    check_out_start: time
    check_out_end: time
    late_threshold_minutes: int = Field(default=15, ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def validate_windows(self) -> "AttendanceScheduleCreate":
        if self.check_in_end < self.check_in_start:
            raise ValueError("check_in_end must be greater than or equal to check_in_start")
        if self.check_out_end < self.check_out_start:
            raise ValueError("check_out_end must be greater than or equal to check_out_start")
        if self.class_id is None and not self.applies_to_all_classes:
            raise ValueError("class_id is required when applies_to_all_classes is false")
        return self


class AttendanceScheduleRead(BaseModel):
    id: int
    name: str
    class_id: int | None = None
    applies_to_all_classes: bool
    day_of_week: int
    check_in_start: time
    check_in_end: time
    check_out_start: time
    check_out_end: time
    late_threshold_minutes: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ViolationCreateRequest(BaseModel):
    student_id: int = Field(ge=1)
    violation_type_id: int = Field(ge=1)
    violation_date: date | None = None
    description: str | None = Field(default=None, max_length=2000)
    point_deduction: int | None = Field(default=None, ge=1)


class ViolationRead(BaseModel):
    id: int
    student_id: int
    violation_type_id: int
    violation_date: date
    description: str | None = None
    point_deduction: int
    status: StatusDisplayRead
    referral_ids: list[int] = Field(default_factory=list)


class ReferralRead(BaseModel):
    id: int
    student_id: int
    referral_type: str
    urgency: StatusDisplayRead
    referral_reason: str
    referred_by: int | None = None
    assigned_counselor: int | None = None
    status: StatusDisplayRead
    accepted_at: datetime | None = None
    created_at: datetime


class ReferralStatusUpdateRequest(BaseModel):
    status: Literal["in_progress", "completed"]


class NotificationRead(BaseModel):
    id: int
    title: str
    message: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
