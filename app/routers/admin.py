from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import NotFoundError, ValidationError
from app.models import AppRole, AttendanceLocation, AttendanceSchedule, LocationType, SchoolClass
from app.routers.common import audit_request
from app.schemas import (
    AttendanceLocationCreate,
    AttendanceLocationRead,
    AttendanceLocationUpdate,
    AttendanceScheduleCreate,
    AttendanceScheduleRead,
)
from app.security import require_roles
from app.services.directory import ActingUser
from app.services.location import validate_location_shape

router = APIRouter(tags=["admin"])
require_admin = require_roles(AppRole.ADMIN)


def _polygon_payload(points) -> list[dict[str, float]] | None:
    if points is None:
        return None
    return [{"lat": point.lat, "lng": point.lng} for point in points]


def _resolve_center(
    *,
    location_type: LocationType,
    latitude: float | None,
    longitude: float | None,
    polygon: list[tuple[float, float]],
) -> tuple[float, float]:
    if latitude is not None and longitude is not None:
        return latitude, longitude
    if location_type == LocationType.POLYGON and polygon:
        return (
            sum(lat for lat, _ in polygon) / len(polygon),
            sum(lng for _, lng in polygon) / len(polygon),
        )
    raise ValidationError("latitude and longitude are required for a radius location.")


def _resolve_location(db: Session, location_id: int) -> AttendanceLocation:
    location = db.get(AttendanceLocation, location_id)
    if location is None:
        raise NotFoundError("Attendance location not found.", code="LOCATION_NOT_FOUND")
    return location


@router.get("/api/admin/attendance-locations", response_model=list[AttendanceLocationRead])
def list_attendance_locations(
    include_inactive: bool = Query(default=True),
    _actor: ActingUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[AttendanceLocation]:
    stmt = select(AttendanceLocation).order_by(AttendanceLocation.id.asc())
    if not include_inactive:
        stmt = stmt.where(AttendanceLocation.is_active.is_(True))
    return list(db.scalars(stmt).all())


@router.post(
    "/api/admin/attendance-locations",
    response_model=AttendanceLocationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_attendance_location(
    payload: AttendanceLocationCreate,
    request: Request,
    actor: ActingUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> AttendanceLocation:
    polygon_coordinates = _polygon_payload(payload.polygon_coordinates)
    polygon = validate_location_shape(
        location_type=payload.location_type,
        radius_meters=payload.radius_meters,
        polygon_coordinates=polygon_coordinates,
    )
    latitude, longitude = _resolve_center(
        location_type=payload.location_type,
        latitude=payload.latitude,
        longitude=payload.longitude,
        polygon=polygon,
    )

    location = AttendanceLocation(
        name=payload.name.strip(),
        location_type=payload.location_type,
        latitude=latitude,
        longitude=longitude,
        radius_meters=payload.radius_meters if payload.location_type == LocationType.RADIUS else None,
        polygon_coordinates=polygon_coordinates if payload.location_type == LocationType.POLYGON else None,
        is_active=payload.is_active,
    )
    db.add(location)
    db.commit()
    db.refresh(location)
    audit_request(
        db,
        request,
        actor,
        action="ATTENDANCE_LOCATION_CREATED",
        entity_type="attendance_location",
        entity_id=location.id,
        details={"name": location.name, "location_type": location.location_type.value},
    )
    return location


@router.patch("/api/admin/attendance-locations/{location_id}", response_model=AttendanceLocationRead)
def update_attendance_location(
    location_id: int,
    payload: AttendanceLocationUpdate,
    request: Request,
    actor: ActingUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> AttendanceLocation:
    location = _resolve_location(db, location_id)
    changes = payload.model_dump(exclude_unset=True)

    radius_meters = changes.get("radius_meters", location.radius_meters)
    if "polygon_coordinates" in changes:
        polygon_coordinates = _polygon_payload(payload.polygon_coordinates)
    else:
        polygon_coordinates = location.polygon_coordinates
    validate_location_shape(
        location_type=location.location_type,
        radius_meters=radius_meters,
        polygon_coordinates=polygon_coordinates,
    )

    if "name" in changes and payload.name is not None:
        location.name = payload.name.strip()
    if payload.latitude is not None:
        location.latitude = payload.latitude
    if payload.longitude is not None:
        location.longitude = payload.longitude
    if location.location_type == LocationType.RADIUS:
        location.radius_meters = radius_meters
    else:
        location.polygon_coordinates = polygon_coordinates
    if payload.is_active is not None:
        location.is_active = payload.is_active

    db.commit()
    db.refresh(location)
    audit_request(
        db,
        request,
        actor,
        action="ATTENDANCE_LOCATION_UPDATED",
        entity_type="attendance_location",
        entity_id=location.id,
        details={"changed_fields": sorted(changes), "is_active": location.is_active},
    )
    return location


@router.get("/api/admin/attendance-schedules", response_model=list[AttendanceScheduleRead])
def list_attendance_schedules(
    day_of_week: int | None = Query(default=None, ge=0, le=6),
    _actor: ActingUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[AttendanceSchedule]:
    stmt = select(AttendanceSchedule).order_by(AttendanceSchedule.day_of_week.asc(), AttendanceSchedule.id.asc())
    if day_of_week is not None:
        stmt = stmt.where(AttendanceSchedule.day_of_week == day_of_week)
    return list(db.scalars(stmt).all())


@router.post(
    "/api/admin/attendance-schedules",
    response_model=AttendanceScheduleRead,
    status_code=status.HTTP_201_CREATED,
)
def create_attendance_schedule(
    payload: AttendanceScheduleCreate,
    request: Request,
    actor: ActingUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> AttendanceSchedule:
    if payload.class_id is not None and db.get(SchoolClass, payload.class_id) is None:
        raise NotFoundError("Class not found.", code="CLASS_NOT_FOUND")

    schedule = AttendanceSchedule(
        name=payload.name.strip(),
        class_id=payload.class_id,
        applies_to_all_classes=payload.applies_to_all_classes and payload.class_id is None,
        day_of_week=payload.day_of_week,
        check_in_start=payload.check_in_start,
        check_in_end=payload.check_in_end,
        check_out_start=payload.check_out_start,
        check_out_end=payload.check_out_end,
        late_threshold_minutes=payload.late_threshold_minutes,
        is_active=payload.is_active,
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    audit_request(
        db,
        request,
        actor,
        action="ATTENDANCE_SCHEDULE_CREATED",
        entity_type="attendance_schedule",
        entity_id=schedule.id,
        details={"day_of_week": schedule.day_of_week, "class_id": schedule.class_id},
    )
    return schedule
