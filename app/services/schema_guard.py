from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine, Inspector
from sqlalchemy.exc import SQLAlchemyError


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "student_permits": {"id", "status", "current_approval_stage"},
    "permit_approvals": {"id", "permit_id", "approval_order", "approver_role", "status"},
    "student_self_attendances": {"id", "student_id", "attendance_date", "check_in_time", "violation_created"},
    "attendance_locations": {"id", "location_type", "radius_meters", "polygon_coordinates"},
    "counseling_referrals": {"id", "referral_type", "status"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "app_role": {"wali_kelas", "guru_bk", "waka_kesiswaan", "siswa"},
    "permit_approval_status": {"pending", "approved", "rejected"},
    "referral_status": {"pending", "accepted", "in_progress", "completed"},
}

# One check-in per student per day and one step per approval order depend on these.
REQUIRED_UNIQUE_KEYS: dict[str, set[str]] = {
    "student_self_attendances": {"student_id", "attendance_date"},
    "permit_approvals": {"permit_id", "approval_order"},
}


def _check_columns(inspector: Inspector, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")


def _check_enums(inspector: Inspector, issues: list[str], warnings: list[str]) -> None:
    get_enums = getattr(inspector, "get_enums", None)
    if get_enums is None:
        warnings.append("ENUM_INSPECTION_UNSUPPORTED")
        return
    try:
        enums = get_enums() or []
    except SQLAlchemyError as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        return

    labels_by_name = {
        str(item.get("name")): {str(label) for label in item.get("labels") or []}
        for item in enums
        if item.get("name")
    }
    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in labels_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in labels_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")


def _check_unique_keys(inspector: Inspector, issues: list[str]) -> None:
    for table_name, required_key in REQUIRED_UNIQUE_KEYS.items():
        try:
            constraints = inspector.get_unique_constraints(table_name)
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        if not any(set(item.get("column_names") or []) == required_key for item in constraints):
            issues.append(f"MISSING_UNIQUE_KEY:{table_name}:{','.join(sorted(required_key))}")


def _check_alembic_version(engine: Engine, issues: list[str]) -> None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return

    if not (str(row).strip() if row is not None else ""):
        issues.append("ALEMBIC_VERSION_EMPTY")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Compare the live database with what the workflows need; never raises."""
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_enums(inspector, issues, warnings)
    _check_unique_keys(inspector, issues)
    _check_alembic_version(engine, issues)

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
