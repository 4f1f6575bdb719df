from __future__ import annotations

import unittest
from unittest.mock import patch

from app.services.schema_guard import verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(
        self,
        *,
        columns_by_table: dict[str, set[str]],
        enums: list[dict[str, object]],
        unique_keys: dict[str, list[tuple[str, ...]]] | None = None,
    ):
        self._columns_by_table = columns_by_table
        self._enums = enums
        self._unique_keys = FULL_UNIQUE_KEYS if unique_keys is None else unique_keys

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums

    def get_unique_constraints(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"name": f"uq_{table_name}", "column_names": list(item)} for item in self._unique_keys.get(table_name, [])]


FULL_COLUMNS = {
    "student_permits": {"id", "status", "current_approval_stage"},
    "permit_approvals": {"id", "permit_id", "approval_order", "approver_role", "status"},
    "student_self_attendances": {"id", "student_id", "attendance_date", "check_in_time", "violation_created"},
    "attendance_locations": {"id", "location_type", "radius_meters", "polygon_coordinates"},
    "counseling_referrals": {"id", "referral_type", "status"},
    "alembic_version": {"version_num"},
}

FULL_ENUMS = [
    {"name": "app_role", "labels": ["admin", "wali_kelas", "guru_bk", "waka_kesiswaan", "siswa"]},
    {"name": "permit_approval_status", "labels": ["pending", "approved", "rejected", "skipped"]},
    {"name": "referral_status", "labels": ["pending", "accepted", "in_progress", "completed"]},
]

FULL_UNIQUE_KEYS = {
    "student_self_attendances": [("student_id", "attendance_date")],
    "permit_approvals": [("permit_id", "approval_order")],
}


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=FULL_COLUMNS, enums=FULL_ENUMS)
        fake_engine = _FakeEngine("0001_initial")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns = dict(FULL_COLUMNS)
        columns["student_permits"] = {"id", "status"}
        columns["student_self_attendances"] = {"id", "student_id", "attendance_date", "check_in_time"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            enums=[
                {"name": "app_role", "labels": ["admin", "wali_kelas", "siswa"]},
                {"name": "permit_approval_status", "labels": ["pending", "approved", "rejected"]},
            ],
        )
        fake_engine = _FakeEngine("")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:student_permits:current_approval_stage", result.issues)
        self.assertIn("MISSING_COLUMNS:student_self_attendances:violation_created", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:app_role:guru_bk,waka_kesiswaan", result.issues)
        self.assertIn("ENUM_NOT_FOUND:referral_status", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_verify_runtime_schema_reports_missing_unique_keys(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table=FULL_COLUMNS,
            enums=FULL_ENUMS,
            unique_keys={"permit_approvals": [("permit_id", "approval_order")]},
        )

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertEqual(result.issues, ["MISSING_UNIQUE_KEY:student_self_attendances:attendance_date,student_id"])


if __name__ == "__main__":
    unittest.main()
