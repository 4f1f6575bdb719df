from __future__ import annotations

import unittest
from datetime import date, datetime, time
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.errors import (
    AuthorizationError,
    DuplicateError,
    LocationError,
    PersistenceError,
    ScheduleError,
    StateError,
)
from app.models import AppRole, SelfAttendanceStatus, StudentViolation
from app.services.geolocation import GeoReading
from app.services.self_attendance import (
    ON_SCHEDULE_NOTE,
    check_in,
    check_out,
    get_today_attendance,
    resolve_schedule,
)
from tests.factories import (
    SCHOOL_LAT,
    SCHOOL_LNG,
    acting,
    add_class,
    add_radius_location,
    add_schedule,
    add_student,
    add_user,
    make_session_factory,
    offset_north,
)

JAKARTA = ZoneInfo("Asia/Jakarta")
SCHOOL_DAY = date(2026, 10, 19)
MONDAY = 1


def _at(hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(2026, 10, 19, hour, minute, second, tzinfo=JAKARTA)


def _reading(meters_north: float) -> GeoReading:
    return GeoReading(lat=offset_north(SCHOOL_LAT, meters_north), lon=SCHOOL_LNG, accuracy_m=8.0)


class SelfAttendanceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.school_class = add_class(self.db, "X IPA 1")
        self.student, self.user = add_student(self.db, "Budi Santoso", "2026001", class_id=self.school_class.id)
        self.actor = acting(self.user, AppRole.SISWA)
        self.location = add_radius_location(self.db, radius_meters=100.0)
        self.schedule = add_schedule(self.db, day_of_week=MONDAY)

    def tearDown(self) -> None:
        self.db.close()

    def _check_in(self, now: datetime | None = None, meters_north: float = 50.0):  # type: ignore[no-untyped-def]
        return check_in(
            self.db,
            self.actor,
            self.student.id,
            now=now or _at(7, 0),
            schedule=self.schedule,
            position=_reading(meters_north),
        )

    def _check_out(self, now: datetime, meters_north: float = 500.0):  # type: ignore[no-untyped-def]
        return check_out(self.db, self.actor, self.student.id, now=now, position=_reading(meters_north))

    def test_check_in_from_150_m_is_outside_the_zone(self) -> None:
        with self.assertRaises(LocationError):
            self._check_in(meters_north=150.0)
        self.assertIsNone(get_today_attendance(self.db, self.student.id, SCHOOL_DAY))

    def test_check_in_from_50_m_records_location(self) -> None:
        result = self._check_in(meters_north=50.0)

        self.assertEqual(result.location.id, self.location.id)
        self.assertEqual(result.attendance.check_in_location_id, self.location.id)
        self.assertEqual(result.attendance.check_in_time, time(7, 0))
        self.assertEqual(result.attendance.attendance_date, SCHOOL_DAY)
        self.assertEqual(result.attendance.status, SelfAttendanceStatus.PRESENT)

    def test_check_in_time_is_truncated_to_seconds(self) -> None:
        result = self._check_in(now=datetime(2026, 10, 19, 7, 1, 2, 987654, tzinfo=JAKARTA))
        self.assertEqual(result.attendance.check_in_time, time(7, 1, 2))

    def test_second_check_in_is_a_duplicate(self) -> None:
        self._check_in()
        with self.assertRaises(DuplicateError) as ctx:
            self._check_in(now=_at(7, 5))
        self.assertIsInstance(ctx.exception, StateError)
        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_IN")

    def test_duplicate_is_reported_before_schedule_window(self) -> None:
        self._check_in()
        with self.assertRaises(DuplicateError):
            self._check_in(now=_at(9, 0))

    def test_check_in_outside_window_raises_schedule_error(self) -> None:
        with self.assertRaises(ScheduleError):
            self._check_in(now=_at(8, 0))

    def test_check_in_without_schedule_raises_schedule_error(self) -> None:
        with self.assertRaises(ScheduleError) as ctx:
            check_in(self.db, self.actor, self.student.id, now=_at(7, 0), schedule=None, position=_reading(10))
        self.assertEqual(ctx.exception.code, "NO_SCHEDULE")

    def test_inactive_location_does_not_count(self) -> None:
        self.location.is_active = False
        self.db.commit()
        with self.assertRaises(LocationError):
            self._check_in(meters_north=10.0)

    def test_student_cannot_check_in_for_someone_else(self) -> None:
        other_user = add_user(self.db, "Siti", AppRole.SISWA)
        with self.assertRaises(AuthorizationError):
            check_in(
                self.db,
                acting(other_user, AppRole.SISWA),
                self.student.id,
                now=_at(7, 0),
                schedule=self.schedule,
                position=_reading(10),
            )

    def test_check_out_on_schedule_creates_no_violation(self) -> None:
        self._check_in()
        result = self._check_out(_at(15, 15, 0))

        self.assertIsNone(result.violation)
        self.assertFalse(result.attendance.violation_created)
        self.assertEqual(result.attendance.notes, ON_SCHEDULE_NOTE)
        self.assertEqual(result.attendance.check_out_time, time(15, 15))
        self.assertEqual(self.db.scalars(select(StudentViolation)).all(), [])

    def test_check_out_one_second_early_deducts_15_points(self) -> None:
        self._check_in()
        result = self._check_out(_at(15, 14, 59))

        self.assertIsNotNone(result.violation)
        self.assertEqual(result.violation.point_deduction, 15)
        self.assertEqual(result.violation.violation_type.name, "Pulang Terlalu Awal")
        self.assertIn("15:14:59", result.violation.description)
        self.assertEqual(result.violation.violation_date, SCHOOL_DAY)
        self.assertTrue(result.attendance.violation_created)

    def test_check_out_one_second_late_deducts_10_points(self) -> None:
        self._check_in()
        result = self._check_out(_at(17, 15, 1))

        self.assertIsNotNone(result.violation)
        self.assertEqual(result.violation.point_deduction, 10)
        self.assertEqual(result.violation.violation_type.name, "Pulang Terlalu Malam")
        self.assertTrue(result.attendance.violation_created)

    def test_first_early_check_out_logs_new_violation_type_at_info(self) -> None:
        self._check_in()
        with self.assertLogs("app.violations", level="INFO") as captured:
            result = self._check_out(_at(15, 14, 59))

        self.assertEqual(result.violation.point_deduction, 15)
        self.assertTrue(any("violation_type_created" in line for line in captured.output))
        self.assertEqual(captured.records[0].violation_type_name, "Pulang Terlalu Awal")

    def test_store_failure_while_recording_departure_violation_rolls_back(self) -> None:
        self._check_in()
        failure = OperationalError("INSERT INTO violation_types", {}, Exception("database is locked"))

        with patch.object(self.db, "flush", side_effect=failure):
            with self.assertLogs("app.attendance", level="ERROR") as captured:
                with self.assertRaises(PersistenceError):
                    self._check_out(_at(15, 0))

        self.assertTrue(any("self_attendance_write_failed" in line for line in captured.output))
        record = get_today_attendance(self.db, self.student.id, SCHOOL_DAY)
        self.assertIsNone(record.check_out_time)
        self.assertFalse(record.violation_created)
        self.assertEqual(self.db.scalars(select(StudentViolation)).all(), [])

    def test_check_out_at_late_threshold_is_on_schedule(self) -> None:
        self._check_in()
        result = self._check_out(_at(17, 15, 0))
        self.assertIsNone(result.violation)

    def test_check_out_inside_zone_is_rejected(self) -> None:
        self._check_in()
        with self.assertRaises(LocationError) as ctx:
            self._check_out(_at(15, 30), meters_north=20.0)
        self.assertEqual(ctx.exception.code, "INSIDE_GEOFENCE")

        record = get_today_attendance(self.db, self.student.id, SCHOOL_DAY)
        self.assertIsNone(record.check_out_time)

    def test_check_out_without_check_in_raises_state_error(self) -> None:
        with self.assertRaises(StateError) as ctx:
            self._check_out(_at(15, 30))
        self.assertEqual(ctx.exception.code, "NOT_CHECKED_IN")

    def test_second_check_out_raises_state_error(self) -> None:
        self._check_in()
        self._check_out(_at(15, 30))
        with self.assertRaises(StateError) as ctx:
            self._check_out(_at(15, 45))
        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_OUT")

    def test_check_out_thresholds_can_be_overridden(self) -> None:
        self._check_in()
        result = check_out(
            self.db,
            self.actor,
            self.student.id,
            now=_at(14, 0),
            position=_reading(500.0),
            early_threshold="13:00:00",
            late_threshold=time(18, 0),
        )
        self.assertIsNone(result.violation)

    def test_class_schedule_wins_over_all_classes_schedule(self) -> None:
        class_schedule = add_schedule(
            self.db,
            day_of_week=MONDAY,
            class_id=self.school_class.id,
            check_in_start=time(6, 30),
            check_in_end=time(7, 0),
            name="Jadwal X IPA 1",
        )
        self.assertEqual(resolve_schedule(self.db, self.student, SCHOOL_DAY).id, class_schedule.id)

    def test_newest_of_equal_schedules_wins(self) -> None:
        newer = add_schedule(self.db, day_of_week=MONDAY, check_in_start=time(6, 15), name="Jadwal Semester Baru")

        resolved = resolve_schedule(self.db, self.student, SCHOOL_DAY)

        self.assertEqual(resolved.id, newer.id)
        self.assertEqual(resolved.check_in_start, time(6, 15))

    def test_resolve_schedule_falls_back_to_all_classes(self) -> None:
        self.assertEqual(resolve_schedule(self.db, self.student, SCHOOL_DAY).id, self.schedule.id)
        self.assertIsNone(resolve_schedule(self.db, self.student, date(2026, 10, 18)))


if __name__ == "__main__":
    unittest.main()
