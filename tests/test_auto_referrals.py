from __future__ import annotations

import json
import os
import tempfile
import unittest
from datetime import date, timedelta
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.errors import AuthorizationError, StateError, ValidationError
from app.models import (
    AppRole,
    CounselingReferral,
    ReferralStatus,
    StudentViolation,
    UrgencyLevel,
    ViolationStatus,
)
from app.schemas import ViolationCreateRequest
from app.services.referrals import (
    DEFAULT_AUTO_REFERRAL_RULES,
    AutoReferralRule,
    accept_referral,
    evaluate_auto_referrals,
    load_auto_referral_rules,
    run_auto_referrals,
    update_referral_status,
)
from app.services.violations import record_violation
from tests.factories import acting, add_student, add_user, add_violation_type, make_session_factory

TODAY = date(2026, 10, 19)


class AutoReferralTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.student, _user = add_student(self.db, "Budi Santoso", "2026001")
        self.counselor_user = add_user(self.db, "Pak BK", AppRole.GURU_BK)
        self.counselor = acting(self.counselor_user, AppRole.GURU_BK)
        self.late_type = add_violation_type(self.db, "Terlambat Masuk Kelas", point_deduction=5)
        self.fight_type = add_violation_type(self.db, "Kekerasan Fisik", point_deduction=50)
        self.uniform_type = add_violation_type(self.db, "Seragam Tidak Lengkap", point_deduction=5)

    def tearDown(self) -> None:
        self.db.close()

    def _add_violation(self, violation_type, days_ago: int, *, status=ViolationStatus.ACTIVE) -> StudentViolation:  # type: ignore[no-untyped-def]
        violation = StudentViolation(
            student_id=self.student.id,
            violation_type_id=violation_type.id,
            violation_date=TODAY - timedelta(days=days_ago),
            point_deduction=violation_type.point_deduction,
            status=status,
        )
        self.db.add(violation)
        self.db.commit()
        return violation

    def _referrals(self) -> list[CounselingReferral]:
        return list(self.db.scalars(select(CounselingReferral).order_by(CounselingReferral.id)).all())

    def test_three_violations_in_30_days_opens_high_referral(self) -> None:
        for days_ago in (1, 10, 29):
            self._add_violation(self.uniform_type, days_ago)

        created = evaluate_auto_referrals(self.db, self.student.id, evaluator_id=self.counselor_user.id, today=TODAY)

        self.assertEqual(len(created), 1)
        referral = created[0]
        self.assertEqual(referral.referral_type, "violation")
        self.assertEqual(referral.urgency_level, UrgencyLevel.HIGH)
        self.assertEqual(referral.status, ReferralStatus.PENDING)
        self.assertEqual(referral.assigned_counselor, self.counselor_user.id)
        self.assertEqual(
            referral.referral_reason,
            "Auto-referral: Multiple Violations (3+ in 30 days) - 3 violations detected",
        )

    def test_violations_outside_window_or_resolved_do_not_count(self) -> None:
        self._add_violation(self.uniform_type, 1)
        self._add_violation(self.uniform_type, 31)
        self._add_violation(self.uniform_type, 2, status=ViolationStatus.RESOLVED)

        self.assertEqual(evaluate_auto_referrals(self.db, self.student.id, today=TODAY), [])

    def test_serious_violation_filter_is_case_insensitive_substring(self) -> None:
        self._add_violation(self.fight_type, 0)

        created = evaluate_auto_referrals(self.db, self.student.id, today=TODAY)

        self.assertEqual(len(created), 1)
        self.assertEqual(created[0].urgency_level, UrgencyLevel.CRITICAL)
        self.assertIn("Serious Violations", created[0].referral_reason)

    def test_system_evaluation_leaves_referral_unassigned(self) -> None:
        self._add_violation(self.fight_type, 0)

        created = evaluate_auto_referrals(self.db, self.student.id, evaluator_id=None, today=TODAY)

        self.assertIsNone(created[0].assigned_counselor)

    def test_late_rule_without_auto_assign(self) -> None:
        rules = [rule for rule in DEFAULT_AUTO_REFERRAL_RULES if "Late" in rule.name]
        for days_ago in range(5):
            self._add_violation(self.late_type, days_ago)

        created = evaluate_auto_referrals(
            self.db,
            self.student.id,
            evaluator_id=self.counselor_user.id,
            today=TODAY,
            rules=rules,
        )

        self.assertEqual(len(created), 1)
        self.assertEqual(created[0].urgency_level, UrgencyLevel.NORMAL)
        self.assertIsNone(created[0].assigned_counselor)

    def test_at_most_one_open_referral_per_student(self) -> None:
        for days_ago in range(5):
            self._add_violation(self.late_type, days_ago)
        self._add_violation(self.fight_type, 0)

        first = evaluate_auto_referrals(self.db, self.student.id, today=TODAY)
        second = evaluate_auto_referrals(self.db, self.student.id, today=TODAY)

        self.assertEqual(len(first), 1)
        self.assertEqual(second, [])
        self.assertEqual(len(self._referrals()), 1)

    def test_completed_referral_allows_a_new_one(self) -> None:
        self._add_violation(self.fight_type, 0)
        first = evaluate_auto_referrals(self.db, self.student.id, today=TODAY)[0]
        first.status = ReferralStatus.COMPLETED
        self.db.commit()

        second = evaluate_auto_referrals(self.db, self.student.id, today=TODAY)

        self.assertEqual(len(second), 1)
        self.assertNotEqual(second[0].id, first.id)

    def test_inactive_rule_is_skipped(self) -> None:
        self._add_violation(self.fight_type, 0)
        rules = [AutoReferralRule(name="Off", violation_threshold=1, time_period_days=7, is_active=False)]

        self.assertEqual(evaluate_auto_referrals(self.db, self.student.id, today=TODAY, rules=rules), [])

    def test_evaluation_failure_is_logged_and_swallowed(self) -> None:
        with patch(
            "app.services.referrals.evaluate_auto_referrals",
            side_effect=OperationalError("SELECT 1", {}, Exception("db down")),
        ):
            with self.assertLogs("app.referrals", level="ERROR") as logs:
                result = run_auto_referrals(self.db, self.student.id, today=TODAY)

        self.assertEqual(result, [])
        self.assertTrue(any("auto_referral_evaluation_failed" in line for line in logs.output))

    def test_rules_file_is_loaded_and_validated(self) -> None:
        rules_payload = [
            {
                "name": "Bolos (2+ in 7 days)",
                "violation_threshold": 2,
                "time_period_days": 7,
                "violation_type_filter": ["bolos"],
                "urgency_level": "urgent",
                "auto_assign": True,
            }
        ]
        handle, path = tempfile.mkstemp(suffix=".json")
        os.close(handle)
        try:
            with open(path, "w", encoding="utf-8") as stream:
                json.dump(rules_payload, stream)
            rules = load_auto_referral_rules(path)
        finally:
            os.remove(path)

        self.assertEqual(len(rules), 1)
        self.assertEqual(rules[0].urgency_level, UrgencyLevel.URGENT)
        self.assertTrue(rules[0].matches_type("Bolos Pelajaran"))
        self.assertFalse(rules[0].matches_type("Terlambat"))
        self.assertEqual(load_auto_referral_rules(None), DEFAULT_AUTO_REFERRAL_RULES)


class ViolationRecordingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.student, self.student_user = add_student(self.db, "Budi Santoso", "2026001")
        self.homeroom_user = add_user(self.db, "Ibu Wali", AppRole.WALI_KELAS)
        self.homeroom = acting(self.homeroom_user, AppRole.WALI_KELAS)
        self.fight_type = add_violation_type(self.db, "Bullying Verbal", point_deduction=30)

    def tearDown(self) -> None:
        self.db.close()

    def test_manual_violation_triggers_referral_assigned_to_recorder(self) -> None:
        payload = ViolationCreateRequest(student_id=self.student.id, violation_type_id=self.fight_type.id)

        violation, referrals = record_violation(self.db, self.homeroom, payload, today=TODAY)

        self.assertEqual(violation.point_deduction, 30)
        self.assertEqual(violation.violation_date, TODAY)
        self.assertEqual(violation.recorded_by, self.homeroom_user.id)
        self.assertEqual(len(referrals), 1)
        self.assertEqual(referrals[0].assigned_counselor, self.homeroom_user.id)

    def test_student_cannot_record_violations(self) -> None:
        payload = ViolationCreateRequest(student_id=self.student.id, violation_type_id=self.fight_type.id)
        with self.assertRaises(AuthorizationError):
            record_violation(self.db, acting(self.student_user, AppRole.SISWA), payload, today=TODAY)

    def test_unknown_violation_type_is_rejected(self) -> None:
        payload = ViolationCreateRequest(student_id=self.student.id, violation_type_id=999)
        with self.assertRaises(ValidationError):
            record_violation(self.db, self.homeroom, payload, today=TODAY)


class ReferralHandlingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.student, _user = add_student(self.db, "Budi Santoso", "2026001")
        self.counselor_user = add_user(self.db, "Pak BK", AppRole.GURU_BK)
        self.counselor = acting(self.counselor_user, AppRole.GURU_BK)
        self.referral = CounselingReferral(
            student_id=self.student.id,
            referral_type="violation",
            urgency_level=UrgencyLevel.HIGH,
            referral_reason="Auto-referral: test - 3 violations detected",
            status=ReferralStatus.PENDING,
        )
        self.db.add(self.referral)
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_accept_then_progress_to_completed(self) -> None:
        referral = accept_referral(self.db, self.counselor, self.referral.id)
        self.assertEqual(referral.status, ReferralStatus.ACCEPTED)
        self.assertEqual(referral.assigned_counselor, self.counselor_user.id)
        self.assertIsNotNone(referral.accepted_at)

        referral = update_referral_status(self.db, self.counselor, referral.id, ReferralStatus.IN_PROGRESS)
        self.assertEqual(referral.status, ReferralStatus.IN_PROGRESS)
        referral = update_referral_status(self.db, self.counselor, referral.id, ReferralStatus.COMPLETED)
        self.assertEqual(referral.status, ReferralStatus.COMPLETED)

    def test_pending_referral_cannot_jump_to_completed(self) -> None:
        with self.assertRaises(StateError):
            update_referral_status(self.db, self.counselor, self.referral.id, ReferralStatus.COMPLETED)

    def test_accepting_twice_is_a_state_error(self) -> None:
        accept_referral(self.db, self.counselor, self.referral.id)
        with self.assertRaises(StateError):
            accept_referral(self.db, self.counselor, self.referral.id)

    def test_only_counselors_handle_referrals(self) -> None:
        homeroom_user = add_user(self.db, "Ibu Wali", AppRole.WALI_KELAS)
        with self.assertRaises(AuthorizationError):
            accept_referral(self.db, acting(homeroom_user, AppRole.WALI_KELAS), self.referral.id)


if __name__ == "__main__":
    unittest.main()
