from __future__ import annotations

import unittest

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import AppRole, Notification, UserRole
from app.services.notifications import (
    NotificationChannel,
    NotificationMessage,
    dispatch_notifications,
    list_notifications_for_user,
    mark_notification_read,
    messages_for_role,
)
from tests.factories import add_user, make_session_factory


class _FailingChannel(NotificationChannel):
    def send(self, db: Session, message: NotificationMessage) -> None:
        raise OperationalError("INSERT INTO notifications", {}, Exception("database is locked"))


class NotificationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.counselor = add_user(self.db, "Pak Konselor", AppRole.GURU_BK)
        self.second_counselor = add_user(self.db, "Bu Konselor", AppRole.GURU_BK)
        self.teacher = add_user(self.db, "Ibu Wali", AppRole.WALI_KELAS)

    def tearDown(self) -> None:
        self.db.close()

    def test_messages_for_role_targets_active_role_holders(self) -> None:
        role = self.db.scalar(select(UserRole).where(UserRole.user_id == self.second_counselor.id))
        role.is_active = False
        self.db.commit()

        messages = messages_for_role(
            self.db,
            AppRole.GURU_BK,
            title="Rujukan baru",
            message="Ada rujukan konseling baru.",
            type="referral_created",
            data={"referral_id": 7},
        )

        self.assertEqual([item.user_id for item in messages], [self.counselor.id])
        self.assertEqual(messages[0].data, {"referral_id": 7})

    def test_dispatch_persists_in_app_notifications(self) -> None:
        sent = dispatch_notifications(
            self.db,
            [
                NotificationMessage(user_id=self.teacher.id, title="A", message="satu", type="permit_approval_required"),
                NotificationMessage(user_id=self.counselor.id, title="B", message="dua", type="permit_approval_required"),
            ],
        )

        self.assertEqual(sent, 2)
        rows = list_notifications_for_user(self.db, self.teacher.id)
        self.assertEqual(len(rows), 1)
        self.assertFalse(rows[0].is_read)
        self.assertEqual(rows[0].type, "permit_approval_required")

    def test_dispatch_failure_is_logged_not_raised(self) -> None:
        with self.assertLogs("app.notifications", level="ERROR") as captured:
            sent = dispatch_notifications(
                self.db,
                [NotificationMessage(user_id=self.teacher.id, title="A", message="satu", type="permit_rejected")],
                channel=_FailingChannel(),
            )

        self.assertEqual(sent, 0)
        self.assertTrue(any("notification_dispatch_failed" in line for line in captured.output))
        self.assertEqual(self.db.scalars(select(Notification)).all(), [])

    def test_dispatch_nothing_is_noop(self) -> None:
        self.assertEqual(dispatch_notifications(self.db, []), 0)

    def test_mark_read_only_for_owner(self) -> None:
        dispatch_notifications(
            self.db,
            [NotificationMessage(user_id=self.teacher.id, title="A", message="satu", type="permit_approved")],
        )
        notification = list_notifications_for_user(self.db, self.teacher.id)[0]

        with self.assertRaises(NotFoundError):
            mark_notification_read(self.db, user_id=self.counselor.id, notification_id=notification.id)

        updated = mark_notification_read(self.db, user_id=self.teacher.id, notification_id=notification.id)
        self.assertTrue(updated.is_read)


if __name__ == "__main__":
    unittest.main()
