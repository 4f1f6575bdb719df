from __future__ import annotations

import unittest

from app.models import ApprovalStepStatus, AppRole, PermitStatus, ReferralStatus, UrgencyLevel
from app.services.status_labels import display_for, label_for


class StatusLabelTests(unittest.TestCase):
    def test_permit_status_display(self) -> None:
        display = display_for(PermitStatus.REJECTED)

        self.assertEqual(display.value, "rejected")
        self.assertEqual(display.label, "Ditolak")
        self.assertEqual(display.tone, "danger")

    def test_shared_values_resolve_per_enum(self) -> None:
        self.assertEqual(label_for(PermitStatus.PENDING), "Menunggu")
        self.assertEqual(label_for(ApprovalStepStatus.SKIPPED), "Dilewati")
        self.assertEqual(label_for(ReferralStatus.IN_PROGRESS), "Dalam Proses")

    def test_urgency_and_role_labels(self) -> None:
        self.assertEqual(display_for(UrgencyLevel.CRITICAL).tone, "danger")
        self.assertEqual(label_for(AppRole.GURU_BK), "Guru BK")
        self.assertEqual(label_for(AppRole.WAKA_KESISWAAN), "Waka Kesiswaan")


if __name__ == "__main__":
    unittest.main()
