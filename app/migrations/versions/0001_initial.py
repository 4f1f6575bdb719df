"""Initial student affairs workflow schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

app_role = postgresql.ENUM(
    "admin",
    "kepala_sekolah",
    "wali_kelas",
    "guru_bk",
    "waka_kesiswaan",
    "tppk",
    "siswa",
    "orang_tua",
    name="app_role",
    create_type=False,
)
permit_type = postgresql.ENUM(
    "sakit",
    "izin_keluarga",
    "dispensasi_akademik",
    "kegiatan_eksternal",
    "izin_pulang_awal",
    "kegiatan_setelah_jam_sekolah",
    "keperluan_administrasi",
    "lainnya",
    name="permit_type",
    create_type=False,
)
urgency_level = postgresql.ENUM(
    "low",
    "normal",
    "high",
    "urgent",
    "critical",
    name="urgency_level",
    create_type=False,
)
permit_status = postgresql.ENUM("pending", "approved", "rejected", name="permit_status", create_type=False)
permit_approval_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    "skipped",
    name="permit_approval_status",
    create_type=False,
)
location_type = postgresql.ENUM("radius", "polygon", name="location_type", create_type=False)
self_attendance_status = postgresql.ENUM(
    "present",
    "absent",
    "late",
    name="self_attendance_status",
    create_type=False,
)
violation_status = postgresql.ENUM("active", "resolved", name="violation_status", create_type=False)
referral_status = postgresql.ENUM(
    "pending",
    "accepted",
    "in_progress",
    "completed",
    name="referral_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("USER", "SYSTEM", name="audit_actor_type", create_type=False)

ENUMS = (
    app_role,
    permit_type,
    urgency_level,
    permit_status,
    permit_approval_status,
    location_type,
    self_attendance_status,
    violation_status,
    referral_status,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", app_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])
    op.create_index("ix_user_roles_role", "user_roles", ["role"])

    op.create_table(
        "classes",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("homeroom_teacher_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["homeroom_teacher_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("name", name="uq_classes_name"),
    )

    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("nis", sa.String(length=50), nullable=False),
        sa.Column("current_class_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["current_class_id"], ["classes.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", name="uq_students_user_id"),
        sa.UniqueConstraint("nis", name="uq_students_nis"),
    )
    op.create_index("ix_students_current_class_id", "students", ["current_class_id"])

    op.create_table(
        "student_permits",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("permit_type", permit_type, nullable=False),
        sa.Column("permit_category", sa.String(length=50), nullable=False),
        sa.Column("urgency_level", urgency_level, nullable=False, server_default=sa.text("'normal'")),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("activity_location", sa.String(length=500), nullable=True),
        sa.Column("emergency_contact", sa.String(length=255), nullable=True),
        sa.Column("parent_contact", sa.String(length=255), nullable=True),
        sa.Column("parent_approval", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("supporting_document_url", sa.String(length=1000), nullable=True),
        sa.Column("status", permit_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("current_approval_stage", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("submitted_by", sa.Integer(), nullable=True),
        sa.Column(
            "submitted_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["submitted_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reviewed_by"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_student_permits_student_id", "student_permits", ["student_id"])
    op.create_index("ix_student_permits_status", "student_permits", ["status"])

    op.create_table(
        "permit_approvals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("permit_id", sa.Integer(), nullable=False),
        sa.Column("approver_role", app_role, nullable=False),
        sa.Column("approval_order", sa.Integer(), nullable=False),
        sa.Column("status", permit_approval_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("approver_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["permit_id"], ["student_permits.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("permit_id", "approval_order", name="uq_permit_approvals_permit_order"),
    )
    op.create_index("ix_permit_approvals_permit_id", "permit_approvals", ["permit_id"])
    op.create_index("ix_permit_approvals_approver_role", "permit_approvals", ["approver_role"])
    op.create_index("ix_permit_approvals_status", "permit_approvals", ["status"])

    op.create_table(
        "attendance_locations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("location_type", location_type, nullable=False, server_default=sa.text("'radius'")),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("radius_meters", sa.Float(), nullable=True),
        sa.Column("polygon_coordinates", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "attendance_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("class_id", sa.Integer(), nullable=True),
        sa.Column("applies_to_all_classes", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("check_in_start", sa.Time(), nullable=False),
        sa.Column("check_in_end", sa.Time(), nullable=False),
        sa.Column("check_out_start", sa.Time(), nullable=False),
        sa.Column("check_out_end", sa.Time(), nullable=False),
        sa.Column("late_threshold_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.ForeignKeyConstraint(["class_id"], ["classes.id"], ondelete="CASCADE"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_attendance_schedules_day_of_week"),
    )
    op.create_index("ix_attendance_schedules_day_of_week", "attendance_schedules", ["day_of_week"])

    op.create_table(
        "student_self_attendances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("check_in_time", sa.Time(), nullable=True),
        sa.Column("check_in_location_id", sa.Integer(), nullable=True),
        sa.Column("check_in_latitude", sa.Float(), nullable=True),
        sa.Column("check_in_longitude", sa.Float(), nullable=True),
        sa.Column("check_out_time", sa.Time(), nullable=True),
        sa.Column("check_out_latitude", sa.Float(), nullable=True),
        sa.Column("check_out_longitude", sa.Float(), nullable=True),
        sa.Column("status", self_attendance_status, nullable=False, server_default=sa.text("'present'")),
        sa.Column("violation_created", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["check_in_location_id"], ["attendance_locations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("student_id", "attendance_date", name="uq_self_attendance_student_date"),
    )
    op.create_index("ix_student_self_attendances_student_id", "student_self_attendances", ["student_id"])
    op.create_index("ix_student_self_attendances_attendance_date", "student_self_attendances", ["attendance_date"])

    op.create_table(
        "violation_types",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("point_deduction", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("name", name="uq_violation_types_name"),
    )

    op.create_table(
        "student_violations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("violation_type_id", sa.Integer(), nullable=False),
        sa.Column("violation_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("point_deduction", sa.Integer(), nullable=False),
        sa.Column("status", violation_status, nullable=False, server_default=sa.text("'active'")),
        sa.Column("recorded_by", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["violation_type_id"], ["violation_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["recorded_by"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_student_violations_student_id", "student_violations", ["student_id"])
    op.create_index("ix_student_violations_violation_date", "student_violations", ["violation_date"])

    op.create_table(
        "counseling_referrals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("referral_type", sa.String(length=50), nullable=False),
        sa.Column("urgency_level", urgency_level, nullable=False, server_default=sa.text("'normal'")),
        sa.Column("referral_reason", sa.Text(), nullable=False),
        sa.Column("referred_by", sa.Integer(), nullable=True),
        sa.Column("assigned_counselor", sa.Integer(), nullable=True),
        sa.Column("status", referral_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["referred_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assigned_counselor"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_counseling_referrals_student_id", "counseling_referrals", ["student_id"])
    op.create_index("ix_counseling_referrals_status", "counseling_referrals", ["status"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=100), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    for table_name in (
        "audit_logs",
        "notifications",
        "counseling_referrals",
        "student_violations",
        "violation_types",
        "student_self_attendances",
        "attendance_schedules",
        "attendance_locations",
        "permit_approvals",
        "student_permits",
        "students",
        "classes",
        "user_roles",
        "users",
    ):
        op.drop_table(table_name)

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
