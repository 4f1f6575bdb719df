from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ApiError, NotFoundError
from app.models import AppRole, Student, User, UserRole

STAFF_ROLES: frozenset[AppRole] = frozenset(
    {
        AppRole.ADMIN,
        AppRole.KEPALA_SEKOLAH,
        AppRole.WALI_KELAS,
        AppRole.GURU_BK,
        AppRole.WAKA_KESISWAAN,
        AppRole.TPPK,
    }
)


@dataclass(frozen=True, slots=True)
class ActingUser:
    """The user on whose behalf a workflow call runs, with their active roles."""

    id: int
    roles: frozenset[AppRole] = field(default_factory=frozenset)
    full_name: str | None = None

    def has_role(self, role: AppRole) -> bool:
        return role in self.roles

    def has_any_role(self, roles: frozenset[AppRole] | set[AppRole]) -> bool:
        return bool(self.roles & roles)

    @property
    def is_staff(self) -> bool:
        return self.has_any_role(STAFF_ROLES)


def active_roles_for_user(db: Session, user_id: int) -> frozenset[AppRole]:
    rows = db.scalars(
        select(UserRole.role).where(
            UserRole.user_id == user_id,
            UserRole.is_active.is_(True),
        )
    ).all()
    return frozenset(rows)


def resolve_acting_user(db: Session, user_id: int) -> ActingUser:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="User is not active.")
    return ActingUser(id=user.id, roles=active_roles_for_user(db, user.id), full_name=user.full_name)


def list_user_ids_with_role(db: Session, role: AppRole) -> list[int]:
    stmt = (
        select(UserRole.user_id)
        .join(User, User.id == UserRole.user_id)
        .where(
            UserRole.role == role,
            UserRole.is_active.is_(True),
            User.is_active.is_(True),
        )
        .order_by(UserRole.user_id.asc())
    )
    return list(db.scalars(stmt).all())


def get_student(db: Session, student_id: int) -> Student:
    student = db.get(Student, student_id)
    if student is None:
        raise NotFoundError("Student not found.", code="STUDENT_NOT_FOUND")
    return student


def get_student_for_user(db: Session, user_id: int) -> Student | None:
    return db.scalar(
        select(Student).where(
            Student.user_id == user_id,
            Student.is_active.is_(True),
        )
    )
