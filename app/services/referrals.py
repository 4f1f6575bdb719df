from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import AuthorizationError, NotFoundError, PersistenceError, StateError
from app.models import (
    AppRole,
    CounselingReferral,
    ReferralStatus,
    StudentViolation,
    UrgencyLevel,
    ViolationStatus,
    ViolationType,
)
from app.services.directory import ActingUser
from app.services.local_time import local_today
from app.settings import get_settings

logger = logging.getLogger("app.referrals")

VIOLATION_REFERRAL_TYPE = "violation"

REFERRAL_TRANSITIONS: dict[ReferralStatus, frozenset[ReferralStatus]] = {
    ReferralStatus.PENDING: frozenset({ReferralStatus.ACCEPTED}),
    ReferralStatus.ACCEPTED: frozenset({ReferralStatus.IN_PROGRESS, ReferralStatus.COMPLETED}),
    ReferralStatus.IN_PROGRESS: frozenset({ReferralStatus.COMPLETED}),
    ReferralStatus.COMPLETED: frozenset(),
}


class AutoReferralRule(BaseModel):
    name: str = Field(min_length=1)
    violation_threshold: int = Field(ge=1)
    time_period_days: int = Field(ge=1)
    violation_type_filter: list[str] = Field(default_factory=list)
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    auto_assign: bool = False
    is_active: bool = True

    def matches_type(self, violation_type_name: str | None) -> bool:
        if not self.violation_type_filter:
            return True
        lowered = (violation_type_name or "").lower()
        return any(item.lower() in lowered for item in self.violation_type_filter)


DEFAULT_AUTO_REFERRAL_RULES: tuple[AutoReferralRule, ...] = (
    AutoReferralRule(
        name="Multiple Violations (3+ in 30 days)",
        violation_threshold=3,
        time_period_days=30,
        urgency_level=UrgencyLevel.HIGH,
        auto_assign=True,
    ),
    AutoReferralRule(
        name="Serious Violations (Violence/Drugs)",
        violation_threshold=1,
        time_period_days=1,
        violation_type_filter=["kekerasan", "narkoba", "bullying"],
        urgency_level=UrgencyLevel.CRITICAL,
        auto_assign=True,
    ),
    AutoReferralRule(
        name="Repeated Late Arrivals (5+ in 14 days)",
        violation_threshold=5,
        time_period_days=14,
        violation_type_filter=["terlambat"],
        urgency_level=UrgencyLevel.NORMAL,
        auto_assign=False,
    ),
)

_RULES_ADAPTER = TypeAdapter(list[AutoReferralRule])


def load_auto_referral_rules(path: str | None) -> tuple[AutoReferralRule, ...]:
    if not path:
        return DEFAULT_AUTO_REFERRAL_RULES
    raw = Path(path).read_text(encoding="utf-8")
    return tuple(_RULES_ADAPTER.validate_json(raw))


@lru_cache
def get_auto_referral_rules() -> tuple[AutoReferralRule, ...]:
    rules = load_auto_referral_rules(get_settings().auto_referral_rules_file)
    logger.info(
        "auto_referral_rules_loaded",
        extra={"rule_count": len(rules), "rules": [rule.name for rule in rules]},
    )
    return rules


def count_matching_violations(
    db: Session,
    student_id: int,
    rule: AutoReferralRule,
    *,
    today: date,
) -> int:
    cutoff = today - timedelta(days=rule.time_period_days)
    rows = db.execute(
        select(StudentViolation.id, ViolationType.name)
        .join(ViolationType, ViolationType.id == StudentViolation.violation_type_id)
        .where(
            StudentViolation.student_id == student_id,
            StudentViolation.status == ViolationStatus.ACTIVE,
            StudentViolation.violation_date >= cutoff,
        )
    ).all()
    return sum(1 for _violation_id, type_name in rows if rule.matches_type(type_name))


def has_open_violation_referral(db: Session, student_id: int) -> bool:
    existing = db.scalar(
        select(CounselingReferral.id)
        .where(
            CounselingReferral.student_id == student_id,
            CounselingReferral.referral_type == VIOLATION_REFERRAL_TYPE,
            CounselingReferral.status != ReferralStatus.COMPLETED,
        )
        .limit(1)
    )
    return existing is not None


def evaluate_auto_referrals(
    db: Session,
    student_id: int,
    *,
    evaluator_id: int | None = None,
    today: date | None = None,
    rules: Sequence[AutoReferralRule] | None = None,
) -> list[CounselingReferral]:
    """Open at most one violation referral for the student when a rule threshold is met.

    ``evaluator_id`` is the acting user; rules with ``auto_assign`` make them the
    counselor. System-triggered evaluations pass ``None`` and leave it unassigned.
    """
    resolved_rules = get_auto_referral_rules() if rules is None else rules
    resolved_today = today or local_today()
    created: list[CounselingReferral] = []

    for rule in resolved_rules:
        if not rule.is_active:
            continue
        violation_count = count_matching_violations(db, student_id, rule, today=resolved_today)
        if violation_count < rule.violation_threshold:
            continue
        if has_open_violation_referral(db, student_id):
            break

        referral = CounselingReferral(
            student_id=student_id,
            referral_type=VIOLATION_REFERRAL_TYPE,
            urgency_level=rule.urgency_level,
            referral_reason=f"Auto-referral: {rule.name} - {violation_count} violations detected",
            referred_by=None,
            assigned_counselor=evaluator_id if rule.auto_assign else None,
            status=ReferralStatus.PENDING,
        )
        db.add(referral)
        db.flush()
        created.append(referral)
        logger.info(
            "auto_referral_created",
            extra={
                "student_id": student_id,
                "referral_id": referral.id,
                "rule": rule.name,
                "violation_count": violation_count,
                "assigned_counselor": referral.assigned_counselor,
            },
        )

    if created:
        db.commit()
    return created


def run_auto_referrals(
    db: Session,
    student_id: int,
    *,
    evaluator_id: int | None = None,
    today: date | None = None,
) -> list[CounselingReferral]:
    """Reactive hook after a violation is persisted; failures are logged, the violation stays."""
    try:
        return evaluate_auto_referrals(db, student_id, evaluator_id=evaluator_id, today=today)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("auto_referral_evaluation_failed", extra={"student_id": student_id})
        return []


def list_referrals(db: Session, *, include_completed: bool = False) -> list[CounselingReferral]:
    stmt = select(CounselingReferral).where(CounselingReferral.referral_type == VIOLATION_REFERRAL_TYPE)
    if not include_completed:
        stmt = stmt.where(CounselingReferral.status != ReferralStatus.COMPLETED)
    stmt = stmt.order_by(CounselingReferral.created_at.desc(), CounselingReferral.id.desc())
    return list(db.scalars(stmt).all())


def _require_counselor(actor: ActingUser) -> None:
    if not actor.has_role(AppRole.GURU_BK):
        raise AuthorizationError("Only counselors (Guru BK) can handle referrals.")


def _resolve_referral(db: Session, referral_id: int) -> CounselingReferral:
    referral = db.get(CounselingReferral, referral_id)
    if referral is None:
        raise NotFoundError("Referral not found.", code="REFERRAL_NOT_FOUND")
    return referral


def _commit_referral(db: Session, referral: CounselingReferral) -> CounselingReferral:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("referral_update_failed", extra={"referral_id": referral.id})
        raise PersistenceError("The referral could not be saved. Please try again.") from exc
    db.refresh(referral)
    return referral


def accept_referral(
    db: Session,
    actor: ActingUser,
    referral_id: int,
    *,
    now: datetime | None = None,
) -> CounselingReferral:
    _require_counselor(actor)
    referral = _resolve_referral(db, referral_id)
    if referral.status != ReferralStatus.PENDING:
        raise StateError(f"Referral is already {referral.status.value}.")

    referral.assigned_counselor = actor.id
    referral.status = ReferralStatus.ACCEPTED
    referral.accepted_at = now or datetime.now(timezone.utc)
    return _commit_referral(db, referral)


def update_referral_status(
    db: Session,
    actor: ActingUser,
    referral_id: int,
    status: ReferralStatus,
) -> CounselingReferral:
    _require_counselor(actor)
    referral = _resolve_referral(db, referral_id)
    if status not in REFERRAL_TRANSITIONS[referral.status]:
        raise StateError(f"Referral cannot move from {referral.status.value} to {status.value}.")

    referral.status = status
    if referral.assigned_counselor is None:
        referral.assigned_counselor = actor.id
    return _commit_referral(db, referral)
