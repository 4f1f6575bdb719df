from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.errors import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    StateError,
    ValidationError,
)
from app.models import (
    AppRole,
    ApprovalStepStatus,
    PermitApproval,
    PermitStatus,
    PermitType,
    StudentPermit,
    Student,
    UrgencyLevel,
)
from app.schemas import PermitCreateRequest
from app.services.directory import ActingUser, get_student, get_student_for_user
from app.services.notifications import NotificationMessage, dispatch_notifications, messages_for_role
from app.services.status_labels import label_for

logger = logging.getLogger("app.permits")

PERMIT_CATEGORIES: dict[PermitType, str] = {
    PermitType.SAKIT: "medical",
    PermitType.IZIN_KELUARGA: "family",
    PermitType.DISPENSASI_AKADEMIK: "academic",
    PermitType.KEGIATAN_EKSTERNAL: "external",
    PermitType.IZIN_PULANG_AWAL: "early_leave",
    PermitType.KEGIATAN_SETELAH_JAM_SEKOLAH: "after_hours",
    PermitType.KEPERLUAN_ADMINISTRASI: "administrative",
    PermitType.LAINNYA: "others",
}

DEFAULT_APPROVAL_ROUTE: tuple[AppRole, ...] = (AppRole.WALI_KELAS,)
APPROVAL_ROUTES: dict[PermitType, tuple[AppRole, ...]] = {
    PermitType.DISPENSASI_AKADEMIK: (AppRole.WALI_KELAS, AppRole.WAKA_KESISWAAN),
    PermitType.KEGIATAN_SETELAH_JAM_SEKOLAH: (AppRole.WALI_KELAS, AppRole.GURU_BK, AppRole.WAKA_KESISWAAN),
}

DECISIONS: dict[str, ApprovalStepStatus] = {
    "approved": ApprovalStepStatus.APPROVED,
    "rejected": ApprovalStepStatus.REJECTED,
}


def approval_route_for(permit_type: PermitType) -> tuple[AppRole, ...]:
    return APPROVAL_ROUTES.get(permit_type, DEFAULT_APPROVAL_ROUTE)


def is_after_hours_request(payload: PermitCreateRequest) -> bool:
    return payload.is_after_hours or PERMIT_CATEGORIES[payload.permit_type] == "after_hours"


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_permit_submission(payload: PermitCreateRequest) -> None:
    if _is_blank(payload.reason):
        raise ValidationError("reason is required.")
    if payload.end_date < payload.start_date:
        raise ValidationError("end_date must be greater than or equal to start_date.")
    if payload.start_time and payload.end_time and payload.end_date == payload.start_date:
        if payload.end_time < payload.start_time:
            raise ValidationError("end_time must be greater than or equal to start_time.")

    if is_after_hours_request(payload):
        missing = []
        if _is_blank(payload.activity_location):
            missing.append("activity_location")
        if _is_blank(payload.emergency_contact):
            missing.append("emergency_contact")
        if not payload.parent_approval:
            missing.append("parent_approval")
        if missing:
            raise ValidationError(
                "After-hours activities require activity location, emergency contact and parent approval "
                f"(missing: {', '.join(missing)}).",
                code="AFTER_HOURS_FIELDS_REQUIRED",
            )

    if payload.urgency_level == UrgencyLevel.URGENT and _is_blank(payload.parent_contact):
        raise ValidationError("Urgent permits require a parent contact.", code="PARENT_CONTACT_REQUIRED")


def _resolve_requester(db: Session, actor: ActingUser, payload: PermitCreateRequest) -> Student:
    if actor.is_staff:
        if payload.student_id is None:
            raise ValidationError("student_id is required when staff submit a permit.")
        return get_student(db, payload.student_id)

    if actor.has_role(AppRole.SISWA):
        student = get_student_for_user(db, actor.id)
        if student is None:
            raise AuthorizationError("No active student record is linked to this account.")
        if payload.student_id is not None and payload.student_id != student.id:
            raise AuthorizationError("Students can only submit permits for themselves.")
        return student

    raise AuthorizationError("Only students or staff can submit permits.")


def create_permit(
    db: Session,
    actor: ActingUser,
    payload: PermitCreateRequest,
    *,
    now: datetime | None = None,
) -> StudentPermit:
    validate_permit_submission(payload)
    student = _resolve_requester(db, actor, payload)
    route = approval_route_for(payload.permit_type)

    permit = StudentPermit(
        student_id=student.id,
        permit_type=payload.permit_type,
        permit_category=PERMIT_CATEGORIES[payload.permit_type],
        urgency_level=payload.urgency_level,
        reason=payload.reason.strip(),
        start_date=payload.start_date,
        end_date=payload.end_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        activity_location=payload.activity_location,
        emergency_contact=payload.emergency_contact,
        parent_contact=payload.parent_contact,
        parent_approval=payload.parent_approval,
        supporting_document_url=payload.supporting_document_url,
        status=PermitStatus.PENDING,
        current_approval_stage=1,
        submitted_by=actor.id,
        submitted_at=now or datetime.now(timezone.utc),
    )
    # Request and steps go out in one transaction; a failure leaves neither behind.
    permit.approvals = [
        PermitApproval(
            approver_role=role,
            approval_order=order,
            status=ApprovalStepStatus.PENDING,
        )
        for order, role in enumerate(route, start=1)
    ]
    db.add(permit)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "permit_create_failed",
            extra={"student_id": student.id, "permit_type": payload.permit_type.value},
        )
        raise PersistenceError("The permit could not be saved. Please try again.") from exc

    db.refresh(permit)
    logger.info(
        "permit_created",
        extra={
            "permit_id": permit.id,
            "student_id": student.id,
            "permit_type": permit.permit_type.value,
            "route": [role.value for role in route],
        },
    )

    dispatch_notifications(
        db,
        messages_for_role(
            db,
            route[0],
            title="Permohonan izin baru",
            message=f"{student.full_name} mengajukan {label_for(permit.permit_type)} dan menunggu persetujuan Anda.",
            type="permit_approval_required",
            data={"permit_id": permit.id, "approval_order": 1},
        ),
    )
    return permit


def _resolve_current_step(db: Session, permit: StudentPermit) -> PermitApproval | None:
    return db.scalar(
        select(PermitApproval).where(
            PermitApproval.permit_id == permit.id,
            PermitApproval.approval_order == permit.current_approval_stage,
        )
    )


def _route_length(db: Session, permit_id: int) -> int:
    return int(
        db.scalar(select(func.max(PermitApproval.approval_order)).where(PermitApproval.permit_id == permit_id)) or 0
    )


def _resolve_step_by_order(db: Session, permit_id: int, approval_order: int) -> PermitApproval | None:
    return db.scalar(
        select(PermitApproval).where(
            PermitApproval.permit_id == permit_id,
            PermitApproval.approval_order == approval_order,
        )
    )


def process_approval(
    db: Session,
    actor: ActingUser,
    permit_id: int,
    decision: str,
    notes: str | None = None,
    *,
    approval_order: int | None = None,
    now: datetime | None = None,
) -> StudentPermit:
    decision_status = DECISIONS.get(decision)
    if decision_status is None:
        raise ValidationError("decision must be 'approved' or 'rejected'.")

    permit = db.get(StudentPermit, permit_id)
    if permit is None:
        raise NotFoundError("Permit not found.", code="PERMIT_NOT_FOUND")
    if permit.status != PermitStatus.PENDING:
        raise StateError(f"Permit is already {permit.status.value}.", code="PERMIT_ALREADY_FINAL")
    if approval_order is not None and approval_order != permit.current_approval_stage:
        raise StateError(
            f"Stage {approval_order} is not the current approval stage ({permit.current_approval_stage}).",
            code="STEP_NOT_CURRENT",
        )

    step = _resolve_current_step(db, permit)
    if step is None or step.status != ApprovalStepStatus.PENDING:
        raise StateError("This approval stage has already been processed.", code="STEP_NOT_PENDING")
    if not actor.has_role(step.approver_role):
        raise AuthorizationError(f"This stage requires the {label_for(step.approver_role)} role.")

    decided_at = now or datetime.now(timezone.utc)
    stage = step.approval_order
    is_last_step = stage >= _route_length(db, permit.id)
    cleaned_notes = notes.strip() if notes and notes.strip() else None

    if decision_status == ApprovalStepStatus.REJECTED:
        permit_values = {
            "status": PermitStatus.REJECTED,
            "reviewed_by": actor.id,
            "reviewed_at": decided_at,
            "review_notes": cleaned_notes,
        }
    elif is_last_step:
        permit_values = {
            "status": PermitStatus.APPROVED,
            "reviewed_by": actor.id,
            "reviewed_at": decided_at,
            "review_notes": cleaned_notes,
        }
    else:
        permit_values = {"current_approval_stage": stage + 1}

    try:
        # Compare-and-swap: only the writer that still sees the step pending wins.
        claimed = db.execute(
            update(PermitApproval)
            .where(
                PermitApproval.id == step.id,
                PermitApproval.status == ApprovalStepStatus.PENDING,
            )
            .values(
                status=decision_status,
                approver_id=actor.id,
                approved_at=decided_at,
                notes=cleaned_notes,
            )
        ).rowcount
        if claimed != 1:
            db.rollback()
            raise StateError("This approval stage has already been processed.", code="STEP_NOT_PENDING")

        advanced = db.execute(
            update(StudentPermit)
            .where(
                StudentPermit.id == permit.id,
                StudentPermit.status == PermitStatus.PENDING,
                StudentPermit.current_approval_stage == stage,
            )
            .values(**permit_values)
        ).rowcount
        if advanced != 1:
            db.rollback()
            raise StateError("The permit changed while it was being processed.", code="STALE_PERMIT")

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("permit_decision_failed", extra={"permit_id": permit_id, "stage": stage})
        raise PersistenceError("The approval could not be saved. Please try again.") from exc

    db.refresh(permit)
    db.refresh(step)
    logger.info(
        "permit_step_decided",
        extra={
            "permit_id": permit.id,
            "stage": stage,
            "approver_role": step.approver_role.value,
            "decision": decision_status.value,
            "actor_id": actor.id,
            "permit_status": permit.status.value,
        },
    )

    dispatch_notifications(db, _decision_messages(db, permit, step, decision_status))
    return permit


def _decision_messages(
    db: Session,
    permit: StudentPermit,
    step: PermitApproval,
    decision_status: ApprovalStepStatus,
) -> list[NotificationMessage]:
    messages: list[NotificationMessage] = []
    student = db.get(Student, permit.student_id)
    requester_user_id = student.user_id if student is not None else None
    permit_label = label_for(permit.permit_type)
    role_label = label_for(step.approver_role)
    data = {"permit_id": permit.id, "approval_order": step.approval_order}

    if requester_user_id is not None:
        if decision_status == ApprovalStepStatus.REJECTED:
            title = "Permohonan izin ditolak"
            body = f"{permit_label} Anda ditolak oleh {role_label}."
            if step.notes:
                body = f"{body} Catatan: {step.notes}"
        elif permit.status == PermitStatus.APPROVED:
            title = "Permohonan izin disetujui"
            body = f"{permit_label} Anda telah disetujui sepenuhnya."
        else:
            title = "Permohonan izin diproses"
            body = f"{permit_label} Anda disetujui oleh {role_label} dan diteruskan ke tahap berikutnya."
        messages.append(
            NotificationMessage(
                user_id=requester_user_id,
                title=title,
                message=body,
                type=f"permit_{decision_status.value}",
                data=data,
            )
        )

    if decision_status == ApprovalStepStatus.APPROVED and permit.status == PermitStatus.PENDING:
        next_step = _resolve_step_by_order(db, permit.id, permit.current_approval_stage)
        if next_step is not None:
            student_name = student.full_name if student is not None else "Siswa"
            messages.extend(
                messages_for_role(
                    db,
                    next_step.approver_role,
                    title="Permohonan izin menunggu persetujuan",
                    message=f"{permit_label} dari {student_name} menunggu persetujuan Anda.",
                    type="permit_approval_required",
                    data={"permit_id": permit.id, "approval_order": next_step.approval_order},
                )
            )
    return messages


def get_permit(db: Session, permit_id: int) -> StudentPermit:
    permit = db.scalar(
        select(StudentPermit)
        .where(StudentPermit.id == permit_id)
        .options(selectinload(StudentPermit.approvals), selectinload(StudentPermit.student))
    )
    if permit is None:
        raise NotFoundError("Permit not found.", code="PERMIT_NOT_FOUND")
    return permit


def list_permits_for_student(db: Session, student_id: int) -> list[StudentPermit]:
    stmt = (
        select(StudentPermit)
        .where(StudentPermit.student_id == student_id)
        .options(selectinload(StudentPermit.approvals), selectinload(StudentPermit.student))
        .order_by(StudentPermit.submitted_at.desc(), StudentPermit.id.desc())
    )
    return list(db.scalars(stmt).all())


def list_pending_approvals(db: Session, actor: ActingUser) -> list[PermitApproval]:
    if not actor.roles:
        return []

    stmt = (
        select(PermitApproval)
        .join(StudentPermit, StudentPermit.id == PermitApproval.permit_id)
        .where(
            PermitApproval.approver_role.in_(sorted(actor.roles, key=lambda role: role.value)),
            PermitApproval.status == ApprovalStepStatus.PENDING,
            StudentPermit.status == PermitStatus.PENDING,
            StudentPermit.current_approval_stage == PermitApproval.approval_order,
        )
        .options(
            selectinload(PermitApproval.permit).selectinload(StudentPermit.approvals),
            selectinload(PermitApproval.permit).selectinload(StudentPermit.student),
        )
        .order_by(PermitApproval.created_at.desc(), PermitApproval.id.desc())
    )
    return list(db.scalars(stmt).all())
