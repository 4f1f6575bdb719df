"""Single status-to-display mapping shared by every response that carries a status."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from app.models import (
    ApprovalStepStatus,
    AppRole,
    PermitStatus,
    PermitType,
    ReferralStatus,
    SelfAttendanceStatus,
    UrgencyLevel,
    ViolationStatus,
)


@dataclass(frozen=True, slots=True)
class StatusDisplay:
    value: str
    label: str
    tone: str


# Keyed by enum class first: str-valued members of different enums compare equal.
_DISPLAY: dict[type[enum.Enum], dict[str, tuple[str, str]]] = {
    PermitStatus: {
        "pending": ("Menunggu", "warning"),
        "approved": ("Disetujui", "success"),
        "rejected": ("Ditolak", "danger"),
    },
    ApprovalStepStatus: {
        "pending": ("Menunggu", "warning"),
        "approved": ("Disetujui", "success"),
        "rejected": ("Ditolak", "danger"),
        "skipped": ("Dilewati", "muted"),
    },
    UrgencyLevel: {
        "low": ("Rendah", "success"),
        "normal": ("Normal", "info"),
        "high": ("Tinggi", "warning"),
        "urgent": ("Mendesak", "danger"),
        "critical": ("Kritis", "danger"),
    },
    SelfAttendanceStatus: {
        "present": ("Hadir", "success"),
        "absent": ("Tidak Hadir", "danger"),
        "late": ("Terlambat", "warning"),
    },
    ViolationStatus: {
        "active": ("Aktif", "danger"),
        "resolved": ("Selesai", "muted"),
    },
    ReferralStatus: {
        "pending": ("Menunggu", "warning"),
        "accepted": ("Diterima", "info"),
        "in_progress": ("Dalam Proses", "info"),
        "completed": ("Selesai", "success"),
    },
    AppRole: {
        "admin": ("Admin", "neutral"),
        "kepala_sekolah": ("Kepala Sekolah", "neutral"),
        "wali_kelas": ("Wali Kelas", "neutral"),
        "guru_bk": ("Guru BK", "neutral"),
        "waka_kesiswaan": ("Waka Kesiswaan", "neutral"),
        "tppk": ("TPPK", "neutral"),
        "siswa": ("Siswa", "neutral"),
        "orang_tua": ("Orang Tua", "neutral"),
    },
    PermitType: {
        "sakit": ("Sakit", "neutral"),
        "izin_keluarga": ("Izin Keluarga", "neutral"),
        "dispensasi_akademik": ("Dispensasi Akademik", "neutral"),
        "kegiatan_eksternal": ("Kegiatan Eksternal", "neutral"),
        "izin_pulang_awal": ("Izin Pulang Awal", "neutral"),
        "kegiatan_setelah_jam_sekolah": ("Kegiatan Setelah Jam Sekolah", "neutral"),
        "keperluan_administrasi": ("Keperluan Administrasi", "neutral"),
        "lainnya": ("Lainnya", "neutral"),
    },
}


def display_for(value: enum.Enum) -> StatusDisplay:
    raw = str(value.value)
    label, tone = _DISPLAY.get(type(value), {}).get(raw, (raw.replace("_", " ").title(), "neutral"))
    return StatusDisplay(value=raw, label=label, tone=tone)


def label_for(value: enum.Enum) -> str:
    return display_for(value).label
