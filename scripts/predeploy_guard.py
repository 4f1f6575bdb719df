#!/usr/bin/env python
from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.services.local_time import parse_clock
from app.services.referrals import load_auto_referral_rules
from app.services.schema_guard import verify_runtime_schema
from app.settings import get_settings

VERSIONS_DIR = ROOT_DIR / "app" / "migrations" / "versions"


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _extract_revision_ids() -> list[str]:
    revisions: list[str] = []
    pattern = re.compile(r'^\s*revision\s*:\s*str\s*=\s*"([^"]+)"\s*$', re.MULTILINE)
    for path in sorted(VERSIONS_DIR.glob("*.py")):
        if path.name.startswith("__"):
            continue
        content = path.read_text(encoding="utf-8")
        match = pattern.search(content)
        if match:
            revisions.append(match.group(1).strip())
    return revisions


def _check_revision_id_lengths() -> CheckResult:
    revisions = _extract_revision_ids()
    too_long = [revision for revision in revisions if len(revision) > 32]
    return CheckResult(
        name="migration_revision_length",
        status="ok" if not too_long else "fail",
        details={
            "max_len": 32,
            "too_long": too_long,
            "total": len(revisions),
        },
    )


def _check_token_secret() -> CheckResult:
    secret_set = bool(get_settings().jwt_secret.strip())
    return CheckResult(
        name="jwt_secret_set",
        status="ok" if secret_set else "fail",
        details={"jwt_secret_set": secret_set},
    )


def _check_checkout_thresholds() -> CheckResult:
    settings = get_settings()
    try:
        early = parse_clock(settings.early_checkout_threshold)
        late = parse_clock(settings.late_checkout_threshold)
    except ValueError as exc:
        return CheckResult(name="checkout_thresholds", status="fail", details={"reason": str(exc)})

    return CheckResult(
        name="checkout_thresholds",
        status="ok" if early < late else "fail",
        details={
            "early_checkout_threshold": early.isoformat(),
            "late_checkout_threshold": late.isoformat(),
            "early_checkout_points": settings.early_checkout_points,
            "late_checkout_points": settings.late_checkout_points,
        },
    )


def _check_auto_referral_rules() -> CheckResult:
    rules_file = get_settings().auto_referral_rules_file
    try:
        rules = load_auto_referral_rules(rules_file)
    except (OSError, PydanticValidationError) as exc:
        return CheckResult(
            name="auto_referral_rules",
            status="fail",
            details={"rules_file": rules_file, "error": exc.__class__.__name__, "reason": str(exc)},
        )

    return CheckResult(
        name="auto_referral_rules",
        status="ok" if rules else "warn",
        details={
            "rules_file": rules_file,
            "active_rules": [rule.name for rule in rules if rule.is_active],
            "total": len(rules),
        },
    )


def _expected_alembic_heads() -> list[str]:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    script = ScriptDirectory.from_config(config)
    return sorted(script.get_heads())


def _check_database_migration_and_schema() -> CheckResult:
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if not database_url:
        return CheckResult(
            name="database_schema_guard",
            status="warn",
            details={"reason": "DATABASE_URL_NOT_SET"},
        )

    expected_heads = _expected_alembic_heads()
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as connection:
            current_versions = [
                str(row[0]).strip()
                for row in connection.execute(text("SELECT version_num FROM alembic_version")).fetchall()
                if row and row[0] is not None
            ]
        schema_result = verify_runtime_schema(engine)
    finally:
        engine.dispose()

    missing_heads = [head for head in expected_heads if head not in current_versions]
    status = "ok"
    if missing_heads or (not schema_result.ok):
        status = "fail"

    return CheckResult(
        name="database_schema_guard",
        status=status,
        details={
            "expected_heads": expected_heads,
            "current_versions": current_versions,
            "missing_heads": missing_heads,
            "schema_guard_ok": schema_result.ok,
            "schema_guard_issues": schema_result.issues,
            "schema_guard_warnings": schema_result.warnings,
        },
    )


def main() -> int:
    checks = [
        _check_revision_id_lengths(),
        _check_token_secret(),
        _check_checkout_thresholds(),
        _check_auto_referral_rules(),
        _check_database_migration_and_schema(),
    ]
    failed_checks = [check for check in checks if check.status == "fail"]
    summary = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": len(failed_checks) == 0,
        "checks": [
            {
                "name": check.name,
                "status": check.status,
                "details": check.details,
            }
            for check in checks
        ],
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if len(failed_checks) == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
