from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

EXPECTED_ALEMBIC_HEAD = "0001_initial_site_attendance"
SUMMARY_UNIQUE_CONSTRAINT = "uq_attendance_summaries_tenant_employee_site_date"


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "sites": {"id", "tenant_id", "latitude", "longitude", "geofence_radius_m"},
    "employees": {"id", "tenant_id"},
    "attendance_settings": {"tenant_id", "geofence_radius_m", "noise_threshold_m", "expected_hours_per_day"},
    "attendance_events": {"id", "tenant_id", "event_type", "ts_utc", "is_noise", "processed"},
    "attendance_summaries": {"id", "tenant_id", "summary_date", "total_minutes", "utilization_percent", "status"},
    "site_photo_attendances": {"id", "tenant_id", "event_date"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "attendance_event_type": {"ENTER", "EXIT"},
    "attendance_summary_status": {"EXCELLENT", "GOOD", "BELOW_TARGET", "ABSENT", "INCOMPLETE"},
}


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    try:
        unique_names = {
            str(item.get("name") or "") for item in inspector.get_unique_constraints("attendance_summaries")
        }
    except Exception as exc:
        warnings.append(f"UNIQUE_INSPECTION_FAILED:{exc.__class__.__name__}")
    else:
        if SUMMARY_UNIQUE_CONSTRAINT not in unique_names:
            issues.append(f"MISSING_UNIQUE_CONSTRAINT:attendance_summaries:{SUMMARY_UNIQUE_CONSTRAINT}")

    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        if not name:
            continue
        labels = enum_item.get("labels")
        if isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
            elif version != EXPECTED_ALEMBIC_HEAD:
                warnings.append(f"ALEMBIC_VERSION_MISMATCH:{version}!={EXPECTED_ALEMBIC_HEAD}")
    except Exception as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
