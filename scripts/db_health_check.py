#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection

from site_attendance.services.schema_guard import EXPECTED_ALEMBIC_HEAD
from site_attendance.settings import get_settings

REQUIRED_TABLES = [
    "sites",
    "employees",
    "attendance_settings",
    "device_registrations",
    "attendance_events",
    "attendance_summaries",
    "site_photo_attendances",
    "bank_holidays",
    "attendance_notifications",
    "audit_logs",
]
SAMPLE_LIMIT = 20


def _sample_ids(conn: Connection, statement: str, **params) -> list[int]:
    return [row[0] for row in conn.execute(text(statement), params).fetchall()]


def run() -> dict:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    now_utc = datetime.now(timezone.utc)
    report: dict = {
        "generated_at_utc": now_utc.isoformat(),
        "database_url": engine.url.render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_ALEMBIC_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_ALEMBIC_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "attendance_events" in tables:
            orphan_employees = _sample_ids(
                conn,
                """
                select a.id
                from attendance_events a
                left join employees e on e.id = a.employee_id
                where e.id is null
                limit :limit
                """,
                limit=SAMPLE_LIMIT,
            )
            add(
                "attendance_event_orphan_employee",
                "fail" if orphan_employees else "ok",
                {"sample_ids": orphan_employees},
            )

            orphan_sites = _sample_ids(
                conn,
                """
                select a.id
                from attendance_events a
                left join sites s on s.id = a.site_id
                where s.id is null
                limit :limit
                """,
                limit=SAMPLE_LIMIT,
            )
            add(
                "attendance_event_orphan_site",
                "fail" if orphan_sites else "ok",
                {"sample_ids": orphan_sites},
            )

            stale_cutoff = now_utc - timedelta(days=1)
            stale_count = conn.execute(
                text(
                    """
                    select count(*)
                    from attendance_events
                    where processed = false and ts_utc < :cutoff
                    """
                ),
                {"cutoff": stale_cutoff},
            ).scalar()
            add(
                "stale_unprocessed_events",
                "warn" if stale_count else "ok",
                {"count": int(stale_count or 0), "older_than_utc": stale_cutoff.isoformat()},
            )

        if "attendance_summaries" in tables:
            duplicate_summaries = conn.execute(
                text(
                    """
                    select tenant_id, employee_id, site_id, summary_date, count(*)
                    from attendance_summaries
                    group by tenant_id, employee_id, site_id, summary_date
                    having count(*) > 1
                    limit :limit
                    """
                ),
                {"limit": SAMPLE_LIMIT},
            ).fetchall()
            add(
                "duplicate_attendance_summaries",
                "fail" if duplicate_summaries else "ok",
                {"rows": [[str(value) for value in row] for row in duplicate_summaries]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
