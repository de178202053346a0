from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from site_attendance.models import AuditActorType, AuditLog

if TYPE_CHECKING:
    from site_attendance.repositories import AttendanceStore

logger = logging.getLogger("site_attendance.audit")


def log_audit(
    store: AttendanceStore,
    *,
    tenant_id: int | None,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        tenant_id=tenant_id,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        details=details or {},
    )
    store.audit_logs.add(audit)
    try:
        store.commit()
    except Exception:
        store.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "tenant_id": tenant_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "tenant_id": tenant_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": details or {},
        },
    )
