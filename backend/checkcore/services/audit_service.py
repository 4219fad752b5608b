"""Audit logging service.

Provides ``log_action`` to record sensitive check actions (voids, price
overrides, discounts, sends, reopen). Entries join the caller's
transaction, so a rolled back operation leaves no audit row behind.
Writing an entry is best-effort: a failure is logged and never aborts the
financial operation being audited.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from checkcore.models.check import utcnow
from checkcore.models.operations import AuditLogEntry

logger = logging.getLogger("audit")


def _json_safe(value: Any) -> Any:
    """Make audit details JSON-serializable without losing money precision."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    return value


def log_action(
    db: Session,
    action: str,
    target_type: str,
    target_id: Any,
    rvc_id: Optional[int] = None,
    employee_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
    reason_code: Optional[str] = None,
    manager_approval_id: Optional[int] = None,
) -> Optional[AuditLogEntry]:
    """Write an audit log entry.

    Args:
        db: The caller's session. The entry commits with the caller's work.
        action: What happened (send_to_kitchen, void_item, price_override, ...)
        target_type: Kind of entity affected (check, check_item, kds_ticket)
        target_id: ID of the affected entity
        rvc_id: Revenue center the action happened in
        employee_id: Employee who performed the action
        details: Additional structured details
        reason_code: Reason given for the action, if any
        manager_approval_id: Approving manager for gated actions
    """
    try:
        entry = AuditLogEntry(
            rvc_id=rvc_id,
            employee_id=employee_id,
            action=action[:50],
            target_type=target_type[:50],
            target_id=str(target_id)[:50] if target_id is not None else "",
            details=_json_safe(details or {}),
            reason_code=reason_code[:100] if reason_code else None,
            manager_approval_id=manager_approval_id,
            created_at=utcnow(),
        )
        db.add(entry)
    except Exception:
        logger.exception(f"Failed to write audit log entry for {action}")
        return None

    logger.info(
        f"{action} {target_type}={target_id} employee={employee_id}"
        + (f" approved_by={manager_approval_id}" if manager_approval_id else "")
    )
    return entry
