"""
Persisted audit trail helpers.
"""
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.logging import audit_logger
from app.db.models import AuditLog


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None or request.client is None:
        return None
    return request.client.host


def record_audit(
    db: Session,
    request: Optional[Request],
    action: str,
    user_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    details: Optional[dict] = None,
) -> AuditLog:
    """Add an AuditLog row to the session and emit the audit log line. Caller commits."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=client_ip(request),
    )
    db.add(entry)
    audit_logger.log(
        action,
        user_id=user_id,
        vendor_id=entity_id if entity_type == "vendor" else None,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    return entry
