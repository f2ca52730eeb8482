"""
Admin API routes - user approval, permissions, feature toggles and vendor maintenance.
Requires ADMIN role for all endpoints.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, StrictBool, Field
from sqlalchemy import desc, func
from sqlalchemy.orm import Session, joinedload

from app.db.session import get_db
from app.db.models import AuditLog, Evaluation, Evaluator, User, ApprovalStatus
from app.core.errors import NotFoundError, ValidationError
from app.core.rbac import Principal, Role, require_admin
from app.core.security import get_role_value
from app.api.auth import serialize_user
from app.services.admin_settings import FeatureSettings, load_admin_settings, update_admin_settings
from app.services.audit import record_audit
from app.services import vendors as vendor_service

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ============= SCHEMAS =============

class SettingsUpdate(BaseModel):
    chat_enabled: StrictBool
    direct_decision_enabled: StrictBool
    print_enabled: StrictBool
    export_enabled: StrictBool


class ApprovalUpdate(BaseModel):
    status: ApprovalStatus


class RoleUpdate(BaseModel):
    role: Role


class PermissionsUpdate(BaseModel):
    can_access_chat: Optional[StrictBool] = None
    can_make_direct_decision: Optional[StrictBool] = None
    can_print_reports: Optional[StrictBool] = None
    can_export_data: Optional[StrictBool] = None


class VendorAction(str, Enum):
    UPDATE_VENDOR = "UPDATE_VENDOR"
    UPDATE_SCOPE = "UPDATE_SCOPE"
    CLEAR_EVALUATIONS = "CLEAR_EVALUATIONS"
    CLEAR_CHAT = "CLEAR_CHAT"


class VendorChanges(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    scopes: Optional[List[str]] = None
    chat_enabled: Optional[StrictBool] = None
    direct_decision_enabled: Optional[StrictBool] = None


class VendorManageRequest(BaseModel):
    action: VendorAction
    data: Optional[VendorChanges] = None
    scopes: Optional[List[str]] = None


class AuditLogResponse(BaseModel):
    id: int
    timestamp: datetime
    user_id: Optional[int]
    user_email: Optional[str]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    details: Optional[dict]
    ip_address: Optional[str]


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found", {"user_id": user_id})
    return user


# ============= SETTINGS =============

@router.get("/settings", response_model=FeatureSettings)
async def get_settings(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Current global feature toggles."""
    return FeatureSettings.model_validate(load_admin_settings(db))


@router.put("/settings", response_model=FeatureSettings)
async def put_settings(
    request: Request,
    body: SettingsUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Replace all four feature toggles. Each must be a JSON boolean."""
    values = FeatureSettings(**body.model_dump())
    row = update_admin_settings(db, values)
    record_audit(db, request, "update_settings", user_id=principal.user_id,
                 entity_type="admin_settings", entity_id=row.id, details=body.model_dump())
    db.commit()
    return FeatureSettings.model_validate(row)


# ============= USERS =============

@router.get("/users")
async def list_users(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List all users."""
    users = db.query(User).options(joinedload(User.evaluator)).order_by(User.email).all()
    return [serialize_user(u) for u in users]


@router.get("/users/pending")
async def list_pending_users(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Users awaiting approval, oldest first."""
    users = (
        db.query(User)
        .filter(User.approval_status == ApprovalStatus.PENDING.value)
        .order_by(User.created_at)
        .all()
    )
    return [serialize_user(u) for u in users]


@router.post("/users/{user_id}/approve")
async def set_approval(
    user_id: int,
    request: Request,
    body: ApprovalUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Approve or reject a registration."""
    if body.status == ApprovalStatus.PENDING:
        raise ValidationError.for_fields("Status must be APPROVED or REJECTED", ["status"])

    user = _get_user(db, user_id)
    user.approval_status = body.status.value
    record_audit(db, request, "set_approval", user_id=principal.user_id,
                 entity_type="user", entity_id=user.id, details={"status": body.status.value})
    db.commit()
    db.refresh(user)
    return serialize_user(user)


@router.put("/users/{user_id}/role")
async def update_role(
    user_id: int,
    request: Request,
    body: RoleUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Change a user's role; the evaluator record follows."""
    user = _get_user(db, user_id)
    old_role = get_role_value(user.role)
    user.role = body.role.value
    db.query(Evaluator).filter(Evaluator.user_id == user.id).update(
        {Evaluator.role: body.role.value}, synchronize_session=False
    )
    record_audit(db, request, "update_role", user_id=principal.user_id, entity_type="user",
                 entity_id=user.id, details={"old_role": old_role, "new_role": body.role.value})
    db.commit()
    db.refresh(user)
    return serialize_user(user)


@router.put("/users/{user_id}/permissions")
async def update_permissions(
    user_id: int,
    request: Request,
    body: PermissionsUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update per-user feature permissions. Omitted fields are left unchanged."""
    user = _get_user(db, user_id)
    changes = body.model_dump(exclude_none=True)
    for key, value in changes.items():
        setattr(user, key, value)
    record_audit(db, request, "update_permissions", user_id=principal.user_id,
                 entity_type="user", entity_id=user.id, details=changes)
    db.commit()
    db.refresh(user)
    return serialize_user(user)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a user and everything they own. Admins cannot delete themselves."""
    if user_id == principal.user_id:
        raise ValidationError("Cannot delete your own account")

    user = _get_user(db, user_id)
    record_audit(db, request, "delete_user", user_id=principal.user_id,
                 entity_type="user", entity_id=user.id, details={"email": user.email})
    vendor_service.delete_user(db, user)
    return {"message": "User deleted successfully"}


# ============= VENDORS =============

@router.put("/vendors/{vendor_id}/manage")
async def manage_vendor(
    vendor_id: int,
    request: Request,
    body: VendorManageRequest,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Run one vendor maintenance action."""
    if body.action == VendorAction.UPDATE_VENDOR:
        if body.data is None:
            raise ValidationError.for_fields("Vendor changes are required", ["data"])
        changes = body.data.model_dump(exclude_none=True)
        vendor = vendor_service.update_vendor(db, vendor_id, changes)
        result: Dict[str, Any] = vendor_service.serialize_vendor(vendor)
    elif body.action == VendorAction.UPDATE_SCOPE:
        if body.scopes is None:
            raise ValidationError.for_fields("Scopes are required", ["scopes"])
        changes = {"scopes": body.scopes}
        vendor = vendor_service.update_vendor(db, vendor_id, changes)
        result = vendor_service.serialize_vendor(vendor)
    elif body.action == VendorAction.CLEAR_EVALUATIONS:
        changes = {"deleted": vendor_service.clear_evaluations(db, vendor_id)}
        result = {"message": "Evaluations cleared successfully", **changes}
    else:
        changes = {"deleted": vendor_service.clear_chat(db, vendor_id)}
        result = {"message": "Chat history cleared successfully", **changes}

    record_audit(db, request, body.action.value.lower(), user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id, details=changes)
    db.commit()
    return result


@router.delete("/vendors/{vendor_id}")
async def delete_vendor(
    vendor_id: int,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Delete a vendor with its evaluations, drafts, votes and chat."""
    vendor_service.delete_vendor(db, vendor_id)
    record_audit(db, request, "delete_vendor", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id)
    db.commit()
    return {"message": "Vendor deleted successfully"}


# ============= OVERVIEW =============

@router.get("/evaluations")
async def list_all_evaluations(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """All submitted evaluations with vendor and evaluator names."""
    evaluations = (
        db.query(Evaluation)
        .options(joinedload(Evaluation.vendor), joinedload(Evaluation.evaluator))
        .order_by(Evaluation.created_at.desc())
        .all()
    )
    return [
        {
            "id": e.id,
            "vendor_id": e.vendor_id,
            "vendor_name": e.vendor.name,
            "evaluator_name": e.evaluator.name,
            "evaluator_role": get_role_value(e.evaluator.role),
            "submitted_at": e.created_at,
            "score": e.overall_score,
            "status": "SUBMITTED" if e.submitted else "DRAFT",
        }
        for e in evaluations
    ]


@router.get("/audit/logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action type"),
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    user_id: Optional[int] = Query(None, description="Filter by user"),
    limit: int = Query(100, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List audit log entries, newest first."""
    query = db.query(AuditLog).options(joinedload(AuditLog.user))
    if action:
        query = query.filter(AuditLog.action == action)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)

    logs = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).offset(offset).limit(limit).all()
    return [
        AuditLogResponse(
            id=log.id,
            timestamp=log.timestamp,
            user_id=log.user_id,
            user_email=log.user.email if log.user else None,
            action=log.action,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            details=log.details,
            ip_address=log.ip_address,
        )
        for log in logs
    ]


@router.get("/audit/summary")
async def audit_summary(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Event counts for the last week."""
    week_ago = datetime.now(timezone.utc) - timedelta(days=7)
    action_counts = (
        db.query(AuditLog.action, func.count(AuditLog.id).label("count"))
        .filter(AuditLog.timestamp >= week_ago)
        .group_by(AuditLog.action)
        .order_by(desc("count"))
        .limit(10)
        .all()
    )
    return {
        "total_events": db.query(AuditLog).count(),
        "top_actions": [{"action": a, "count": c} for a, c in action_counts],
    }
