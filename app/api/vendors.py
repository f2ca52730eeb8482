"""
Vendors API routes.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, EmailStr, Field, StrictBool
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import Vendor, FinalDecision, RfiStatus, VoteValue
from app.core.rbac import (
    Principal, get_current_principal, require_admin, require_decision_maker, require_reviewer,
)
from app.core.errors import AuthorizationError
from app.services.admin_settings import FeatureSettings, get_feature_settings
from app.services.audit import record_audit
from app.services.chat import load_user
from app.services.consensus import cast_vote, clear_vote, vote_stats
from app.services.evaluations import get_vendor_or_404, serialize_evaluation, summarize, visible_evaluations
from app.services.scoring import WEIGHT_TABLE, category_weight
from app.services import vendors as vendor_service

router = APIRouter(prefix="/api/vendors", tags=["Vendors"])


# ============= SCHEMAS =============

class Contact(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)


class VendorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    scopes: List[str] = Field(..., min_length=1)
    contacts: List[Contact] = []


class VendorRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class RfiUpdate(BaseModel):
    rfi_received: StrictBool
    rfi_status: Optional[RfiStatus] = None


class StatusUpdate(BaseModel):
    status: RfiStatus


class VoteRequest(BaseModel):
    vote: VoteValue


class DecisionRequest(BaseModel):
    decision: FinalDecision


def _vendor_payload(db: Session, vendor: Vendor, features: FeatureSettings) -> dict:
    scores = vendor_service.vendor_scores(db).get(vendor.id)
    return vendor_service.serialize_vendor(vendor, features, scores)


# ============= ROUTES =============

@router.get("")
async def list_vendors(
    principal: Principal = Depends(get_current_principal),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """List vendors with their average evaluation score."""
    scores = vendor_service.vendor_scores(db)
    vendors = db.query(Vendor).order_by(Vendor.name).all()
    return [vendor_service.serialize_vendor(v, features, scores.get(v.id)) for v in vendors]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_vendor(
    request: Request,
    body: VendorCreate,
    principal: Principal = Depends(require_admin),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Create a vendor. Scopes must be a subset of Media and AI."""
    vendor = vendor_service.create_vendor(
        db, body.name, body.scopes, [c.model_dump(exclude_none=True) for c in body.contacts]
    )
    record_audit(db, request, "create_vendor", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor.id, details={"name": vendor.name})
    db.commit()
    return vendor_service.serialize_vendor(vendor, features)


@router.get("/{vendor_id}")
async def get_vendor(
    vendor_id: int,
    principal: Principal = Depends(get_current_principal),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Vendor detail; `chat_available` also reflects the caller's chat permission."""
    vendor = get_vendor_or_404(db, vendor_id)
    data = _vendor_payload(db, vendor, features)
    user = load_user(db, principal)
    data["chat_available"] = data["chat_available"] and user.can_access_chat
    return data


@router.patch("/{vendor_id}/rfi")
async def update_rfi(
    vendor_id: int,
    request: Request,
    body: RfiUpdate,
    principal: Principal = Depends(require_reviewer),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Mark the RFI response as received or not received."""
    vendor = vendor_service.set_rfi_received(db, vendor_id, body.rfi_received, body.rfi_status)
    record_audit(db, request, "update_rfi", user_id=principal.user_id, entity_type="vendor",
                 entity_id=vendor_id, details={"rfi_received": body.rfi_received, "rfi_status": vendor.rfi_status})
    db.commit()
    return _vendor_payload(db, vendor, features)


@router.put("/{vendor_id}/status")
async def update_status(
    vendor_id: int,
    request: Request,
    body: StatusUpdate,
    principal: Principal = Depends(require_decision_maker),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Set the vendor's RFI status directly."""
    vendor = get_vendor_or_404(db, vendor_id)
    vendor.rfi_status = body.status.value
    record_audit(db, request, "update_status", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id, details={"status": body.status.value})
    db.commit()
    db.refresh(vendor)
    return _vendor_payload(db, vendor, features)


@router.patch("/{vendor_id}/name")
async def rename_vendor(
    vendor_id: int,
    request: Request,
    body: VendorRename,
    principal: Principal = Depends(require_decision_maker),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Rename a vendor. Names are unique (case-insensitive)."""
    vendor = vendor_service.rename_vendor(db, vendor_id, body.name)
    record_audit(db, request, "rename_vendor", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id, details={"name": vendor.name})
    db.commit()
    return _vendor_payload(db, vendor, features)


@router.delete("/{vendor_id}/data")
async def clear_vendor_data(
    vendor_id: int,
    request: Request,
    principal: Principal = Depends(require_decision_maker),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Clear votes and chat and reset the decision, keeping the vendor itself."""
    vendor = vendor_service.clear_decision_data(db, vendor_id)
    record_audit(db, request, "clear_vendor_data", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id)
    db.commit()
    return {"message": "Vendor data cleared successfully", "vendor": _vendor_payload(db, vendor, features)}


@router.get("/{vendor_id}/report")
async def vendor_report(
    vendor_id: int,
    principal: Principal = Depends(require_reviewer),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Consolidated evaluation report for printing."""
    features.require("print_enabled", "Printing is currently disabled")
    if not load_user(db, principal).can_print_reports:
        raise AuthorizationError("You do not have permission to print reports")

    vendor = get_vendor_or_404(db, vendor_id)
    evaluations = visible_evaluations(db, principal, vendor_id)
    records = [serialize_evaluation(e) for e in evaluations]

    category_averages = {}
    for category in WEIGHT_TABLE:
        points = [r["category_scores"][category] for r in records]
        category_averages[category] = {
            "weight": category_weight(category),
            "average": sum(points) / len(points) if points else None,
        }

    return {
        "vendor": _vendor_payload(db, vendor, features),
        "summary": summarize(evaluations),
        "category_averages": category_averages,
        "evaluations": records,
        "votes": vote_stats(db, vendor_id, principal.user_id),
    }


@router.get("/{vendor_id}/vote")
async def get_votes(
    vendor_id: int,
    principal: Principal = Depends(require_decision_maker),
    db: Session = Depends(get_db)
):
    """Vote totals, the caller's vote and the voter list."""
    return vote_stats(db, vendor_id, principal.user_id)


@router.post("/{vendor_id}/vote")
async def post_vote(
    vendor_id: int,
    request: Request,
    body: VoteRequest,
    principal: Principal = Depends(require_decision_maker),
    db: Session = Depends(get_db)
):
    """Cast or change the caller's vote and recompute the decision."""
    vote = cast_vote(db, vendor_id, principal.user_id, body.vote)
    record_audit(db, request, "cast_vote", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id, details={"vote": vote.vote})
    db.commit()
    return vote_stats(db, vendor_id, principal.user_id)


@router.delete("/{vendor_id}/vote")
async def delete_vote(
    vendor_id: int,
    request: Request,
    principal: Principal = Depends(require_decision_maker),
    db: Session = Depends(get_db)
):
    """Withdraw the caller's vote and recompute the decision."""
    clear_vote(db, vendor_id, principal.user_id)
    record_audit(db, request, "clear_vote", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id)
    db.commit()
    return vote_stats(db, vendor_id, principal.user_id)


@router.post("/{vendor_id}/decision")
async def direct_decision(
    vendor_id: int,
    request: Request,
    body: DecisionRequest,
    principal: Principal = Depends(require_decision_maker),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Set the final decision directly, bypassing the vote."""
    features.require("direct_decision_enabled", "Direct decisions are currently disabled")
    vendor = get_vendor_or_404(db, vendor_id)
    if not vendor.direct_decision_enabled:
        raise AuthorizationError("Direct decisions are disabled for this vendor", {"vendor_id": vendor_id})
    if not load_user(db, principal).can_make_direct_decision:
        raise AuthorizationError("You do not have permission to make direct decisions")

    vendor.final_decision = body.decision.value
    vendor.rfi_status = RfiStatus.COMPLETED.value
    record_audit(db, request, "direct_decision", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id, details={"decision": body.decision.value})
    db.commit()
    db.refresh(vendor)
    return _vendor_payload(db, vendor, features)
