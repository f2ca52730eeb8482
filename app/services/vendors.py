"""
Vendor maintenance: creation, updates and the clear/delete cascades.

Cascades are issued explicitly so they behave the same on SQLite (no FK
enforcement) and Postgres.
"""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, ValidationError
from app.core.logging import get_logger
from app.db.models import (
    ChatMessage, ChatNotification, Evaluation, EvaluationDraft, Evaluator,
    User, Vendor, VendorVote, RfiStatus, VENDOR_SCOPES, utcnow,
)
from app.services.admin_settings import FeatureSettings
from app.services.chat import delete_vendor_chat
from app.services.consensus import apply_consensus
from app.services.evaluations import get_vendor_or_404

logger = get_logger(__name__)


def normalize_scopes(scopes: Iterable[str]) -> List[str]:
    scopes = list(dict.fromkeys(scopes))
    invalid = [s for s in scopes if s not in VENDOR_SCOPES]
    if invalid:
        raise ValidationError(
            f"Invalid scopes: {', '.join(invalid)}",
            {"fields": ["scopes"], "allowed": list(VENDOR_SCOPES)},
        )
    return scopes


def _ensure_unique_name(db: Session, name: str, vendor_id: Optional[int] = None) -> str:
    name = name.strip()
    if not name:
        raise ValidationError.for_fields("Vendor name is required", ["name"])
    query = db.query(Vendor.id).filter(func.lower(Vendor.name) == name.lower())
    if vendor_id is not None:
        query = query.filter(Vendor.id != vendor_id)
    if query.first() is not None:
        raise ConflictError("A vendor with this name already exists", {"name": name})
    return name


def _commit_unique(db: Session, name: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("A vendor with this name already exists", {"name": name})


def create_vendor(db: Session, name: str, scopes: Iterable[str], contacts: List[Dict[str, Any]]) -> Vendor:
    name = _ensure_unique_name(db, name)
    vendor = Vendor(name=name, scopes=normalize_scopes(scopes), contacts=contacts)
    db.add(vendor)
    _commit_unique(db, name)
    db.refresh(vendor)
    return vendor


def rename_vendor(db: Session, vendor_id: int, name: str) -> Vendor:
    vendor = get_vendor_or_404(db, vendor_id)
    vendor.name = _ensure_unique_name(db, name, vendor_id)
    _commit_unique(db, vendor.name)
    db.refresh(vendor)
    return vendor


def update_vendor(db: Session, vendor_id: int, values: Dict[str, Any]) -> Vendor:
    """Apply an admin UPDATE_VENDOR change set (name, scopes, toggles)."""
    vendor = get_vendor_or_404(db, vendor_id)
    if values.get("name") is not None:
        vendor.name = _ensure_unique_name(db, values["name"], vendor_id)
    if values.get("scopes") is not None:
        vendor.scopes = normalize_scopes(values["scopes"])
    for flag in ("chat_enabled", "direct_decision_enabled"):
        if values.get(flag) is not None:
            setattr(vendor, flag, values[flag])
    _commit_unique(db, vendor.name)
    db.refresh(vendor)
    return vendor


def set_rfi_received(db: Session, vendor_id: int, received: bool, status: Optional[RfiStatus] = None) -> Vendor:
    vendor = get_vendor_or_404(db, vendor_id)
    vendor.rfi_received = received
    if received:
        vendor.rfi_received_at = vendor.rfi_received_at or utcnow()
        vendor.rfi_status = (status or RfiStatus.RECEIVED).value
    else:
        vendor.rfi_received_at = None
        vendor.rfi_status = (status or RfiStatus.NOT_RECEIVED).value
    db.commit()
    db.refresh(vendor)
    return vendor


def _delete_evaluations(db: Session, vendor_id: int) -> int:
    db.query(EvaluationDraft).filter(
        EvaluationDraft.vendor_id == vendor_id
    ).delete(synchronize_session=False)
    return db.query(Evaluation).filter(
        Evaluation.vendor_id == vendor_id
    ).delete(synchronize_session=False)


def clear_evaluations(db: Session, vendor_id: int) -> int:
    get_vendor_or_404(db, vendor_id)
    deleted = _delete_evaluations(db, vendor_id)
    db.commit()
    return deleted


def clear_chat(db: Session, vendor_id: int) -> int:
    get_vendor_or_404(db, vendor_id)
    deleted = delete_vendor_chat(db, vendor_id)
    db.commit()
    return deleted


def clear_decision_data(db: Session, vendor_id: int) -> Vendor:
    """Remove votes and chat and reset the vendor's decision state."""
    vendor = get_vendor_or_404(db, vendor_id)
    delete_vendor_chat(db, vendor_id)
    db.query(VendorVote).filter(VendorVote.vendor_id == vendor_id).delete(synchronize_session=False)

    vendor.final_decision = None
    vendor.rfi_status = RfiStatus.IN_PROGRESS.value
    vendor.rfi_received = False
    vendor.rfi_received_at = None
    db.commit()
    db.refresh(vendor)
    return vendor


def delete_vendor(db: Session, vendor_id: int) -> None:
    vendor = get_vendor_or_404(db, vendor_id)
    delete_vendor_chat(db, vendor_id)
    db.query(VendorVote).filter(VendorVote.vendor_id == vendor_id).delete(synchronize_session=False)
    _delete_evaluations(db, vendor_id)
    db.delete(vendor)
    db.commit()
    logger.info(f"Vendor {vendor_id} deleted", extra={"vendor_id": vendor_id, "action": "delete_vendor"})


def delete_user(db: Session, user: User) -> None:
    """Delete a user together with everything that references it."""
    own_messages = db.query(ChatMessage.id).filter(ChatMessage.sender_id == user.id)
    db.query(ChatNotification).filter(
        (ChatNotification.user_id == user.id) | ChatNotification.message_id.in_(own_messages)
    ).delete(synchronize_session=False)
    db.query(ChatMessage).filter(ChatMessage.sender_id == user.id).delete(synchronize_session=False)
    voted_vendor_ids = [
        row[0] for row in db.query(VendorVote.vendor_id).filter(VendorVote.user_id == user.id)
    ]
    db.query(VendorVote).filter(VendorVote.user_id == user.id).delete(synchronize_session=False)
    if voted_vendor_ids:
        affected = (
            db.query(Vendor).filter(Vendor.id.in_(voted_vendor_ids)).with_for_update().all()
        )
        for vendor in affected:
            apply_consensus(db, vendor)

    evaluator = db.query(Evaluator).filter(Evaluator.user_id == user.id).first()
    if evaluator is not None:
        db.query(EvaluationDraft).filter(
            EvaluationDraft.evaluator_id == evaluator.id
        ).delete(synchronize_session=False)
        db.query(Evaluation).filter(
            Evaluation.evaluator_id == evaluator.id
        ).delete(synchronize_session=False)
        db.delete(evaluator)

    db.delete(user)
    db.commit()


def vendor_scores(db: Session) -> Dict[int, Dict[str, Any]]:
    rows = (
        db.query(Evaluation.vendor_id, func.avg(Evaluation.overall_score), func.count(Evaluation.id))
        .group_by(Evaluation.vendor_id)
        .all()
    )
    return {vendor_id: {"average_score": avg, "evaluations_count": count} for vendor_id, avg, count in rows}


def serialize_vendor(
    vendor: Vendor,
    features: Optional[FeatureSettings] = None,
    scores: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    data = {
        "id": vendor.id,
        "name": vendor.name,
        "scopes": vendor.scopes or [],
        "contacts": vendor.contacts or [],
        "rfi_status": vendor.rfi_status,
        "rfi_received": vendor.rfi_received,
        "rfi_received_at": vendor.rfi_received_at,
        "final_decision": vendor.final_decision,
        "chat_enabled": vendor.chat_enabled,
        "direct_decision_enabled": vendor.direct_decision_enabled,
        "created_at": vendor.created_at,
        "updated_at": vendor.updated_at,
    }
    if features is not None:
        # Effective flags combine the global toggle with the vendor toggle
        data["chat_available"] = features.chat_enabled and vendor.chat_enabled
        data["direct_decision_available"] = (
            features.direct_decision_enabled and vendor.direct_decision_enabled
        )
    scores = scores or {}
    data["average_score"] = scores.get("average_score")
    data["evaluations_count"] = scores.get("evaluations_count", 0)
    return data
