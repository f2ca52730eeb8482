"""
Evaluation submission and role-scoped queries.
"""
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.rbac import Capability, Principal, Role
from app.core.security import get_role_value
from app.db.models import Evaluation, EvaluationDraft, Evaluator, Vendor
from app.services.scoring import (
    REMARK_FIELDS, SCORE_FIELDS, calculate_weighted_score, category_breakdown, validate_submission,
)

logger = get_logger(__name__)


def find_evaluator(db: Session, principal: Principal) -> Optional[Evaluator]:
    """Evaluator linked to the principal, if one exists."""
    if principal.evaluator_id is not None:
        evaluator = db.query(Evaluator).filter(Evaluator.id == principal.evaluator_id).first()
        if evaluator is not None and evaluator.user_id == principal.user_id:
            return evaluator
    return db.query(Evaluator).filter(Evaluator.user_id == principal.user_id).first()


def resolve_evaluator(db: Session, principal: Principal) -> Evaluator:
    """
    Evaluator for the principal. Decision makers and admins get one created
    on first use; contributors must already have one from registration.
    """
    evaluator = find_evaluator(db, principal)
    if evaluator is not None:
        return evaluator

    if principal.role not in (Role.DECISION_MAKER, Role.ADMIN):
        raise ValidationError("Unable to determine evaluator ID. Please contact support.")

    evaluator = Evaluator(
        user_id=principal.user_id,
        name=principal.name or principal.email,
        email=principal.email,
        role=principal.role.value,
    )
    db.add(evaluator)
    db.flush()
    logger.info(f"Created evaluator {evaluator.id} for user {principal.user_id}")
    return evaluator


def get_vendor_or_404(db: Session, vendor_id: int) -> Vendor:
    vendor = db.query(Vendor).filter(Vendor.id == vendor_id).first()
    if vendor is None:
        raise NotFoundError("Vendor not found", {"vendor_id": vendor_id})
    return vendor


def submit_evaluation(db: Session, principal: Principal, payload: Mapping[str, Any]) -> Evaluation:
    """
    Validate, score and persist a submitted evaluation.

    A second submission for the same (vendor, evaluator) raises ConflictError
    and leaves the original untouched. The evaluator's draft is removed in
    the same transaction.
    """
    validate_submission(payload)

    vendor_id = payload["vendor_id"]
    get_vendor_or_404(db, vendor_id)
    evaluator = resolve_evaluator(db, principal)

    existing = db.query(Evaluation.id).filter(
        Evaluation.vendor_id == vendor_id,
        Evaluation.evaluator_id == evaluator.id,
    ).first()
    if existing is not None:
        db.rollback()
        raise ConflictError("Evaluation already exists for this vendor", {"evaluation_id": existing[0]})

    values = {field: payload[field] for field in SCORE_FIELDS + REMARK_FIELDS}
    evaluation = Evaluation(
        vendor_id=vendor_id,
        evaluator_id=evaluator.id,
        domain=payload.get("domain"),
        overall_score=calculate_weighted_score(values),
        submitted=True,
        **values,
    )
    db.add(evaluation)

    db.query(EvaluationDraft).filter(
        EvaluationDraft.vendor_id == vendor_id,
        EvaluationDraft.evaluator_id == evaluator.id,
    ).delete(synchronize_session=False)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Evaluation already exists for this vendor")

    db.refresh(evaluation)
    logger.info(
        f"Evaluation {evaluation.id} submitted with score {evaluation.overall_score:.2f}",
        extra={"user_id": principal.user_id, "vendor_id": vendor_id, "action": "submit_evaluation"},
    )
    return evaluation


def visible_evaluations(
    db: Session,
    principal: Principal,
    vendor_id: Optional[int] = None,
) -> List[Evaluation]:
    """Contributors see their own evaluations; decision makers and admins see all."""
    query = db.query(Evaluation).options(
        joinedload(Evaluation.evaluator),
        joinedload(Evaluation.vendor),
    )
    if vendor_id is not None:
        query = query.filter(Evaluation.vendor_id == vendor_id)

    if not principal.can(Capability.VIEW_ALL_EVALUATIONS):
        evaluator = find_evaluator(db, principal)
        if evaluator is None:
            return []
        query = query.filter(Evaluation.evaluator_id == evaluator.id)

    return query.order_by(Evaluation.created_at.desc()).all()


def serialize_evaluator(evaluator: Evaluator) -> Dict[str, Any]:
    return {
        "id": evaluator.id,
        "name": evaluator.name,
        "role": get_role_value(evaluator.role),
        "email": evaluator.email,
    }


def serialize_evaluation(evaluation: Evaluation) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": evaluation.id,
        "vendor_id": evaluation.vendor_id,
        "vendor_name": evaluation.vendor.name if evaluation.vendor else None,
        "evaluator": serialize_evaluator(evaluation.evaluator),
        "domain": evaluation.domain,
        "overall_score": evaluation.overall_score,
        "submitted": evaluation.submitted,
        "created_at": evaluation.created_at,
    }
    for field in SCORE_FIELDS + REMARK_FIELDS:
        data[field] = getattr(evaluation, field)
    data["category_scores"] = category_breakdown(data)
    return data


def summarize(evaluations: List[Evaluation]) -> Dict[str, Any]:
    evaluators: Dict[int, Dict[str, Any]] = {}
    for evaluation in evaluations:
        evaluators.setdefault(evaluation.evaluator_id, serialize_evaluator(evaluation.evaluator))

    count = len(evaluations)
    total = sum(e.overall_score for e in evaluations)
    return {
        "average_score": total / count if count else 0,
        "evaluations_count": count,
        "unique_evaluators": len(evaluators),
        "evaluators": list(evaluators.values()),
    }


def average_score(evaluations: List[Evaluation]) -> Optional[float]:
    if not evaluations:
        return None
    return sum(e.overall_score for e in evaluations) / len(evaluations)
