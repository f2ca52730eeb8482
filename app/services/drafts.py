"""
Server side of evaluation autosave.

At most one draft exists per (vendor, evaluator); once an evaluation is
submitted for the pair the draft can no longer be written.
"""
from typing import Any, Dict, Mapping, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.rbac import Principal
from app.db.models import Evaluation, EvaluationDraft, utcnow
from app.services.evaluations import find_evaluator, get_vendor_or_404, resolve_evaluator

logger = get_logger(__name__)


def autosave_draft(
    db: Session,
    principal: Principal,
    vendor_id: int,
    data: Mapping[str, Any],
) -> Tuple[EvaluationDraft, bool]:
    """
    Upsert the caller's draft for a vendor.

    Returns (draft, created). Raises ValidationError when the evaluation has
    already been submitted.
    """
    get_vendor_or_404(db, vendor_id)
    evaluator = resolve_evaluator(db, principal)

    submitted = db.query(Evaluation.id).filter(
        Evaluation.vendor_id == vendor_id,
        Evaluation.evaluator_id == evaluator.id,
        Evaluation.submitted.is_(True),
    ).first()
    if submitted is not None:
        db.rollback()
        raise ValidationError("Cannot modify submitted evaluation", {"vendor_id": vendor_id})

    draft = db.query(EvaluationDraft).filter(
        EvaluationDraft.vendor_id == vendor_id,
        EvaluationDraft.evaluator_id == evaluator.id,
    ).first()

    created = draft is None
    if created:
        draft = EvaluationDraft(vendor_id=vendor_id, evaluator_id=evaluator.id)
        db.add(draft)

    draft.data = dict(data)
    draft.updated_at = utcnow()

    try:
        db.commit()
    except IntegrityError:
        # Two autosaves raced on the first insert; update the winner's row
        db.rollback()
        draft = db.query(EvaluationDraft).filter(
            EvaluationDraft.vendor_id == vendor_id,
            EvaluationDraft.evaluator_id == evaluator.id,
        ).one()
        draft.data = dict(data)
        draft.updated_at = utcnow()
        db.commit()
        created = False

    db.refresh(draft)
    logger.debug(
        f"Draft {'created' if created else 'updated'} for evaluator {evaluator.id}",
        extra={"vendor_id": vendor_id, "action": "autosave"},
    )
    return draft, created


def get_draft(db: Session, principal: Principal, vendor_id: int) -> EvaluationDraft:
    evaluator = find_evaluator(db, principal)
    draft = None
    if evaluator is not None:
        draft = db.query(EvaluationDraft).filter(
            EvaluationDraft.vendor_id == vendor_id,
            EvaluationDraft.evaluator_id == evaluator.id,
        ).first()
    if draft is None:
        raise NotFoundError("No draft found", {"vendor_id": vendor_id})
    return draft


def discard_draft(db: Session, principal: Principal, vendor_id: int) -> None:
    draft = get_draft(db, principal, vendor_id)
    db.delete(draft)
    db.commit()


def serialize_draft(draft: EvaluationDraft) -> Dict[str, Any]:
    return {
        "id": draft.id,
        "vendor_id": draft.vendor_id,
        "evaluator_id": draft.evaluator_id,
        "data": draft.data,
        "updated_at": draft.updated_at,
    }
