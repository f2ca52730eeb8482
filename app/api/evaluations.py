"""
Evaluation API routes: submission, drafts/autosave, listing and export.
"""
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.core.rbac import Principal, get_current_principal, require_evaluator
from app.core.errors import AuthorizationError
from app.services.admin_settings import FeatureSettings, get_feature_settings
from app.services.audit import record_audit
from app.services.chat import load_user
from app.services.drafts import autosave_draft, discard_draft, get_draft, serialize_draft
from app.services.evaluations import (
    get_vendor_or_404, serialize_evaluation, submit_evaluation, summarize, visible_evaluations,
)
from app.services.export import XLSX_MEDIA_TYPE, build_export_rows, export_filename, render_xlsx

router = APIRouter(prefix="/api/evaluations", tags=["Evaluations"])


# ============= SCHEMAS =============

class EvaluationSubmit(BaseModel):
    """Scores and remarks arrive as `<criterion>_score` / `<criterion>_remark` fields."""
    model_config = ConfigDict(extra="allow")

    vendor_id: int
    domain: Optional[str] = Field(None, max_length=100)


class AutosaveRequest(BaseModel):
    vendor_id: int
    data: Dict[str, Any]


# ============= ROUTES =============

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_evaluation(
    request: Request,
    body: EvaluationSubmit,
    principal: Principal = Depends(require_evaluator),
    db: Session = Depends(get_db)
):
    """Submit a completed evaluation. One per (vendor, evaluator)."""
    evaluation = submit_evaluation(db, principal, body.model_dump())
    record_audit(db, request, "submit_evaluation", user_id=principal.user_id,
                 entity_type="evaluation", entity_id=evaluation.id,
                 details={"vendor_id": evaluation.vendor_id, "overall_score": evaluation.overall_score})
    db.commit()
    return serialize_evaluation(evaluation)


@router.get("")
async def list_evaluations(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Contributors see their own evaluations; decision makers and admins see all."""
    return [serialize_evaluation(e) for e in visible_evaluations(db, principal)]


@router.get("/vendor/{vendor_id}")
async def vendor_evaluations(
    vendor_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Visible evaluations for one vendor with an aggregate summary."""
    get_vendor_or_404(db, vendor_id)
    evaluations = visible_evaluations(db, principal, vendor_id)
    return {
        "evaluations": [serialize_evaluation(e) for e in evaluations],
        "summary": summarize(evaluations),
    }


@router.post("/autosave")
async def autosave(
    body: AutosaveRequest,
    response: Response,
    principal: Principal = Depends(require_evaluator),
    db: Session = Depends(get_db)
):
    """Upsert the caller's draft. 201 when created, 200 when updated."""
    draft, created = autosave_draft(db, principal, body.vendor_id, body.data)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return serialize_draft(draft)


@router.get("/drafts/{vendor_id}")
async def read_draft(
    vendor_id: int,
    principal: Principal = Depends(require_evaluator),
    db: Session = Depends(get_db)
):
    return serialize_draft(get_draft(db, principal, vendor_id))


@router.delete("/drafts/{vendor_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_draft(
    vendor_id: int,
    principal: Principal = Depends(require_evaluator),
    db: Session = Depends(get_db)
):
    discard_draft(db, principal, vendor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/export")
async def export_evaluations(
    request: Request,
    vendor_id: Optional[int] = Query(None),
    principal: Principal = Depends(get_current_principal),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Download evaluations as an xlsx workbook, for one vendor or all."""
    features.require("export_enabled", "Export functionality is currently disabled")
    if not load_user(db, principal).can_export_data:
        raise AuthorizationError("You do not have permission to export data")

    rows = build_export_rows(db, vendor_id)
    content = render_xlsx(rows)

    vendor_name = rows[0]["Vendor Name"] if vendor_id is not None else None
    record_audit(db, request, "export_evaluations", user_id=principal.user_id,
                 entity_type="vendor" if vendor_id else None, entity_id=vendor_id,
                 details={"rows": len(rows)})
    db.commit()

    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(vendor_name)}"'},
    )
