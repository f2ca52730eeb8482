"""
Spreadsheet export of vendor evaluations.
"""
from io import BytesIO
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy.orm import Session, joinedload

from app.core.errors import NotFoundError
from app.core.logging import get_logger
from app.core.security import get_role_value
from app.db.models import Evaluation, Vendor, RfiStatus
from app.services.scoring import SUB_CRITERIA

logger = get_logger(__name__)

SHEET_NAME = "Vendor Evaluations"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_LABEL_OVERRIDES = {"roi": "ROI"}


def criterion_label(name: str) -> str:
    return _LABEL_OVERRIDES.get(name, name.replace("_", " ").title())


def export_columns() -> List[str]:
    columns = ["Vendor Name", "Evaluator Name", "Evaluator Role", "Domain", "Overall Score"]
    for name in SUB_CRITERIA:
        label = criterion_label(name)
        columns += [f"{label} Score", f"{label} Remarks"]
    columns += ["Final Decision", "RFI Status", "RFI Received Date", "Evaluation Date"]
    return columns


def _date(value) -> str:
    return value.date().isoformat() if value else "N/A"


def _vendor_columns(vendor: Vendor) -> Dict[str, Any]:
    return {
        "Final Decision": vendor.final_decision or "Pending",
        "RFI Status": vendor.rfi_status or RfiStatus.NOT_RECEIVED.value,
        "RFI Received Date": _date(vendor.rfi_received_at),
    }


def _placeholder_row(vendor: Vendor) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "Vendor Name": vendor.name,
        "Evaluator Name": "No evaluation",
        "Evaluator Role": "N/A",
        "Domain": ", ".join(vendor.scopes or []),
        "Overall Score": "No score",
    }
    for name in SUB_CRITERIA:
        label = criterion_label(name)
        row[f"{label} Score"] = "N/A"
        row[f"{label} Remarks"] = ""
    row.update(_vendor_columns(vendor))
    row["Evaluation Date"] = "No evaluation"
    return row


def _evaluation_row(vendor: Vendor, evaluation: Evaluation) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "Vendor Name": vendor.name,
        "Evaluator Name": evaluation.evaluator.name,
        "Evaluator Role": get_role_value(evaluation.evaluator.role),
        "Domain": evaluation.domain or "",
        "Overall Score": evaluation.overall_score,
    }
    for name in SUB_CRITERIA:
        label = criterion_label(name)
        row[f"{label} Score"] = getattr(evaluation, f"{name}_score")
        row[f"{label} Remarks"] = getattr(evaluation, f"{name}_remark") or ""
    row.update(_vendor_columns(vendor))
    row["Evaluation Date"] = _date(evaluation.created_at)
    return row


def build_export_rows(db: Session, vendor_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """One row per vendor x evaluation, or a placeholder row for unevaluated vendors."""
    query = db.query(Vendor).options(
        joinedload(Vendor.evaluations).joinedload(Evaluation.evaluator)
    )
    if vendor_id is not None:
        query = query.filter(Vendor.id == vendor_id)
    vendors = query.order_by(Vendor.name).all()

    if not vendors:
        raise NotFoundError("No vendors found", {"vendor_id": vendor_id})

    rows: List[Dict[str, Any]] = []
    for vendor in vendors:
        if not vendor.evaluations:
            rows.append(_placeholder_row(vendor))
            continue
        rows.extend(_evaluation_row(vendor, evaluation) for evaluation in vendor.evaluations)

    logger.info(f"Exporting {len(rows)} rows for {len(vendors)} vendors")
    return rows


def render_xlsx(rows: List[Dict[str, Any]]) -> bytes:
    frame = pd.DataFrame(rows, columns=export_columns())
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=SHEET_NAME, index=False)
    return buffer.getvalue()


def export_filename(vendor_name: Optional[str] = None) -> str:
    if vendor_name:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in vendor_name)
        return f"{safe}_evaluations.xlsx"
    return "vendor_evaluations.xlsx"
