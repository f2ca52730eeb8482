"""
Vendor chat API routes: history, posting, unread notifications and the SSE stream.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.db.session import get_db, get_db_context
from app.core.rbac import Principal, get_current_principal, require_decision_maker, verify_token
from app.services.admin_settings import FeatureSettings, get_feature_settings
from app.services.audit import record_audit
from app.services.chat import (
    Cursor, authorize_chat, latest_cursor, list_messages, mark_read,
    messages_after, post_message, serialize_message, unread_counts,
)
from app.services.chat_stream import SSE_HEADERS, ChatStreamConnection, StreamMessage

router = APIRouter(prefix="/api/chat", tags=["Chat"])


# ============= SCHEMAS =============

class MessageCreate(BaseModel):
    content: str = Field(..., max_length=10000)


def _load_after(vendor_id: int, cursor: Optional[Cursor]) -> List[StreamMessage]:
    with get_db_context() as db:
        return [
            StreamMessage((m.created_at, m.id), serialize_message(m))
            for m in messages_after(db, vendor_id, cursor)
        ]


# ============= ROUTES =============

@router.get("/notifications/unread")
async def get_unread(
    principal: Principal = Depends(require_decision_maker),
    db: Session = Depends(get_db)
):
    """Unread message counts keyed by vendor id."""
    counts = unread_counts(db, principal.user_id)
    return {"total": sum(counts.values()), "vendors": counts}


@router.post("/{vendor_id}/notifications/read")
async def read_notifications(
    vendor_id: int,
    principal: Principal = Depends(require_decision_maker),
    db: Session = Depends(get_db)
):
    return {"marked_read": mark_read(db, principal.user_id, vendor_id)}


@router.get("/{vendor_id}")
async def get_messages(
    vendor_id: int,
    principal: Principal = Depends(get_current_principal),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Chat history in send order. Any role with chat access may read."""
    authorize_chat(db, principal, features, vendor_id, require_sender=False)
    return [serialize_message(m) for m in list_messages(db, vendor_id)]


@router.post("/{vendor_id}", status_code=status.HTTP_201_CREATED)
async def send_message(
    vendor_id: int,
    request: Request,
    body: MessageCreate,
    principal: Principal = Depends(get_current_principal),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """Post a message and notify the other decision makers."""
    authorize_chat(db, principal, features, vendor_id)
    message = post_message(db, principal, vendor_id, body.content)
    record_audit(db, request, "post_chat_message", user_id=principal.user_id,
                 entity_type="vendor", entity_id=vendor_id, details={"message_id": message.id})
    db.commit()
    return serialize_message(message)


@router.get("/{vendor_id}/stream")
async def stream_messages(
    vendor_id: int,
    request: Request,
    token: Optional[str] = Query(None),
    features: FeatureSettings = Depends(get_feature_settings),
    db: Session = Depends(get_db)
):
    """
    Server-sent events for new messages on a vendor.

    The token travels in the query string because EventSource cannot set
    headers; the cookie is accepted as a fallback. All authorization happens
    before the stream opens.
    """
    principal = verify_token(token or request.cookies.get("token"))
    authorize_chat(db, principal, features, vendor_id)
    cursor = latest_cursor(db, vendor_id)
    # The request session is not used by the stream itself
    db.close()

    async def fetch(after: Optional[Cursor]) -> List[StreamMessage]:
        return await run_in_threadpool(_load_after, vendor_id, after)

    connection = ChatStreamConnection(principal.user_id, vendor_id, fetch, cursor=cursor)
    return StreamingResponse(
        connection.events(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
