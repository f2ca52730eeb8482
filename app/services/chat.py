"""
Per-vendor decision-maker chat: history, posting, notification fan-out.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, func
from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.errors import AuthenticationError, AuthorizationError, ValidationError
from app.core.logging import get_logger
from app.core.rbac import Capability, Principal, Role
from app.db.models import ChatMessage, ChatNotification, User, Vendor
from app.services.admin_settings import FeatureSettings
from app.services.evaluations import get_vendor_or_404

logger = get_logger(__name__)

# (created_at, id) of the last message delivered on a stream
Cursor = Tuple[datetime, int]

MAX_MESSAGE_LENGTH = 5000


def load_user(db: Session, principal: Principal) -> User:
    user = db.query(User).filter(User.id == principal.user_id).first()
    if user is None:
        raise AuthenticationError("User not found")
    return user


def authorize_chat(
    db: Session,
    principal: Principal,
    features: FeatureSettings,
    vendor_id: int,
    require_sender: bool = True,
) -> Vendor:
    """
    Check chat access for a vendor and return it.

    Role, user permission and the global toggle are checked before the vendor
    lookup so that callers without chat access never learn which vendors exist.
    """
    if require_sender and not principal.can(Capability.CHAT):
        raise AuthorizationError("Only decision makers can access vendor chat")

    user = load_user(db, principal)
    if not user.can_access_chat:
        raise AuthorizationError("Chat access is disabled for this user")

    features.require("chat_enabled", "Chat is disabled")

    vendor = get_vendor_or_404(db, vendor_id)
    if not vendor.chat_enabled:
        raise AuthorizationError("Chat is disabled for this vendor", {"vendor_id": vendor_id})
    return vendor


def serialize_message(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "vendor_id": message.vendor_id,
        "content": message.content,
        "sender_id": message.sender_id,
        "sender_name": message.sender.name if message.sender else None,
        "created_at": message.created_at.isoformat(),
    }


def list_messages(db: Session, vendor_id: int) -> List[ChatMessage]:
    return (
        db.query(ChatMessage)
        .options(joinedload(ChatMessage.sender))
        .filter(ChatMessage.vendor_id == vendor_id)
        .order_by(ChatMessage.created_at, ChatMessage.id)
        .all()
    )


def messages_after(db: Session, vendor_id: int, cursor: Optional[Cursor]) -> List[ChatMessage]:
    """Messages strictly after the cursor, ordered by (created_at, id)."""
    query = (
        db.query(ChatMessage)
        .options(joinedload(ChatMessage.sender))
        .filter(ChatMessage.vendor_id == vendor_id)
    )
    if cursor is not None:
        created_at, message_id = cursor
        query = query.filter(or_(
            ChatMessage.created_at > created_at,
            and_(ChatMessage.created_at == created_at, ChatMessage.id > message_id),
        ))
    return query.order_by(ChatMessage.created_at, ChatMessage.id).all()


def latest_cursor(db: Session, vendor_id: int) -> Optional[Cursor]:
    row = (
        db.query(ChatMessage.created_at, ChatMessage.id)
        .filter(ChatMessage.vendor_id == vendor_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .first()
    )
    return (row[0], row[1]) if row else None


def fan_out_notifications(db: Session, message_id: int, sender_id: int) -> int:
    """Create an unread notification for every chat-enabled decision maker except the sender."""
    recipients = (
        db.query(User.id)
        .filter(
            User.role == Role.DECISION_MAKER.value,
            User.can_access_chat.is_(True),
            User.id != sender_id,
        )
        .all()
    )
    for (user_id,) in recipients:
        db.add(ChatNotification(message_id=message_id, user_id=user_id))
    db.commit()
    return len(recipients)


def post_message(db: Session, principal: Principal, vendor_id: int, content: str) -> ChatMessage:
    """Persist a message, then fan out notifications inline or via the queue."""
    content = (content or "").strip()
    if not content:
        raise ValidationError.for_fields("Message content is required", ["content"])
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError.for_fields("Message is too long", ["content"])

    message = ChatMessage(vendor_id=vendor_id, sender_id=principal.user_id, content=content)
    db.add(message)
    db.commit()
    db.refresh(message)

    if settings.NOTIFICATION_FANOUT_MODE == "queue":
        from app.workers.jobs import enqueue_notification_fanout
        enqueue_notification_fanout(message.id, principal.user_id)
    else:
        count = fan_out_notifications(db, message.id, principal.user_id)
        logger.debug(f"Message {message.id} notified {count} users", extra={"vendor_id": vendor_id})

    return message


def unread_counts(db: Session, user_id: int) -> Dict[int, int]:
    rows = (
        db.query(ChatMessage.vendor_id, func.count(ChatNotification.id))
        .join(ChatNotification, ChatNotification.message_id == ChatMessage.id)
        .filter(ChatNotification.user_id == user_id, ChatNotification.is_read.is_(False))
        .group_by(ChatMessage.vendor_id)
        .all()
    )
    return {vendor_id: count for vendor_id, count in rows}


def mark_read(db: Session, user_id: int, vendor_id: int) -> int:
    message_ids = db.query(ChatMessage.id).filter(ChatMessage.vendor_id == vendor_id)
    updated = (
        db.query(ChatNotification)
        .filter(
            ChatNotification.user_id == user_id,
            ChatNotification.is_read.is_(False),
            ChatNotification.message_id.in_(message_ids),
        )
        .update({ChatNotification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


def delete_vendor_chat(db: Session, vendor_id: int) -> int:
    """Delete notifications then messages for a vendor. Caller commits."""
    message_ids = db.query(ChatMessage.id).filter(ChatMessage.vendor_id == vendor_id)
    db.query(ChatNotification).filter(
        ChatNotification.message_id.in_(message_ids)
    ).delete(synchronize_session=False)
    return db.query(ChatMessage).filter(
        ChatMessage.vendor_id == vendor_id
    ).delete(synchronize_session=False)
