"""
Background job definitions.
"""
from redis import Redis
from rq import Queue

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

NOTIFICATION_QUEUE = "notifications"


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Queue(name, connection=redis_conn)


# ============= JOB FUNCTIONS =============

def fan_out_chat_notifications_job(message_id: int, sender_id: int) -> int:
    """Background job to create unread notifications for a chat message."""
    from app.db.session import get_db_context
    from app.db.models import ChatMessage
    from app.services.chat import fan_out_notifications

    with get_db_context() as db:
        if not db.query(ChatMessage.id).filter(ChatMessage.id == message_id).first():
            # Chat was cleared before the job ran
            logger.warning(f"Message {message_id} no longer exists; skipping fan-out")
            return 0
        count = fan_out_notifications(db, message_id, sender_id)

    logger.info(f"Fanned out message {message_id} to {count} users")
    return count


# ============= QUEUE HELPERS =============

def enqueue_notification_fanout(message_id: int, sender_id: int):
    """Queue notification fan-out for a chat message."""
    queue = get_queue(NOTIFICATION_QUEUE)
    return queue.enqueue(fan_out_chat_notifications_job, message_id, sender_id)
