"""
Server-sent event stream of new chat messages for one vendor.

Each connection runs three asyncio tasks (message polling, heartbeat and
connection monitoring) that feed a single queue drained by `events()`.
"""
import asyncio
import json
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.services.chat import Cursor

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Timer drift allowed when deciding whether a heartbeat is due
HEARTBEAT_TOLERANCE = 0.05
STALE_HEARTBEAT_FACTOR = 3

_CLOSED = object()


class StreamState(str, Enum):
    INIT = "init"
    ESTABLISHED = "established"
    ACTIVE = "active"
    IDLE = "idle"
    CLOSED = "closed"


class StreamMessage(NamedTuple):
    cursor: Cursor
    payload: Dict[str, Any]


FetchMessages = Callable[[Optional[Cursor]], Awaitable[List[StreamMessage]]]


def format_sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatStreamConnection:
    """One open chat stream for (user, vendor)."""

    def __init__(
        self,
        user_id: int,
        vendor_id: int,
        fetch_messages: FetchMessages,
        cursor: Optional[Cursor] = None,
        check_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        max_age: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.user_id = user_id
        self.vendor_id = vendor_id
        self.cursor = cursor
        if check_interval is None:
            check_interval = settings.CHAT_MESSAGE_CHECK_INTERVAL
        if heartbeat_interval is None:
            heartbeat_interval = settings.CHAT_HEARTBEAT_INTERVAL
        if max_age is None:
            max_age = settings.CHAT_CONNECTION_MAX_AGE
        self.check_interval = check_interval
        self.heartbeat_interval = heartbeat_interval
        self.max_age = max_age

        self.log = get_logger(__name__, user_id=user_id, vendor_id=vendor_id)
        self._fetch = fetch_messages
        self._clock = clock
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

        self.state = StreamState.INIT
        self.connected_at = clock()
        self.last_heartbeat = self.connected_at

    @property
    def is_active(self) -> bool:
        return self.state in (StreamState.ESTABLISHED, StreamState.ACTIVE, StreamState.IDLE)

    def send(self, event_type: str, **data: Any) -> None:
        """Queue an event; silently ignored once the connection is closed."""
        if not self.is_active:
            return
        self._queue.put_nowait({"type": event_type, **data})

    def start(self) -> None:
        if self.state is not StreamState.INIT:
            return

        self.connected_at = self._clock()
        self.last_heartbeat = self.connected_at
        self.state = StreamState.ESTABLISHED
        self.send(
            "connected",
            timestamp=_timestamp(),
            user_id=self.user_id,
            vendor_id=self.vendor_id,
        )

        self._tasks = [
            asyncio.create_task(self._message_loop()),
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._monitor_loop()),
        ]
        self.state = StreamState.ACTIVE
        self.log.info("Chat stream opened", extra={"action": "stream_open"})

    def close(self) -> None:
        """Stop all timers and end the stream. Safe to call more than once."""
        if self.state is StreamState.CLOSED:
            return
        self.state = StreamState.CLOSED

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        self._queue.put_nowait(_CLOSED)

        self.log.info("Chat stream closed", extra={"action": "stream_close"})

    async def events(self):
        """Yield SSE-formatted events until the connection closes."""
        self.start()
        try:
            while True:
                event = await self._queue.get()
                if event is _CLOSED:
                    break
                yield format_sse(event)
        finally:
            self.close()

    async def _message_loop(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.check_interval)
            if not self.is_active:
                break

            try:
                messages = await self._fetch(self.cursor)
            except Exception as exc:
                self.log.warning(f"Message check failed: {exc}", extra={"action": "stream_poll"})
                self.send(
                    "error",
                    message="Error fetching messages",
                    timestamp=_timestamp(),
                    details=str(exc) if settings.DEBUG else None,
                )
                continue

            for message in messages:
                self.send("message", **message.payload)
                self.cursor = message.cursor

            if self.is_active:
                self.state = StreamState.ACTIVE if messages else StreamState.IDLE

    async def _heartbeat_loop(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.heartbeat_interval)
            now = self._clock()
            if now - self.last_heartbeat >= self.heartbeat_interval - HEARTBEAT_TOLERANCE:
                self.send(
                    "heartbeat",
                    timestamp=_timestamp(),
                    user_id=self.user_id,
                    vendor_id=self.vendor_id,
                )
                self.last_heartbeat = now

    async def _monitor_loop(self) -> None:
        while self.is_active:
            await asyncio.sleep(self.heartbeat_interval)
            now = self._clock()

            if now - self.last_heartbeat > self.heartbeat_interval * STALE_HEARTBEAT_FACTOR:
                self.log.info("Chat stream heartbeat stale")
                self.close()
                return

            if now - self.connected_at > self.max_age:
                self.send(
                    "info",
                    message="Connection timeout reached. Please reconnect.",
                    timestamp=_timestamp(),
                )
                self.close()
                return
