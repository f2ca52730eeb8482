"""
Resilient client for the vendor chat SSE stream.

Keeps one stream open, watches heartbeats, reconnects with capped
exponential backoff and keeps a de-duplicated, time-ordered message list.
History is merged after every `connected` event so messages posted while
the client was reconnecting are not lost.
"""
import asyncio
import bisect
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from app.core.logging import get_logger

logger = get_logger(__name__)

WATCHDOG_INTERVAL = 5.0
HEARTBEAT_TIMEOUT = 20.0
REFRESH_MESSAGE = "Connection lost. Please refresh the page."


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay: float = 1.0
    max_delay: float = 10.0
    max_attempts: int = 10

    def delay(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


class StreamRejected(Exception):
    """The server refused the stream (401/403); retrying will not help."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Stream rejected with HTTP {status_code}")


OpenStream = Callable[[], AsyncIterator[Dict[str, Any]]]
FetchHistory = Callable[[], Awaitable[List[Dict[str, Any]]]]


class ChatStreamClient:
    def __init__(
        self,
        base_url: str,
        vendor_id: int,
        token: str,
        user_id: int,
        on_notify: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
        policy: Optional[ReconnectPolicy] = None,
        open_stream: Optional[OpenStream] = None,
        fetch_history: Optional[FetchHistory] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        watchdog_interval: float = WATCHDOG_INTERVAL,
        heartbeat_timeout: float = HEARTBEAT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.vendor_id = vendor_id
        self.token = token
        self.user_id = user_id
        self.policy = policy or ReconnectPolicy()
        self.watchdog_interval = watchdog_interval
        self.heartbeat_timeout = heartbeat_timeout

        self._on_notify = on_notify
        self._on_status = on_status
        self._open_stream = open_stream or self._http_events
        if fetch_history is None and open_stream is None:
            fetch_history = self._http_history
        self._fetch_history = fetch_history
        self._history_loaded = False
        self._owns_http = http_client is None and open_stream is None
        self._http = http_client
        self._sleep = sleep
        self._clock = clock

        self.status = ConnectionStatus.DISCONNECTED
        self.attempts = 0
        self.error: Optional[str] = None
        self.messages: List[Dict[str, Any]] = []
        self._keys: List[tuple] = []
        self._ids = set()
        self._last_heartbeat = clock()
        self._tasks: List[asyncio.Task] = []
        self._stopped = False

    # ----- public API -----

    async def run(self) -> None:
        """Connect and keep reconnecting until stopped or out of attempts."""
        while not self._stopped:
            self._set_status(ConnectionStatus.CONNECTING)
            try:
                await self._connect_once()
            except StreamRejected as exc:
                logger.warning(f"Chat stream for vendor {self.vendor_id} rejected: HTTP {exc.status_code}")
                self._give_up(f"Chat access denied (HTTP {exc.status_code}). Please refresh the page.")
                return
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(f"Chat stream for vendor {self.vendor_id} failed: {exc}")

            if self._stopped:
                break

            self.attempts += 1
            if self.attempts > self.policy.max_attempts:
                self._give_up(REFRESH_MESSAGE)
                return

            self._set_status(ConnectionStatus.DISCONNECTED)
            delay = self.policy.delay(self.attempts)
            logger.info(f"Reconnecting in {delay}s (attempt {self.attempts}/{self.policy.max_attempts})")
            await self._sleep(delay)

        self._set_status(ConnectionStatus.DISCONNECTED)

    async def stop(self) -> None:
        self._stopped = True
        await self._teardown()
        if self._owns_http and self._http is not None:
            await self._http.aclose()

    def add_message(self, message: Dict[str, Any]) -> bool:
        """Insert by (created_at, id) unless already present. Returns True if added."""
        if message["id"] in self._ids:
            return False
        key = (message["created_at"], message["id"])
        index = bisect.bisect(self._keys, key)
        self._keys.insert(index, key)
        self.messages.insert(index, message)
        self._ids.add(message["id"])
        return True

    # ----- connection lifecycle -----

    async def _connect_once(self) -> None:
        """Run reader and watchdog until either finishes, then tear both down."""
        await self._teardown()
        self._last_heartbeat = self._clock()

        reader = asyncio.create_task(self._read())
        watchdog = asyncio.create_task(self._watchdog())
        self._tasks = [reader, watchdog]
        try:
            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled():
                    task.result()
        finally:
            await self._teardown()

    async def _teardown(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _read(self) -> None:
        async for event in self._open_stream():
            self._handle(event)
            if event.get("type") == "connected" and self._fetch_history is not None:
                await self._backfill()

    async def _backfill(self) -> None:
        # The first load is the initial history and does not notify
        history = await self._fetch_history()
        for message in history:
            self._receive(message, notify=self._history_loaded)
        self._history_loaded = True

    async def _watchdog(self) -> None:
        while True:
            await asyncio.sleep(self.watchdog_interval)
            if self._clock() - self._last_heartbeat > self.heartbeat_timeout:
                logger.warning(f"No heartbeat for {self.heartbeat_timeout}s on vendor {self.vendor_id}")
                return

    def _handle(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "connected":
            self.attempts = 0
            self.error = None
            self._last_heartbeat = self._clock()
            self._set_status(ConnectionStatus.CONNECTED)
        elif event_type == "heartbeat":
            self._last_heartbeat = self._clock()
        elif event_type == "message":
            self._receive({k: v for k, v in event.items() if k != "type"})
        elif event_type == "error":
            logger.warning(f"Chat stream error event: {event.get('message')}")
        elif event_type == "info":
            logger.info(f"Chat stream info: {event.get('message')}")

    def _receive(self, message: Dict[str, Any], notify: bool = True) -> None:
        if not self.add_message(message) or not notify:
            return
        if message.get("sender_id") != self.user_id and self._on_notify is not None:
            self._on_notify(message)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        self.status = status
        if self._on_status is not None:
            self._on_status(status)

    def _give_up(self, message: str) -> None:
        self._stopped = True
        self.error = message
        self._set_status(ConnectionStatus.DISCONNECTED)

    # ----- default transport -----

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            # Reads block between events; the watchdog bounds staleness instead
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=5.0))
        return self._http

    async def _http_history(self) -> List[Dict[str, Any]]:
        response = await self._client().get(
            f"{self.base_url}/api/chat/{self.vendor_id}",
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=httpx.Timeout(10.0, connect=5.0),
        )
        if response.status_code in (401, 403):
            raise StreamRejected(response.status_code)
        response.raise_for_status()
        return response.json()

    async def _http_events(self) -> AsyncIterator[Dict[str, Any]]:
        url = f"{self.base_url}/api/chat/{self.vendor_id}/stream"
        async with self._client().stream(
            "GET", url, params={"token": self.token}, headers={"Accept": "text/event-stream"}
        ) as response:
            if response.status_code in (401, 403):
                raise StreamRejected(response.status_code)
            response.raise_for_status()

            async for line in response.aiter_lines():
                if line.startswith("data:"):
                    yield json.loads(line[len("data:"):].strip())
