"""
Tests for the server-side chat SSE connection.
"""
import asyncio
import json
from datetime import datetime, timezone

import pytest

from app.core.config import settings
from app.services.chat_stream import ChatStreamConnection, StreamMessage, StreamState, format_sse

TIMEOUT = 2.0


def _parse(chunk: str) -> dict:
    assert chunk.startswith("data: ") and chunk.endswith("\n\n")
    return json.loads(chunk[len("data: "):])


def _message(message_id: int, content: str = "hello") -> StreamMessage:
    created_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return StreamMessage(
        (created_at, message_id),
        {"id": message_id, "vendor_id": 2, "content": content, "sender_id": 5,
         "created_at": created_at.isoformat()},
    )


class ScriptedFetch:
    """Returns (or raises) the scripted results in order, then empty lists."""

    def __init__(self, *results):
        self.results = list(results)
        self.cursors = []

    async def __call__(self, cursor):
        self.cursors.append(cursor)
        if not self.results:
            return []
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


async def _next_event(stream) -> dict:
    return _parse(await asyncio.wait_for(stream.__anext__(), TIMEOUT))


async def _next_of_type(stream, event_type: str) -> dict:
    while True:
        event = await _next_event(stream)
        if event["type"] == event_type:
            return event


def test_format_sse():
    assert format_sse({"type": "heartbeat"}) == 'data: {"type": "heartbeat"}\n\n'


class TestChatStreamConnection:
    @pytest.mark.asyncio
    async def test_connected_event_comes_first(self):
        conn = ChatStreamConnection(1, 2, ScriptedFetch(), check_interval=0.01,
                                    heartbeat_interval=10, max_age=100)
        stream = conn.events()

        event = await _next_event(stream)

        assert event["type"] == "connected"
        assert event["user_id"] == 1
        assert event["vendor_id"] == 2
        assert conn.is_active
        await stream.aclose()
        assert conn.state is StreamState.CLOSED

    @pytest.mark.asyncio
    async def test_new_messages_are_delivered_and_advance_cursor(self):
        fetch = ScriptedFetch([_message(7, "first"), _message(8, "second")])
        conn = ChatStreamConnection(1, 2, fetch, check_interval=0.01,
                                    heartbeat_interval=10, max_age=100)
        stream = conn.events()

        first = await _next_of_type(stream, "message")
        second = await _next_of_type(stream, "message")

        assert (first["id"], first["content"]) == (7, "first")
        assert second["id"] == 8
        assert conn.cursor[1] == 8
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_starts_from_given_cursor(self):
        start = (datetime(2024, 1, 1, tzinfo=timezone.utc), 3)
        fetch = ScriptedFetch()
        conn = ChatStreamConnection(1, 2, fetch, cursor=start, check_interval=0.01,
                                    heartbeat_interval=10, max_age=100)
        stream = conn.events()
        await _next_event(stream)

        while not fetch.cursors:
            await asyncio.sleep(0.01)

        assert fetch.cursors[0] == start
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_fetch_error_reported_and_polling_continues(self):
        fetch = ScriptedFetch(RuntimeError("db down"), [_message(9)])
        conn = ChatStreamConnection(1, 2, fetch, check_interval=0.01,
                                    heartbeat_interval=10, max_age=100)
        stream = conn.events()
        await _next_event(stream)

        error = await _next_event(stream)
        message = await _next_event(stream)

        assert error["type"] == "error"
        assert error["message"] == "Error fetching messages"
        assert message["type"] == "message"
        assert message["id"] == 9
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_heartbeats_are_sent(self):
        conn = ChatStreamConnection(1, 2, ScriptedFetch(), check_interval=10,
                                    heartbeat_interval=0.05, max_age=100)
        stream = conn.events()
        await _next_event(stream)

        heartbeat = await _next_event(stream)

        assert heartbeat["type"] == "heartbeat"
        assert heartbeat["vendor_id"] == 2
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_max_age_sends_info_and_ends_stream(self):
        conn = ChatStreamConnection(1, 2, ScriptedFetch(), check_interval=10,
                                    heartbeat_interval=0.02, max_age=0.05)

        events = []

        async def drain():
            async for chunk in conn.events():
                events.append(_parse(chunk))

        await asyncio.wait_for(drain(), TIMEOUT)

        assert events[0]["type"] == "connected"
        assert events[-1]["type"] == "info"
        assert events[-1]["message"] == "Connection timeout reached. Please reconnect."
        assert conn.state is StreamState.CLOSED

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_silences_send(self):
        conn = ChatStreamConnection(1, 2, ScriptedFetch(), check_interval=10,
                                    heartbeat_interval=10, max_age=100)
        conn.start()
        tasks = list(conn._tasks)

        conn.close()
        conn.close()
        conn.send("message", id=1)
        await asyncio.gather(*tasks, return_exceptions=True)

        assert all(task.done() for task in tasks)
        drained = []
        while not conn._queue.empty():
            drained.append(conn._queue.get_nowait())
        # connected event plus a single end-of-stream marker
        assert len(drained) == 2
        assert drained[0]["type"] == "connected"

    @pytest.mark.asyncio
    async def test_send_before_start_is_ignored(self):
        conn = ChatStreamConnection(1, 2, ScriptedFetch())
        conn.send("heartbeat")
        assert conn._queue.empty()

    @pytest.mark.asyncio
    async def test_stale_heartbeat_closes_stream(self):
        now = [0.0]
        conn = ChatStreamConnection(1, 2, ScriptedFetch(), check_interval=10,
                                    heartbeat_interval=0.02, max_age=100, clock=lambda: now[0])
        conn.start()
        heartbeat_task = conn._tasks[1]
        heartbeat_task.cancel()
        now[0] = 3 * 0.02 + 1

        events = []

        async def drain():
            async for chunk in conn.events():
                events.append(_parse(chunk))

        await asyncio.wait_for(drain(), TIMEOUT)

        assert [e["type"] for e in events] == ["connected"]
        assert conn.state is StreamState.CLOSED

    @pytest.mark.asyncio
    async def test_zero_intervals_are_kept(self):
        conn = ChatStreamConnection(1, 2, ScriptedFetch(), check_interval=0,
                                    heartbeat_interval=0.0, max_age=0)
        assert (conn.check_interval, conn.heartbeat_interval, conn.max_age) == (0, 0.0, 0)

    @pytest.mark.asyncio
    async def test_unset_intervals_use_settings(self):
        conn = ChatStreamConnection(1, 2, ScriptedFetch())
        assert conn.check_interval == settings.CHAT_MESSAGE_CHECK_INTERVAL
        assert conn.heartbeat_interval == settings.CHAT_HEARTBEAT_INTERVAL
        assert conn.max_age == settings.CHAT_CONNECTION_MAX_AGE
