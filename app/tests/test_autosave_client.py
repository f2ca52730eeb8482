"""
Tests for the debounced draft autosave client.
"""
import asyncio
import json

import httpx
import pytest

from app.client.autosave import DraftAutosaver, LocalDraftStore, SaveStatus

BASE_URL = "http://tracker.test"
VENDOR_ID = 4


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


class TestLocalDraftStore:
    def test_fresh_draft_round_trip(self, tmp_path):
        store = LocalDraftStore(tmp_path)
        store.save(VENDOR_ID, {"roi_score": 6})
        assert store.load_fresh(VENDOR_ID) == {"roi_score": 6}

    def test_stale_draft_ignored(self, tmp_path):
        clock = FakeClock()
        store = LocalDraftStore(tmp_path, clock=clock)
        store.save(VENDOR_ID, {"roi_score": 6})

        clock.now += 24 * 60 * 60

        assert store.load_fresh(VENDOR_ID) is None

    def test_corrupt_file_ignored(self, tmp_path):
        store = LocalDraftStore(tmp_path)
        store.path(VENDOR_ID).write_text("{not json", encoding="utf-8")
        assert store.load_fresh(VENDOR_ID) is None

    def test_clear(self, tmp_path):
        store = LocalDraftStore(tmp_path)
        store.save(VENDOR_ID, {})
        store.clear(VENDOR_ID)
        store.clear(VENDOR_ID)
        assert not store.path(VENDOR_ID).exists()


class TestDraftAutosaver:
    @pytest.mark.asyncio
    async def test_debounced_edits_post_once(self, tmp_path):
        posted = []

        def handler(request):
            posted.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 1})

        async with _client(handler) as http:
            saver = DraftAutosaver(http, VENDOR_ID, LocalDraftStore(tmp_path), debounce=0.02)
            saver.update({"experience_score": 1})
            saver.update({"experience_score": 2})
            await asyncio.sleep(0.1)

        assert posted == [{"vendor_id": VENDOR_ID, "data": {"experience_score": 2}}]
        assert saver.status is SaveStatus.SAVED
        assert saver.dirty is False
        assert saver.last_saved is not None

    @pytest.mark.asyncio
    async def test_offline_keeps_local_copy(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("network down", request=request)

        store = LocalDraftStore(tmp_path)
        async with _client(handler) as http:
            saver = DraftAutosaver(http, VENDOR_ID, store, debounce=10)
            saver.update({"roi_remark": "unsaved"})
            status = await saver.save_now()
            await saver.close()

        assert status is SaveStatus.OFFLINE
        assert saver.dirty is True
        assert store.load_fresh(VENDOR_ID) == {"roi_remark": "unsaved"}

    @pytest.mark.asyncio
    async def test_server_rejection_is_an_error(self, tmp_path):
        def handler(request):
            return httpx.Response(400, json={"error": "Cannot modify submitted evaluation"})

        async with _client(handler) as http:
            saver = DraftAutosaver(http, VENDOR_ID, LocalDraftStore(tmp_path), debounce=10)
            saver.update({"roi_score": 3})
            status = await saver.save_now()
            await saver.close()

        assert status is SaveStatus.ERROR
        assert saver.dirty is True

    @pytest.mark.asyncio
    async def test_close_flushes_pending_edit(self, tmp_path):
        posted = []

        def handler(request):
            posted.append(json.loads(request.content))
            return httpx.Response(200, json={"id": 1})

        async with _client(handler) as http:
            saver = DraftAutosaver(http, VENDOR_ID, LocalDraftStore(tmp_path), debounce=10)
            saver.update({"cost_structure_score": 8})
            await saver.close()

        assert len(posted) == 1
        assert saver.dirty is False

    @pytest.mark.asyncio
    async def test_load_prefers_fresh_local_draft(self, tmp_path):
        def handler(request):
            raise AssertionError("server should not be queried")

        store = LocalDraftStore(tmp_path)
        store.save(VENDOR_ID, {"roi_score": 9})
        async with _client(handler) as http:
            saver = DraftAutosaver(http, VENDOR_ID, store)
            assert await saver.load() == {"roi_score": 9}

    @pytest.mark.asyncio
    async def test_load_falls_back_to_server_when_local_is_stale(self, tmp_path):
        def handler(request):
            assert request.url.path == f"/api/evaluations/drafts/{VENDOR_ID}"
            return httpx.Response(200, json={"id": 1, "vendor_id": VENDOR_ID, "data": {"roi_score": 2}})

        clock = FakeClock()
        store = LocalDraftStore(tmp_path, clock=clock)
        store.save(VENDOR_ID, {"roi_score": 9})
        clock.now += 2 * 24 * 60 * 60

        async with _client(handler) as http:
            saver = DraftAutosaver(http, VENDOR_ID, store)
            assert await saver.load() == {"roi_score": 2}

    @pytest.mark.asyncio
    async def test_load_without_any_draft(self, tmp_path):
        def handler(request):
            return httpx.Response(404, json={"error": "No draft found"})

        async with _client(handler) as http:
            saver = DraftAutosaver(http, VENDOR_ID, LocalDraftStore(tmp_path))
            assert await saver.load() is None
