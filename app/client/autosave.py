"""
Evaluation draft autosave client.

Edits are debounced and posted to the autosave endpoint; every save is also
mirrored to a local JSON file so work survives network outages.
"""
import asyncio
import json
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx

from app.core.logging import get_logger

logger = get_logger(__name__)

DEBOUNCE_SECONDS = 2.0
LOCAL_DRAFT_MAX_AGE = 24 * 60 * 60


class SaveStatus(str, Enum):
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"
    OFFLINE = "offline"


class LocalDraftStore:
    """One JSON file per vendor holding {evaluation, timestamp}."""

    def __init__(
        self,
        directory: Path,
        max_age: float = LOCAL_DRAFT_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.max_age = max_age
        self._clock = clock

    def path(self, vendor_id: int) -> Path:
        return self.directory / f"evaluation-draft-{vendor_id}.json"

    def save(self, vendor_id: int, evaluation: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = {"evaluation": evaluation, "timestamp": self._clock()}
        self.path(vendor_id).write_text(json.dumps(payload, default=str), encoding="utf-8")

    def load_fresh(self, vendor_id: int) -> Optional[Dict[str, Any]]:
        """The stored draft if it is younger than `max_age`, else None."""
        path = self.path(vendor_id)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            age = self._clock() - float(payload["timestamp"])
            evaluation = payload["evaluation"]
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Ignoring unreadable local draft {path.name}: {exc}")
            return None
        if age >= self.max_age:
            return None
        return evaluation

    def clear(self, vendor_id: int) -> None:
        self.path(vendor_id).unlink(missing_ok=True)


class DraftAutosaver:
    """
    Debounced autosave for one vendor's evaluation.

    `client` must already carry the base URL and the Authorization header.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        vendor_id: int,
        store: LocalDraftStore,
        debounce: float = DEBOUNCE_SECONDS,
    ):
        self.client = client
        self.vendor_id = vendor_id
        self.store = store
        self.debounce = debounce

        self.status = SaveStatus.SAVED
        self.last_saved: Optional[datetime] = None
        self.dirty = False
        self._data: Dict[str, Any] = {}
        self._pending: Optional[asyncio.Task] = None

    def update(self, data: Dict[str, Any]) -> None:
        """Record an edit and (re)start the debounce timer."""
        self._data = dict(data)
        self.dirty = True
        self._cancel_pending()
        self._pending = asyncio.create_task(self._save_later())

    async def _save_later(self) -> None:
        await asyncio.sleep(self.debounce)
        self._pending = None
        await self.save_now()

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def save_now(self) -> SaveStatus:
        self.status = SaveStatus.SAVING
        data = dict(self._data)
        self.store.save(self.vendor_id, data)

        try:
            response = await self.client.post(
                "/api/evaluations/autosave",
                json={"vendor_id": self.vendor_id, "data": data},
            )
            response.raise_for_status()
        except httpx.TransportError as exc:
            logger.warning(f"Autosave offline for vendor {self.vendor_id}: {exc}")
            self.status = SaveStatus.OFFLINE
            return self.status
        except httpx.HTTPStatusError as exc:
            logger.warning(f"Autosave rejected for vendor {self.vendor_id}: HTTP {exc.response.status_code}")
            self.status = SaveStatus.ERROR
            return self.status

        if data == self._data:
            self.dirty = False
        self.status = SaveStatus.SAVED
        self.last_saved = datetime.now(timezone.utc)
        return self.status

    async def load(self) -> Optional[Dict[str, Any]]:
        """A fresh local draft wins; otherwise fetch the server draft."""
        local = self.store.load_fresh(self.vendor_id)
        if local is not None:
            self._data = dict(local)
            return local

        try:
            response = await self.client.get(f"/api/evaluations/drafts/{self.vendor_id}")
        except httpx.TransportError as exc:
            logger.warning(f"Could not fetch server draft for vendor {self.vendor_id}: {exc}")
            self.status = SaveStatus.OFFLINE
            return None

        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()["data"]
        self._data = dict(data)
        return data

    async def close(self) -> None:
        """Flush unsaved edits before shutting down."""
        self._cancel_pending()
        if self.dirty:
            await self.save_now()
