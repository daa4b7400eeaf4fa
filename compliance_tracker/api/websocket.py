"""
WebSocket support for real-time dashboard updates.

Provides:
  - StoreNotifier, a store listener that broadcasts every committed action
  - WebSocket clients connect via /api/dashboard/ws to get live updates
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from compliance_tracker.models.schemas import DashboardModel
from compliance_tracker.models.state import DashboardState

logger = logging.getLogger(__name__)


class StoreNotifier:
    """
    In-process event bus between the store and WebSocket clients.
    Every connected client receives JSON messages like:
        { "event": "commit", "action": "create_requirement", "version": 4, "ts": "..." }
        { "event": "import_finished", "admitted": 500, "rejected": 2, "version": 5 }
    New clients are replayed the most recent events first.
    """

    def __init__(self, history_size: int = 50) -> None:
        self._clients: list[WebSocket] = []
        self._history: deque[dict[str, Any]] = deque(maxlen=history_size)
        self._loop: asyncio.AbstractEventLoop | None = None

    def set_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def client_count(self) -> int:
        return len(self._clients)

    # ── Client management ────────────────────────────────

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._clients.append(ws)
        for msg in list(self._history):
            await ws.send_json(msg)

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self._clients:
            self._clients.remove(ws)

    # ── Broadcasting (thread-safe; dispatch runs off the event loop) ──

    def emit(self, event: dict[str, Any]) -> None:
        event.setdefault("ts", datetime.now(timezone.utc).isoformat())
        self._history.append(event)

        if not self._clients:
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            return

        asyncio.run_coroutine_threadsafe(self._broadcast(event), loop)

    async def _broadcast(self, event: dict[str, Any]) -> None:
        dead: list[WebSocket] = []
        for ws in list(self._clients):
            try:
                await ws.send_json(event)
            except Exception as exc:
                logger.debug(f"Dropping WebSocket client: {exc}")
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)

    # ── Store listener ───────────────────────────────────

    def on_commit(self, state: DashboardState, action: DashboardModel) -> None:
        action_type = getattr(action, "type", type(action).__name__)
        self.emit({"event": "commit", "action": action_type, "version": state.version})

    def on_import_finished(self, admitted: int, rejected: int, version: int) -> None:
        self.emit({"event": "import_finished", "admitted": admitted, "rejected": rejected, "version": version})
        logger.info(f"Import finished: {admitted} admitted, {rejected} rejected (v{version})")
