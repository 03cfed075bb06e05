"""
Progress channel for grouping runs.

Provides:
  - ProgressBus singleton that services use to publish ProgressEvents
  - subscribers (e.g. a push-notification transport) receive events through
    an asyncio.Queue per run id; late subscribers first get the run history
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from requirements_hub.models.enums import ProgressEventType
from requirements_hub.models.schemas import ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

_LOG_LEVELS = {
    ProgressEventType.WARNING: logging.WARNING,
    ProgressEventType.ERROR: logging.ERROR,
}


class ProgressBus:
    """
    In-process event bus keyed by run id.
    Events are kept in order, e.g.:
        { "type": "start",    "message": "...", "timestamp": "..." }
        { "type": "progress", "message": "...", "step": 2, "total": 7 }
        { "type": "success",  "message": "..." }
    """

    _instance: ProgressBus | None = None

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self._history: dict[str, list[ProgressEvent]] = {}

    @classmethod
    def get(cls) -> ProgressBus:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ── Subscriber management ────────────────────────────

    def subscribe(self, run_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._history.get(run_id, []):
            queue.put_nowait(event)
        self._subscribers.setdefault(run_id, []).append(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(run_id, [])
        if queue in queues:
            queues.remove(queue)

    # ── Publishing ───────────────────────────────────────

    def emit(self, run_id: str, event: ProgressEvent) -> None:
        self._history.setdefault(run_id, []).append(event)
        for queue in self._subscribers.get(run_id, []):
            queue.put_nowait(event)

    def history(self, run_id: str) -> list[ProgressEvent]:
        return list(self._history.get(run_id, []))

    def callback_for(self, run_id: str) -> ProgressCallback:
        """Return a ProgressCallback that publishes into *run_id*."""
        return lambda event: self.emit(run_id, event)

    def clear(self, run_id: str) -> None:
        self._history.pop(run_id, None)


class ProgressReporter:
    """Builds ProgressEvents and forwards them to an optional callback."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback

    def __call__(
        self,
        type_: ProgressEventType,
        message: str,
        step: int | None = None,
        total: int | None = None,
    ) -> None:
        logger.log(_LOG_LEVELS.get(type_, logging.INFO), f"[PROGRESS] {message}")
        if self._callback is None:
            return
        event = ProgressEvent(type=type_, message=message, step=step, total=total)
        try:
            self._callback(event)
        except Exception as exc:
            # listener errors never stop a run
            logger.warning(f"[PROGRESS] Listener failed: {exc}")
