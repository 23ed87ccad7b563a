"""Progress side channel — per-session event queues for live stage updates.

A transport (the SSE endpoint in ``api.py``) opens a session when a client
connects and closes it on disconnect. The orchestrator only ever sees a
``reporter(session_id)`` callable; publishing never blocks, and events for
sessions nobody is listening to are dropped.
"""

from __future__ import annotations

import logging
import queue
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from .schemas import ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ProgressRegistry:
    def __init__(self, max_events: int = 64) -> None:
        self._max_events = max_events
        self._lock = threading.Lock()
        self._sessions: dict[str, queue.Queue[ProgressEvent]] = {}

    def open(self, session_id: str) -> queue.Queue[ProgressEvent]:
        with self._lock:
            channel = self._sessions.get(session_id)
            if channel is None:
                channel = queue.Queue(maxsize=self._max_events)
                self._sessions[session_id] = channel
                logger.debug("Progress session opened: %s", session_id)
            return channel

    def close(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is not None:
                logger.debug("Progress session closed: %s", session_id)

    @contextmanager
    def session(self, session_id: str) -> Iterator[queue.Queue[ProgressEvent]]:
        channel = self.open(session_id)
        try:
            yield channel
        finally:
            self.close(session_id)

    def is_open(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def publish(self, event: ProgressEvent) -> bool:
        """Queue an event for its session. Returns False if it was dropped."""
        with self._lock:
            channel = self._sessions.get(event.session_id)
        if channel is None:
            return False
        try:
            channel.put_nowait(event)
        except queue.Full:
            logger.debug("Progress queue full for %s, dropping %s", event.session_id, event.stage)
            return False
        return True

    def reporter(self, session_id: str | None) -> ProgressCallback | None:
        """Callback for ``Orchestrator.extract_*(progress=...)``; None without a session."""
        if not session_id:
            return None

        def _report(event: ProgressEvent) -> None:
            self.publish(event.model_copy(update={"session_id": session_id}))

        return _report
