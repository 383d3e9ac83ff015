"""In-process broadcast channel so every open view sees the same state.

Subscribers (SSE streams, the CLI's progress printer) each get a bounded
queue.  Publishing never blocks: a subscriber that falls behind loses events
rather than stalling the pipeline.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Dict, List

log = logging.getLogger(__name__)


class EventBus:
    def __init__(self, maxsize: int = 500) -> None:
        self.maxsize = maxsize
        self._subscribers: List[queue.Queue] = []
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def publish(self, event: Dict[str, Any]) -> None:
        event.setdefault("ts", time.time())
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                log.debug("Subscriber queue full, dropping %s event", event.get("type"))

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
