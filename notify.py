"""Notification sink: user-facing failure entries, stored in the error_logs collection."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, List, Optional

from models import ErrorLogEntry

log = logging.getLogger(__name__)


class NotificationSink:
    def __init__(self, store, bus=None, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.bus = bus
        self.clock = clock

    def emit(self, product_id: Optional[str], message: str) -> ErrorLogEntry:
        entry = ErrorLogEntry(
            id=uuid.uuid4().hex[:12],
            product_id=product_id,
            message=message,
            timestamp=self.clock(),
        )
        self.store.error_logs.put(entry)
        log.warning("%s", message, extra={"product": product_id or "-"})
        if self.bus is not None:
            self.bus.publish({"type": "notification", "entry": entry.model_dump()})
        return entry

    def list(self) -> List[ErrorLogEntry]:
        """Newest first."""
        return self.store.error_logs.list()

    def remove(self, entry_id: str) -> bool:
        return self.store.error_logs.delete(entry_id)

    def clear(self) -> None:
        self.store.error_logs.clear()
