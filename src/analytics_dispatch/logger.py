from __future__ import annotations

import logging
import threading
from typing import List


class TrackingLogger:
    """Keeps channel-tagged tracking logs and mirrors them to `logging`."""

    def __init__(self, name: str = "analytics_dispatch") -> None:
        self._entries: List[str] = []
        self._lock = threading.Lock()
        self._log = logging.getLogger(name)

    def log(self, channel: str, message: str, *, level: int = logging.INFO) -> None:
        entry = f"> [{channel}] {message}"
        with self._lock:
            self._entries.append(entry)
        self._log.log(level, entry)

    def warning(self, channel: str, message: str) -> None:
        self.log(channel, message, level=logging.WARNING)

    @property
    def entries(self) -> List[str]:
        with self._lock:
            return list(self._entries)
