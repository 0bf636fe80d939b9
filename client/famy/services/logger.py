"""Activity log kept in memory for display and mirrored to ``logging``."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import List

LOGGER = logging.getLogger("famy")


class LogBuffer:
    def __init__(self, max_lines: int = 200, *, logger: logging.Logger | None = None) -> None:
        self._lines: deque[str] = deque(maxlen=max(1, int(max_lines)))
        self._lock = threading.Lock()
        self._logger = logger or LOGGER

    def add(self, message: str, level: int = logging.INFO) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        with self._lock:
            self._lines.append(f"[{stamp}] {message}")
        self._logger.log(level, message)

    def warning(self, message: str) -> None:
        self.add(message, logging.WARNING)

    def error(self, message: str) -> None:
        self.add(message, logging.ERROR)

    def get(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()


__all__ = ["LogBuffer"]
