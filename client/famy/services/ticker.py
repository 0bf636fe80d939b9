"""Cancellable repeating tick used for the elapsed-time readout."""

from __future__ import annotations

import threading
from typing import Callable


class RepeatingTimer:
    """Calls ``callback(ticks)`` every ``interval`` seconds until cancelled.

    One instance covers one capture lifecycle. ``cancel()`` is idempotent and
    no tick is delivered once it returns.
    """

    def __init__(self, interval: float, callback: Callable[[int], None], *, name: str = "elapsed-ticker") -> None:
        self.interval = interval
        self.callback = callback
        self.name = name
        self.ticks = 0
        self._stop = threading.Event()
        self._lock = threading.RLock()
        self._thread: threading.Thread | None = None

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> bool:
        if self._stop.is_set():
            return False
        with self._lock:
            self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1)
        return True

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            with self._lock:
                if self._stop.is_set():
                    break
                self.ticks += 1
                ticks = self.ticks
                self.callback(ticks)


def format_elapsed(seconds: int) -> str:
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    return f"{minutes % 60:02d}:{secs:02d}"


__all__ = ["RepeatingTimer", "format_elapsed"]
