"""Microphone capture with fixed time-slice chunk output."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np

from ..config import CONFIG
from ..errors import CaptureUnavailable
from ..services.logger import LogBuffer
from ..services.ticker import RepeatingTimer
from .types import AudioChunk
from .volume import VolumeMeter

LOGGER = logging.getLogger("famy.capture")

SAMPLE_WIDTH = 2


class CaptureController:
    """Owns the input device between ``start()`` and ``stop()``.

    Chunks of ``time_slice_ms`` are handed to ``on_chunk`` from the audio
    thread. Device denial or loss is reported through ``on_unavailable`` and
    never raised to the caller.
    """

    def __init__(
        self,
        logger: LogBuffer,
        on_chunk: Callable[[AudioChunk], None],
        *,
        on_unavailable: Callable[[CaptureUnavailable], None] | None = None,
        level_callback: Callable[[float], None] | None = None,
        on_tick: Callable[[int], None] | None = None,
        sample_rate: int = CONFIG.sample_rate,
        channels: int = CONFIG.channels,
        time_slice_ms: int = CONFIG.time_slice_ms,
        block_ms: int = CONFIG.level_block_ms,
        tick_seconds: float = CONFIG.elapsed_tick_seconds,
        keep_recording: bool = False,
        backend=None,
    ) -> None:
        self.logger = logger
        self.on_chunk = on_chunk
        self.on_unavailable = on_unavailable
        self.level_callback = level_callback
        self.on_tick = on_tick
        self.sample_rate = sample_rate
        self.channels = channels
        self.time_slice_ms = time_slice_ms
        self.frames_per_block = max(1, int(sample_rate * block_ms / 1000))
        self.bytes_per_slice = int(sample_rate * time_slice_ms / 1000) * channels * SAMPLE_WIDTH
        self.tick_seconds = tick_seconds
        self.keep_recording = keep_recording
        self.meter = VolumeMeter()
        self._sd = backend if backend is not None else self._try_import_sounddevice()
        self._lock = threading.Lock()
        self._stream = None
        self._stopping = False
        self._pending = bytearray()
        self._slice_started: float | None = None
        self._recording = bytearray()
        self._ticker: RepeatingTimer | None = None

    def _try_import_sounddevice(self):
        try:
            import sounddevice as sd  # type: ignore

            return sd
        except Exception as exc:  # PortAudio missing raises OSError on import
            LOGGER.warning("sounddevice unavailable: %s", exc)
            return None

    @property
    def is_capturing(self) -> bool:
        return self._stream is not None

    def start(self) -> bool:
        if self._stream is not None:
            self.logger.warning("Capture already running; start rejected")
            return False
        if self._sd is None:
            self._fail(CaptureUnavailable("No audio input backend available"))
            return False
        with self._lock:
            self._stopping = False
            self._pending = bytearray()
            self._recording = bytearray()
            self._slice_started = None
        self.meter.reset()
        try:
            stream = self._sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=self.frames_per_block,
                callback=self._callback,
                finished_callback=self._on_finished,
            )
            # assigned before start so a device lost during startup is reported
            self._stream = stream
            stream.start()
        except Exception as exc:  # PortAudioError, permission denial, missing device
            with self._lock:
                self._stopping = True
            self._stream = None
            self._fail(CaptureUnavailable(f"Microphone unavailable: {exc}"))
            return False
        self._ticker = RepeatingTimer(self.tick_seconds, self._tick)
        self._ticker.start()
        self.logger.add("Recording started")
        return True

    def stop(self) -> Optional[AudioChunk]:
        """Release the device and return the trailing partial chunk, if any."""
        stream = self._stream
        if stream is None:
            return None
        with self._lock:
            self._stopping = True
        self._stream = None
        try:
            stream.stop()
            stream.close()
        except Exception as exc:  # device may already be gone
            LOGGER.warning("Error releasing input stream: %s", exc)
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        with self._lock:
            final = self._take_slice(len(self._pending)) if self._pending else None
        self.meter.reset()
        self._report_level(0.0)
        self.logger.add("Recording stopped")
        return final

    def recording(self) -> bytes:
        with self._lock:
            return bytes(self._recording)

    def _callback(self, indata, frames: int, time_info, status) -> None:
        if status:
            LOGGER.warning("Input status: %s", status)
        self._report_level(self.meter.sample(indata))
        data = np.asarray(indata, dtype=np.int16).tobytes()
        ready: list[AudioChunk] = []
        with self._lock:
            if self._stopping:
                return
            if self._slice_started is None:
                self._slice_started = time.time()
            self._pending.extend(data)
            if self.keep_recording:
                self._recording.extend(data)
            while len(self._pending) >= self.bytes_per_slice:
                ready.append(self._take_slice(self.bytes_per_slice))
        for chunk in ready:
            try:
                self.on_chunk(chunk)
            except Exception:  # keep the audio thread alive
                LOGGER.exception("Chunk handler failed")

    def _take_slice(self, size: int) -> AudioChunk:
        payload = bytes(self._pending[:size])
        del self._pending[:size]
        started = self._slice_started if self._slice_started is not None else time.time()
        chunk = AudioChunk(
            data=payload,
            captured_at=started,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        self._slice_started = started + chunk.duration_ms / 1000.0 if self._pending else None
        return chunk

    def _on_finished(self) -> None:
        if self._stopping or self._stream is None:
            return
        self._fail(CaptureUnavailable("Input device stopped unexpectedly"))

    def _tick(self, seconds: int) -> None:
        if self.on_tick:
            self.on_tick(seconds)

    def _report_level(self, level: float) -> None:
        if not self.level_callback:
            return
        self.level_callback(max(0.0, min(1.0, level)))

    def _fail(self, error: CaptureUnavailable) -> None:
        self.logger.error(str(error))
        if self.on_unavailable:
            self.on_unavailable(error)


__all__ = ["CaptureController"]
