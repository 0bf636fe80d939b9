"""Background worker that archives finished recordings to the backend."""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from pathlib import Path

import numpy as np
import soundfile as sf

from ..config import CONFIG
from ..errors import ApiError
from .logger import LogBuffer
from .network import ApiClient

LOGGER = logging.getLogger("famy.upload")


class RecordingUploader:
    """Takes raw 16-bit PCM from the session; WAV writing and upload happen on the worker."""

    def __init__(
        self,
        client: ApiClient,
        logger: LogBuffer,
        output_dir: Path,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
        sample_rate: int = CONFIG.sample_rate,
    ) -> None:
        self.client = client
        self.logger = logger
        self.output_dir = Path(output_dir)
        self.user_id = user_id
        self.session_id = session_id
        self.sample_rate = sample_rate
        self._pending: queue.Queue[bytes] = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._seq = itertools.count(1)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="recording-uploader", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)

    def submit(self, pcm: bytes) -> bool:
        if not pcm:
            self.logger.warning("Recorded audio is empty.")
            return False
        self._pending.put(bytes(pcm))
        return True

    def upload_pending(self) -> int:
        """Save and upload everything queued so far on the calling thread."""
        count = 0
        while True:
            try:
                pcm = self._pending.get_nowait()
            except queue.Empty:
                return count
            if self._process(pcm):
                count += 1

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                pcm = self._pending.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self._process(pcm)
            except Exception:  # best effort; keep the worker alive
                LOGGER.exception("Recording upload failed")

    def _process(self, pcm: bytes) -> bool:
        try:
            path = self._write(pcm)
        except (OSError, RuntimeError) as exc:  # soundfile errors subclass RuntimeError
            self.logger.error(f"Could not save recording: {exc}")
            return False
        return self._upload(path)

    def _write(self, pcm: bytes) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"recording_{int(time.time() * 1000)}_{next(self._seq)}.wav"
        samples = np.frombuffer(pcm, dtype=np.int16)
        sf.write(str(path), samples, self.sample_rate, format="WAV", subtype="PCM_16")
        return path

    def _upload(self, path: Path) -> bool:
        try:
            self.logger.add(f"Uploading {path.name}...")
            self.client.upload_recording(str(path), user_id=self.user_id, session_id=self.session_id)
        except ApiError as exc:
            self.logger.error(f"Upload failed ({path.name}): {exc}")
            return False
        path.unlink(missing_ok=True)
        self.logger.add(f"Audio uploaded ({path.name})")
        return True


__all__ = ["RecordingUploader"]
