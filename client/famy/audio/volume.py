"""Bounded loudness metric for live level feedback."""

from __future__ import annotations

import numpy as np

from ..config import CONFIG


class VolumeMeter:
    """RMS over one block of samples, scaled by a fixed gain and capped at 1."""

    def __init__(self, gain: float = CONFIG.volume_gain) -> None:
        self.gain = float(gain)
        self._level = 0.0

    @property
    def level(self) -> float:
        return self._level

    def sample(self, frame) -> float:
        samples = self._normalize(frame)
        if samples.size == 0:
            self._level = 0.0
            return self._level
        rms = float(np.sqrt(np.mean(np.square(samples))))
        self._level = max(0.0, min(1.0, rms * self.gain))
        return self._level

    def reset(self) -> None:
        self._level = 0.0

    @staticmethod
    def _normalize(frame) -> np.ndarray:
        if isinstance(frame, (bytes, bytearray, memoryview)):
            data = np.frombuffer(frame, dtype=np.int16)
        else:
            data = np.asarray(frame)
        data = data.reshape(-1)
        if data.dtype == np.uint8:
            # analyser-style bytes centred on 128
            return (data.astype(np.float32) - 128.0) / 128.0
        if np.issubdtype(data.dtype, np.integer):
            scale = float(-np.iinfo(data.dtype).min)
            return data.astype(np.float32) / scale
        return np.clip(data.astype(np.float32, copy=False), -1.0, 1.0)


__all__ = ["VolumeMeter"]
