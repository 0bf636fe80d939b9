"""Dataclasses shared across audio and transcript helpers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """One time slice of mono PCM handed from capture to transport."""

    data: bytes
    captured_at: float
    sample_rate: int = 16000
    channels: int = 1

    @property
    def duration_ms(self) -> int:
        frames = len(self.data) // (2 * self.channels)
        return int(frames * 1000 / self.sample_rate)


@dataclass(frozen=True, slots=True)
class TranscriptSegment:
    """Partial result keyed by its start offset (milliseconds) in the utterance."""

    start_offset: int
    text: str
