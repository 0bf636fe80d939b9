"""Offset-keyed reconciliation of out-of-order partial transcripts."""

from __future__ import annotations

from typing import Dict

from ..audio.types import TranscriptSegment


class TranscriptAssembler:
    """Folds segments into one ordered utterance.

    The latest text per start offset wins; the assembled value joins the
    non-empty texts by ascending offset with single spaces. Offsets are kept
    for the whole utterance until ``reset()``.
    """

    def __init__(self) -> None:
        self._segments: Dict[int, str] = {}
        self._text = ""

    def ingest(self, segment: TranscriptSegment) -> str:
        self._segments[int(segment.start_offset)] = segment.text
        self._text = self._assemble()
        return self._text

    def current_text(self) -> str:
        return self._text

    def reset(self) -> None:
        self._segments = {}
        self._text = ""

    def __len__(self) -> int:
        return len(self._segments)

    def _assemble(self) -> str:
        parts = []
        for offset in sorted(self._segments):
            text = self._segments[offset].strip()
            if text:
                parts.append(text)
        return " ".join(parts)


__all__ = ["TranscriptAssembler"]
