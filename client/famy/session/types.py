"""Value types owned by the conversation session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    transcript: str
    parent_message_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Message:
    """One entry of the visible history: the user's prompt or the answer."""

    type: Literal["prompt", "response"]
    text: str
    tts_url: Optional[str] = None
