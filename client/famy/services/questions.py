"""Interview prompts shown alongside the recorder."""

from __future__ import annotations

from typing import List, Sequence

from ..errors import ApiError
from .logger import LogBuffer
from .network import ApiClient

DEFAULT_QUESTIONS = (
    "How would you introduce yourself, including your name, age, and a brief overview of your life, "
    "to someone who has never met you?",
    "Where are you currently in your life's journey, and how do you feel about the path you've traveled so far?",
    "Can you share a quick preview of what readers might expect to discover in your memoir?",
    "How do you hope to connect with your readers through your life's story?",
    "What prompted you to write your memoir at this particular point in your life?",
    "What are some life lessons you've learned that you find crucial to share in your foreword?",
    "What message or feeling do you want to leave your readers with as they begin reading your memoir?",
)


class QuestionDeck:
    def __init__(self, questions: Sequence[str] = DEFAULT_QUESTIONS) -> None:
        self._questions: List[str] = list(questions) or list(DEFAULT_QUESTIONS)
        self.index = 0

    def __len__(self) -> int:
        return len(self._questions)

    @property
    def current(self) -> str:
        return self._questions[self.index]

    def label(self) -> str:
        return f"Question {self.index + 1}/{len(self._questions)}:\n\n {self.current}"

    def next(self) -> str:
        self.index = (self.index + 1) % len(self._questions)
        return self.current

    def previous(self) -> str:
        self.index = (self.index - 1 + len(self._questions)) % len(self._questions)
        return self.current

    def load(self, client: ApiClient, session_id: str, logger: LogBuffer) -> bool:
        try:
            questions = client.fetch_questions(session_id)
        except ApiError as exc:
            logger.error(f"Error fetching questions: {exc}")
            return False
        if not questions:
            logger.warning("Question list empty; keeping defaults")
            return False
        self._questions = list(questions)
        self.index = 0
        logger.add(f"Questions fetched: {len(questions)}")
        return True


__all__ = ["DEFAULT_QUESTIONS", "QuestionDeck"]
