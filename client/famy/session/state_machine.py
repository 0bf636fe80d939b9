"""Idle / Listening / Processing gate for conversation turns."""

from __future__ import annotations

import logging
from enum import Enum, auto

LOGGER = logging.getLogger("famy.state")


class SessionState(Enum):
    IDLE = auto()
    LISTENING = auto()
    PROCESSING = auto()


class SessionEvent(Enum):
    START_CAPTURE = auto()     # user asked to record
    STOP_CAPTURE = auto()      # utterance finished; transcript readiness decides the branch
    CAPTURE_FAILED = auto()    # microphone denied or lost
    TRANSPORT_FAILED = auto()  # transcription session lost mid-utterance
    TURN_COMPLETED = auto()
    TURN_FAILED = auto()
    RESET = auto()             # cancellation or conversation reset


class SessionStateMachine:
    """Single source of truth for the session phase.

    Every (state, event) pair has a defined next state; pairs not listed
    below leave the state unchanged. Processing is only reachable from
    Listening with a non-empty transcript.
    """

    def __init__(self) -> None:
        self.state = SessionState.IDLE

    def on_event(self, event: SessionEvent, *, transcript_ready: bool = False) -> SessionState:
        previous = self.state
        self.state = self._next(previous, event, transcript_ready)
        if previous is not self.state:
            LOGGER.info("State %s -> %s on %s", previous.name, self.state.name, event.name)
        elif event is SessionEvent.START_CAPTURE and previous is SessionState.PROCESSING:
            LOGGER.info("START_CAPTURE rejected while a turn is in flight")
        return self.state

    def can_start(self) -> bool:
        return self.state is SessionState.IDLE

    @staticmethod
    def _next(state: SessionState, event: SessionEvent, transcript_ready: bool) -> SessionState:
        if state is SessionState.IDLE:
            if event is SessionEvent.START_CAPTURE:
                return SessionState.LISTENING
            return state
        if state is SessionState.LISTENING:
            if event is SessionEvent.STOP_CAPTURE:
                return SessionState.PROCESSING if transcript_ready else SessionState.IDLE
            if event in (SessionEvent.CAPTURE_FAILED, SessionEvent.TRANSPORT_FAILED, SessionEvent.RESET):
                return SessionState.IDLE
            return state
        if event in (SessionEvent.TURN_COMPLETED, SessionEvent.TURN_FAILED, SessionEvent.RESET):
            return SessionState.IDLE
        return state


__all__ = ["SessionEvent", "SessionState", "SessionStateMachine"]
