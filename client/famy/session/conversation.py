"""Conversation session: one control loop owning capture, transport and dispatch.

Every input (user commands, audio chunks, transport events, capture failures
and dispatch results) is posted to a single queue and handled in order on one
thread, so the state machine and the assembler are never mutated
concurrently. Tests call ``drain()`` instead of running the thread.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, List, Optional

from ..audio.recorder import CaptureController
from ..audio.types import AudioChunk
from ..errors import CaptureUnavailable, TokenError, TransportError
from ..services.dispatcher import ConversationDispatcher, DispatchOutcome
from ..services.logger import LogBuffer
from ..services.network import ApiClient
from ..services.transport import StreamingSession, StreamingTransport, TransportEvent, TransportEventKind
from ..services.uploader import RecordingUploader
from .assembler import TranscriptAssembler
from .state_machine import SessionEvent, SessionState, SessionStateMachine
from .types import ConversationTurn, Message

LOGGER = logging.getLogger("famy.session")


class EventKind(Enum):
    START = auto()
    STOP = auto()
    TOGGLE = auto()
    CANCEL = auto()
    RESET = auto()
    CHUNK = auto()
    CAPTURE_UNAVAILABLE = auto()
    TRANSPORT = auto()
    DISPATCH_RESULT = auto()
    SHUTDOWN = auto()


@dataclass(frozen=True, slots=True)
class ControlEvent:
    kind: EventKind
    payload: Any = None


class ConversationObserver:
    """Hooks for surfaces that render the session; all default to no-ops.

    ``on_level`` and ``on_elapsed`` are called from capture threads, the rest
    from the control thread.
    """

    def on_state_changed(self, state: SessionState) -> None:
        pass

    def on_transcript(self, text: str) -> None:
        pass

    def on_message(self, message: Message) -> None:
        pass

    def on_status(self, text: str) -> None:
        pass

    def on_level(self, level: float) -> None:
        pass

    def on_elapsed(self, seconds: int) -> None:
        pass


class ConversationSession:
    def __init__(
        self,
        client: ApiClient,
        logger: LogBuffer,
        *,
        observer: ConversationObserver | None = None,
        parent_message_id: Optional[str] = None,
        uploader: RecordingUploader | None = None,
        capture_factory=CaptureController,
        transport_factory=StreamingTransport,
        dispatch_spawn=None,
    ) -> None:
        self.client = client
        self.logger = logger
        self.observer = observer or ConversationObserver()
        self.initial_parent_message_id = parent_message_id
        self.parent_message_id = parent_message_id
        self.uploader = uploader
        self.messages: List[Message] = []
        self.machine = SessionStateMachine()
        self.assembler = TranscriptAssembler()
        self._events: queue.Queue[ControlEvent] = queue.Queue()
        # audio waits here in capture order; CHUNK events only signal that some arrived
        self._chunks: queue.Queue[AudioChunk] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._stream: StreamingSession | None = None
        self._finishing = False
        self._stream_failed = False
        self.capture = capture_factory(
            logger,
            self._on_chunk,
            on_unavailable=self._on_capture_unavailable,
            level_callback=self.observer.on_level,
            on_tick=self.observer.on_elapsed,
            keep_recording=uploader is not None,
        )
        self.transport = transport_factory(self._on_transport_event)
        dispatch_kwargs = {"spawn": dispatch_spawn} if dispatch_spawn is not None else {}
        self.dispatcher = ConversationDispatcher(client, logger, self._on_dispatch_result, **dispatch_kwargs)

    @property
    def state(self) -> SessionState:
        return self.machine.state

    # commands, safe from any thread

    def start_capture(self) -> None:
        self.post(EventKind.START)

    def stop_capture(self) -> None:
        self.post(EventKind.STOP)

    def toggle(self) -> None:
        self.post(EventKind.TOGGLE)

    def cancel_turn(self) -> None:
        # void the in-flight result now; the state change follows in order
        self.dispatcher.cancel()
        self.post(EventKind.CANCEL)

    def reset(self) -> None:
        self.dispatcher.cancel()
        self.post(EventKind.RESET)

    def post(self, kind: EventKind, payload: Any = None) -> None:
        self._events.put(ControlEvent(kind, payload))

    # control loop

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="conversation", daemon=True)
        self._thread.start()

    def shutdown(self, timeout: float = 2.0) -> None:
        if self._thread and self._thread.is_alive():
            self.post(EventKind.SHUTDOWN)
            self._thread.join(timeout)
        self._thread = None
        self.dispatcher.cancel()
        self.capture.stop()
        self._close_stream()

    def drain(self) -> int:
        """Handle every queued event on the calling thread."""
        handled = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return handled
            if event.kind is EventKind.SHUTDOWN:
                return handled
            self._handle(event)
            handled += 1

    def _run(self) -> None:
        while True:
            event = self._events.get()
            if event.kind is EventKind.SHUTDOWN:
                break
            self._handle(event)

    def _handle(self, event: ControlEvent) -> None:
        handler = self._handlers.get(event.kind)
        if handler is None:
            LOGGER.warning("No handler for %s", event.kind.name)
            return
        try:
            if event.payload is None:
                handler(self)
            else:
                handler(self, event.payload)
        except Exception:
            LOGGER.exception("Handler for %s failed", event.kind.name)
            self._recover()

    # callbacks from capture, transport and dispatch threads

    def _on_chunk(self, chunk: AudioChunk) -> None:
        self._chunks.put(chunk)
        self.post(EventKind.CHUNK)

    def _on_capture_unavailable(self, error: CaptureUnavailable) -> None:
        self.post(EventKind.CAPTURE_UNAVAILABLE, error)

    def _on_transport_event(self, event: TransportEvent) -> None:
        self.post(EventKind.TRANSPORT, event)

    def _on_dispatch_result(self, outcome: DispatchOutcome) -> None:
        self.post(EventKind.DISPATCH_RESULT, outcome)

    # handlers, control thread only

    def _handle_start(self) -> None:
        if not self.machine.can_start():
            self._status(f"Start ignored while {self.state.name.lower()}")
            return
        self.assembler.reset()
        self.observer.on_transcript("")
        self._discard_chunks()
        self._finishing = False
        self._stream_failed = False
        try:
            token = self.client.fetch_token()
        except TokenError as exc:
            self._status(f"Transcription unavailable: {exc}")
            return
        try:
            self._stream = self.transport.open(token)
        except TransportError as exc:
            self._status(str(exc))
            return
        if not self.capture.start():
            # the capture-unavailable event carries the user-facing status
            self._close_stream()
            return
        self._transition(SessionEvent.START_CAPTURE)

    def _handle_stop(self) -> None:
        if self.state is not SessionState.LISTENING or self._finishing:
            return
        self._finishing = True
        self._release_capture(keep_audio=True)
        if self._stream is None:
            self._archive_recording()
            self._finish_utterance()
            return
        self._stream.terminate()
        self._archive_recording()

    def _handle_toggle(self) -> None:
        if self.state is SessionState.IDLE:
            self._handle_start()
        elif self.state is SessionState.LISTENING:
            self._handle_stop()
        else:
            self._status("Processing; please wait for the answer")

    def _handle_chunk(self) -> None:
        if self.state is not SessionState.LISTENING or self._finishing or self._stream is None:
            return
        self._flush_chunks()

    def _handle_capture_unavailable(self, error: CaptureUnavailable) -> None:
        self._status(f"Microphone access is required for recording. ({error})")
        if self.state is not SessionState.LISTENING:
            return
        self._finishing = False
        self._release_capture(keep_audio=False)
        self._close_stream()
        self._transition(SessionEvent.CAPTURE_FAILED)

    def _handle_transport(self, event: TransportEvent) -> None:
        if event.session is not self._stream:
            LOGGER.debug("Ignoring %s from stale %r", event.kind.name, event.session)
            return
        if event.kind is TransportEventKind.SEGMENT:
            if self.state is SessionState.LISTENING and event.segment is not None:
                self.observer.on_transcript(self.assembler.ingest(event.segment))
        elif event.kind is TransportEventKind.ERROR:
            self._stream_failed = True
            self._status(f"Transcription error: {event.error}")
        elif event.kind is TransportEventKind.CLOSE:
            self._stream = None
            if self.state is not SessionState.LISTENING:
                return
            if self._finishing and not self._stream_failed:
                self._finish_utterance()
            else:
                self._abort_utterance("Transcription session lost; utterance discarded")
        else:
            self.logger.add("Transcription session open")

    def _handle_dispatch_result(self, outcome: DispatchOutcome) -> None:
        if not self.dispatcher.settle(outcome.token):
            LOGGER.info("Dropping stale result for turn #%s", outcome.token.token_id)
            return
        reply = outcome.reply
        self._append(Message("response", outcome.text, reply.tts_url if reply else None))
        if outcome.ok:
            if reply is not None and reply.message_id:
                self.parent_message_id = reply.message_id
            self._transition(SessionEvent.TURN_COMPLETED)
        else:
            self._transition(SessionEvent.TURN_FAILED)

    def _handle_cancel(self) -> None:
        self.dispatcher.cancel()
        if self.state is SessionState.PROCESSING:
            self._status("Turn cancelled")
            self._transition(SessionEvent.RESET)

    def _handle_reset(self) -> None:
        self.dispatcher.cancel()
        if self.state is SessionState.LISTENING:
            self._finishing = False
            self._release_capture(keep_audio=False)
            self._close_stream()
        self.assembler.reset()
        self.observer.on_transcript("")
        self.messages.clear()
        self.parent_message_id = self.initial_parent_message_id
        self._transition(SessionEvent.RESET)
        self.logger.add("Conversation reset")

    _handlers = {
        EventKind.START: _handle_start,
        EventKind.STOP: _handle_stop,
        EventKind.TOGGLE: _handle_toggle,
        EventKind.CANCEL: _handle_cancel,
        EventKind.RESET: _handle_reset,
        EventKind.CHUNK: _handle_chunk,
        EventKind.CAPTURE_UNAVAILABLE: _handle_capture_unavailable,
        EventKind.TRANSPORT: _handle_transport,
        EventKind.DISPATCH_RESULT: _handle_dispatch_result,
    }

    # helpers

    def _finish_utterance(self) -> None:
        self._finishing = False
        text = self.assembler.current_text()
        state = self._transition(SessionEvent.STOP_CAPTURE, transcript_ready=bool(text))
        if state is not SessionState.PROCESSING:
            self._status("No speech detected")
            return
        self._append(Message("prompt", text))
        token = self.dispatcher.dispatch(ConversationTurn(text, self.parent_message_id))
        if token is None:
            self._transition(SessionEvent.TURN_FAILED)

    def _abort_utterance(self, reason: str) -> None:
        self._finishing = False
        self._release_capture(keep_audio=False)
        self._close_stream()
        self._status(reason)
        self._transition(SessionEvent.TRANSPORT_FAILED)

    def _release_capture(self, *, keep_audio: bool) -> None:
        tail = self.capture.stop()
        if not keep_audio or self._stream is None:
            self._discard_chunks()
            return
        # capture has stopped, so every full slice is queued ahead of the tail
        self._flush_chunks()
        if tail is not None:
            self._stream.send(tail)

    def _flush_chunks(self) -> None:
        while True:
            try:
                chunk = self._chunks.get_nowait()
            except queue.Empty:
                return
            self._stream.send(chunk)

    def _discard_chunks(self) -> None:
        while True:
            try:
                self._chunks.get_nowait()
            except queue.Empty:
                return

    def _archive_recording(self) -> None:
        if self.uploader is None:
            return
        try:
            self.uploader.submit(self.capture.recording())
        except Exception:
            LOGGER.exception("Could not queue the recording for upload")
            self.logger.error("Recording could not be archived")

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def _recover(self) -> None:
        self.dispatcher.cancel()
        self._finishing = False
        self.capture.stop()
        self._discard_chunks()
        self._close_stream()
        self._transition(SessionEvent.RESET)

    def _transition(self, event: SessionEvent, *, transcript_ready: bool = False) -> SessionState:
        previous = self.state
        current = self.machine.on_event(event, transcript_ready=transcript_ready)
        if current is not previous:
            self.observer.on_state_changed(current)
        return current

    def _append(self, message: Message) -> None:
        self.messages.append(message)
        self.observer.on_message(message)

    def _status(self, text: str) -> None:
        self.logger.add(text)
        self.observer.on_status(text)


__all__ = ["ControlEvent", "ConversationObserver", "ConversationSession", "EventKind"]
