"""Streaming session to the realtime transcription service."""

from __future__ import annotations

import base64
import itertools
import json
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional
from urllib.parse import urlencode

from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException
from websockets.sync.client import connect as ws_connect

from ..audio.types import AudioChunk, TranscriptSegment
from ..config import CONFIG
from ..errors import TransportError
from ..schemas import AudioDataMessage, TerminateMessage, TranscriptMessage

LOGGER = logging.getLogger("famy.transport")


class SessionStatus(Enum):
    CONNECTING = auto()
    OPEN = auto()
    CLOSING = auto()
    CLOSED = auto()


class TransportEventKind(Enum):
    OPEN = auto()
    SEGMENT = auto()
    ERROR = auto()
    CLOSE = auto()


@dataclass(frozen=True, slots=True)
class TransportEvent:
    kind: TransportEventKind
    session: "StreamingSession"
    segment: Optional[TranscriptSegment] = None
    error: Optional[TransportError] = None
    reason: str = ""


Listener = Callable[[TransportEvent], None]


class StreamingSession:
    """One connection, never reopened once closed.

    A receiver thread turns inbound frames into ``SEGMENT`` events in arrival
    order and emits ``CLOSE`` exactly once, whatever ended the session.
    """

    _ids = itertools.count(1)

    def __init__(
        self,
        url: str,
        listener: Listener,
        *,
        encoding: str = CONFIG.audio_encoding,
        connect=ws_connect,
        open_timeout: float = CONFIG.connect_timeout,
        close_timeout: float = CONFIG.close_timeout,
        poll_interval: float = CONFIG.receive_poll,
    ) -> None:
        if encoding not in ("base64", "binary"):
            raise ValueError(f"unsupported audio encoding: {encoding}")
        self.session_id = next(StreamingSession._ids)
        self.url = url
        self.listener = listener
        self.encoding = encoding
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.poll_interval = poll_interval
        self.status = SessionStatus.CONNECTING
        self.sent_chunks = 0
        self._connect = connect
        self._connection = None
        self._thread: threading.Thread | None = None
        self._close_lock = threading.Lock()
        self._close_emitted = False
        self._terminate_deadline: float | None = None

    def __repr__(self) -> str:
        return f"<StreamingSession #{self.session_id} {self.status.name}>"

    def connect(self) -> None:
        try:
            self._connection = self._connect(self.url, open_timeout=self.open_timeout)
        except (OSError, WebSocketException) as exc:
            self.status = SessionStatus.CLOSED
            raise TransportError(f"Could not open transcription session: {exc}") from exc
        self.status = SessionStatus.OPEN
        LOGGER.info("Session #%s open", self.session_id)
        self._emit(TransportEvent(TransportEventKind.OPEN, self))
        self._thread = threading.Thread(
            target=self._receive_loop, name=f"transport-{self.session_id}", daemon=True
        )
        self._thread.start()

    def send(self, chunk: AudioChunk) -> bool:
        if self.status is not SessionStatus.OPEN:
            LOGGER.debug("Dropping chunk for %r", self)
            return False
        try:
            self._connection.send(self._encode(chunk))
        except ConnectionClosed as exc:
            # the receiver thread reports the close
            LOGGER.warning("Send on closed session #%s: %s", self.session_id, exc)
            return False
        self.sent_chunks += 1
        return True

    def terminate(self) -> None:
        """Signal end of utterance; the remote is expected to close the session."""
        if self.status is not SessionStatus.OPEN:
            return
        self._terminate_deadline = time.monotonic() + self.close_timeout
        self.status = SessionStatus.CLOSING
        try:
            self._connection.send(TerminateMessage().model_dump_json())
        except ConnectionClosed as exc:
            LOGGER.debug("Terminate on closed session #%s: %s", self.session_id, exc)

    def close(self) -> None:
        if self.status is SessionStatus.CLOSED:
            return
        self.status = SessionStatus.CLOSING
        if self._connection is not None:
            self._connection.close()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _encode(self, chunk: AudioChunk) -> bytes | str:
        if self.encoding == "binary":
            return chunk.data
        payload = base64.b64encode(chunk.data).decode("ascii")
        return AudioDataMessage(audio_data=payload).model_dump_json()

    def _receive_loop(self) -> None:
        reason = "remote closed"
        error: TransportError | None = None
        try:
            while True:
                try:
                    raw = self._connection.recv(timeout=self.poll_interval)
                except TimeoutError:
                    deadline = self._terminate_deadline
                    if deadline is not None and time.monotonic() >= deadline:
                        reason = "terminate timeout"
                        break
                    continue
                self._handle_message(raw)
        except ConnectionClosedOK:
            reason = "closed" if self.status is SessionStatus.CLOSING else "remote closed"
        except ConnectionClosed as exc:
            error = TransportError(f"Connection lost: {exc}")
        except TransportError as exc:
            error = exc
        except (OSError, WebSocketException) as exc:
            error = TransportError(str(exc))
        finally:
            self._connection.close()
            self.status = SessionStatus.CLOSED
            if error is not None:
                reason = "error"
                LOGGER.warning("Session #%s failed: %s", self.session_id, error)
                self._emit(TransportEvent(TransportEventKind.ERROR, self, error=error))
            self._emit_close(reason)

    def _handle_message(self, raw: bytes | str) -> None:
        try:
            message = TranscriptMessage.model_validate_json(raw)
        except ValidationError as exc:
            LOGGER.warning("Ignoring malformed message on session #%s: %s", self.session_id, exc)
            return
        if message.error:
            raise TransportError(f"Transcription service error: {message.error}")
        if message.audio_start is None:
            LOGGER.debug("Control message on session #%s: %s", self.session_id, message.message_type)
            return
        segment = TranscriptSegment(start_offset=message.audio_start, text=message.text)
        self._emit(TransportEvent(TransportEventKind.SEGMENT, self, segment=segment))

    def _emit_close(self, reason: str) -> None:
        with self._close_lock:
            if self._close_emitted:
                return
            self._close_emitted = True
        LOGGER.info("Session #%s closed (%s)", self.session_id, reason)
        self._emit(TransportEvent(TransportEventKind.CLOSE, self, reason=reason))

    def _emit(self, event: TransportEvent) -> None:
        try:
            self.listener(event)
        except Exception:
            LOGGER.exception("Transport listener failed for %s", event.kind.name)


class StreamingTransport:
    """Opens at most one live session at a time for the current utterance."""

    def __init__(
        self,
        listener: Listener,
        *,
        url: str = CONFIG.transcription_url,
        sample_rate: int = CONFIG.sample_rate,
        encoding: str = CONFIG.audio_encoding,
        connect=None,
        open_timeout: float = CONFIG.connect_timeout,
        close_timeout: float = CONFIG.close_timeout,
        poll_interval: float = CONFIG.receive_poll,
    ) -> None:
        self.listener = listener
        self.url = url
        self.sample_rate = sample_rate
        self.encoding = encoding
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.poll_interval = poll_interval
        self._connect = connect or ws_connect
        self.session: StreamingSession | None = None

    def session_url(self, token: str) -> str:
        query = urlencode({"sample_rate": self.sample_rate, "token": token})
        return f"{self.url}?{query}"

    def open(self, token: str) -> StreamingSession:
        current = self.session
        if current is not None and current.status is not SessionStatus.CLOSED:
            LOGGER.warning("%r still active; closing it before opening a new one", current)
            current.close()
        session = StreamingSession(
            self.session_url(token),
            self.listener,
            encoding=self.encoding,
            connect=self._connect,
            open_timeout=self.open_timeout,
            close_timeout=self.close_timeout,
            poll_interval=self.poll_interval,
        )
        self.session = session
        session.connect()
        return session

    def send(self, chunk: AudioChunk) -> bool:
        return self.session is not None and self.session.send(chunk)

    def terminate(self) -> None:
        if self.session is not None:
            self.session.terminate()

    def close(self) -> None:
        if self.session is not None:
            self.session.close()


__all__ = [
    "SessionStatus",
    "StreamingSession",
    "StreamingTransport",
    "TransportEvent",
    "TransportEventKind",
]
