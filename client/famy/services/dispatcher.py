"""Sends one conversation turn at a time to the dialogue backend."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config import CONFIG
from ..errors import DispatchAborted, DispatchFailure
from ..schemas import DialogueReply
from ..session.types import ConversationTurn
from .logger import LogBuffer
from .network import ApiClient

LOGGER = logging.getLogger("famy.dispatch")


@dataclass(eq=False)
class DispatchToken:
    """Identifies one in-flight request; cancelling it aborts the request and voids its result."""

    turn: ConversationTurn
    token_id: int = field(default_factory=itertools.count(1).__next__)
    cancelled: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _loop: Optional[asyncio.AbstractEventLoop] = field(default=None, init=False, repr=False)
    _task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    def raise_if_cancelled(self) -> None:
        if self.cancelled.is_set():
            raise DispatchAborted(f"turn #{self.token_id} cancelled")

    def bind(self, loop: asyncio.AbstractEventLoop, task: asyncio.Task) -> None:
        """Attach the task running this turn; called from inside that task."""
        with self._lock:
            self.raise_if_cancelled()
            self._loop, self._task = loop, task

    def cancel(self) -> None:
        with self._lock:
            self.cancelled.set()
            loop, task = self._loop, self._task
        if task is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(task.cancel)
            except RuntimeError:
                LOGGER.debug("Turn #%s finished before it could be cancelled", self.token_id)


@dataclass(frozen=True)
class DispatchOutcome:
    token: DispatchToken
    text: str
    reply: Optional[DialogueReply] = None
    error: Optional[DispatchFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _spawn_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="dispatch", daemon=True).start()


class ConversationDispatcher:
    """Latched request runner: at most one turn is in flight.

    Each turn runs as an asyncio task on the worker's own event loop, so
    ``cancel()`` aborts the HTTP request as well as voiding the result.
    ``on_result`` receives a ``DispatchOutcome`` from the worker. The owner
    must call ``settle(token)`` before applying it; late or cancelled
    outcomes settle to ``False``.
    """

    def __init__(
        self,
        client: ApiClient,
        logger: LogBuffer,
        on_result: Callable[[DispatchOutcome], None],
        *,
        fallback_text: str = CONFIG.fallback_answer,
        spawn: Callable[[Callable[[], None]], None] = _spawn_thread,
    ) -> None:
        self.client = client
        self.logger = logger
        self.on_result = on_result
        self.fallback_text = fallback_text
        self._spawn = spawn
        self._lock = threading.Lock()
        self._in_flight: DispatchToken | None = None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    def dispatch(self, turn: ConversationTurn) -> Optional[DispatchToken]:
        with self._lock:
            if self._in_flight is not None:
                LOGGER.warning("Turn #%s still in flight; dispatch refused", self._in_flight.token_id)
                return None
            token = DispatchToken(turn)
            self._in_flight = token
        self.logger.add(f"Sending turn #{token.token_id}")
        self._spawn(lambda: self._run(token))
        return token

    def cancel(self) -> bool:
        with self._lock:
            token = self._in_flight
            self._in_flight = None
        if token is None:
            return False
        token.cancel()
        self.logger.add(f"Turn #{token.token_id} cancelled")
        return True

    def settle(self, token: DispatchToken) -> bool:
        """Release the latch if ``token`` is the live request."""
        with self._lock:
            if self._in_flight is not token or token.cancelled.is_set():
                return False
            self._in_flight = None
        return True

    async def _send(self, token: DispatchToken) -> DialogueReply:
        token.bind(asyncio.get_running_loop(), asyncio.current_task())
        return await self.client.send_turn(token.turn)

    def _run(self, token: DispatchToken) -> None:
        try:
            try:
                reply = asyncio.run(self._send(token))
            except asyncio.CancelledError:
                raise DispatchAborted(f"turn #{token.token_id} request aborted") from None
            except DispatchAborted:
                raise
            except Exception as exc:
                token.raise_if_cancelled()
                if not isinstance(exc, DispatchFailure):
                    LOGGER.exception("Unexpected error sending turn #%s", token.token_id)
                    exc = DispatchFailure(str(exc))
                self.logger.error(f"Turn #{token.token_id} failed: {exc}")
                outcome = DispatchOutcome(token, self.fallback_text, error=exc)
            else:
                token.raise_if_cancelled()
                outcome = DispatchOutcome(token, reply.answer, reply=reply)
        except DispatchAborted as exc:
            LOGGER.info("Dropping result: %s", exc)
            return
        self.on_result(outcome)


__all__ = ["ConversationDispatcher", "DispatchOutcome", "DispatchToken"]
