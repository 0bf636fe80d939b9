"""HTTP client for the token, dialogue and recording endpoints."""

from __future__ import annotations

from typing import List, Optional

import httpx
from pydantic import ValidationError

from ..config import CONFIG
from ..errors import ApiError, DispatchFailure, TokenError
from ..schemas import DialogueReply, DialogueRequest, QuestionItem, TokenResponse
from ..session.types import ConversationTurn


class ApiClient:
    """Blocking calls share one ``httpx.Client``.

    ``send_turn`` is a coroutine on a short-lived ``httpx.AsyncClient`` so a
    cancelled dispatch task aborts the request itself.
    """

    def __init__(
        self,
        host: str = CONFIG.api_host,
        *,
        timeout: float = CONFIG.http_timeout,
        dispatch_timeout: float = CONFIG.dispatch_timeout,
        client: Optional[httpx.Client] = None,
        async_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self.dispatch_timeout = dispatch_timeout
        self._client = client or httpx.Client(timeout=timeout)
        self._async_transport = async_transport

    def _url(self, path: str) -> str:
        base = self.host.rstrip("/")
        if not base:
            raise ApiError("API host missing")
        return f"{base}{path}"

    def fetch_token(self) -> str:
        try:
            resp = self._client.get(self._url("/get_token"))
        except (httpx.HTTPError, ApiError) as exc:
            raise TokenError(f"Token request failed: {exc}") from exc
        try:
            payload = TokenResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            if resp.is_error:
                raise TokenError(f"Token request failed: {resp.status_code}") from exc
            raise TokenError(f"Invalid token response: {exc}") from exc
        # error payloads win over the status code so the service message reaches the user
        if payload.error:
            raise TokenError(payload.error)
        if resp.is_error:
            raise TokenError(f"Token request failed: {resp.status_code}")
        if not payload.token:
            raise TokenError("Token endpoint returned no token")
        return payload.token

    async def send_turn(self, turn: ConversationTurn) -> DialogueReply:
        body = DialogueRequest(text=turn.transcript, parent_message_id=turn.parent_message_id)
        try:
            async with httpx.AsyncClient(timeout=self.dispatch_timeout, transport=self._async_transport) as client:
                resp = await client.post(
                    self._url("/conversation"),
                    json=body.model_dump(by_alias=True, exclude_none=True),
                )
            resp.raise_for_status()
            return DialogueReply.model_validate_json(resp.content)
        except httpx.TimeoutException as exc:
            raise DispatchFailure("Conversation request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise DispatchFailure(f"Conversation failed: {exc.response.status_code}") from exc
        except ValidationError as exc:
            raise DispatchFailure(f"Invalid response: {exc}") from exc
        except (httpx.HTTPError, ApiError) as exc:
            raise DispatchFailure(str(exc)) from exc

    def upload_recording(self, file_path: str, *, user_id: str | None, session_id: str | None) -> dict:
        name = f"User:{user_id}|Session:{session_id}|recording.wav"
        try:
            with open(file_path, "rb") as fh:
                files = {"file": (name, fh, "audio/wav")}
                resp = self._client.post(self._url("/upload_audio"), files=files)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ApiError(f"Upload failed: {exc.response.status_code}") from exc
        except (httpx.HTTPError, OSError) as exc:
            raise ApiError(str(exc)) from exc
        try:
            return resp.json()
        except ValueError:
            return {}

    def fetch_questions(self, session_id: str) -> List[str]:
        try:
            resp = self._client.get(self._url("/get_questions"), params={"session_id": session_id})
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise ApiError(f"Questions error: {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ApiError(str(exc)) from exc
        if not isinstance(data, list):
            raise ApiError("Questions payload is not a list")
        try:
            return [QuestionItem.model_validate(item).text for item in data]
        except ValidationError as exc:
            raise ApiError(f"Invalid questions: {exc}") from exc

    def close(self) -> None:
        self._client.close()


__all__ = ["ApiClient", "ApiError"]
