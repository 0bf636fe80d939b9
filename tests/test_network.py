import asyncio
import json

import httpx
import pytest

from client.famy.errors import ApiError, DispatchFailure, TokenError
from client.famy.services.network import ApiClient
from client.famy.session.types import ConversationTurn


def make_client(handler):
    transport = httpx.MockTransport(handler)
    return ApiClient("https://api.example.com", client=httpx.Client(transport=transport), async_transport=transport)


def test_fetch_token_success():
    def handler(request):
        assert request.method == "GET"
        assert request.url.path == "/get_token"
        return httpx.Response(200, json={"token": "abc"})

    assert make_client(handler).fetch_token() == "abc"


def test_fetch_token_error_payload():
    def handler(request):
        return httpx.Response(200, json={"error": "quota exceeded"})

    with pytest.raises(TokenError) as excinfo:
        make_client(handler).fetch_token()
    assert "quota exceeded" in str(excinfo.value)


def test_fetch_token_error_payload_with_server_status():
    def handler(request):
        return httpx.Response(500, json={"error": "upstream down"})

    with pytest.raises(TokenError, match="upstream down"):
        make_client(handler).fetch_token()


def test_fetch_token_network_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TokenError):
        make_client(handler).fetch_token()


def test_send_turn_posts_text_and_parent():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"answer": "Nice to meet you", "messageId": "m2", "ttsUrl": "https://tts/x.mp3"})

    reply = asyncio.run(make_client(handler).send_turn(ConversationTurn("Hello my world", "m1")))
    assert seen["path"] == "/conversation"
    assert seen["body"] == {"text": "Hello my world", "parentMessageId": "m1"}
    assert reply.answer == "Nice to meet you"
    assert reply.message_id == "m2"
    assert reply.tts_url == "https://tts/x.mp3"


def test_send_turn_omits_missing_parent():
    def handler(request):
        assert json.loads(request.content) == {"text": "hi"}
        return httpx.Response(200, json={"answer": "hey", "messageId": "m1"})

    assert asyncio.run(make_client(handler).send_turn(ConversationTurn("hi"))).tts_url is None


def test_send_turn_failure_raises_dispatch_failure():
    def handler(request):
        return httpx.Response(502)

    with pytest.raises(DispatchFailure, match="502"):
        asyncio.run(make_client(handler).send_turn(ConversationTurn("hi")))


def test_send_turn_invalid_body():
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(DispatchFailure):
        asyncio.run(make_client(handler).send_turn(ConversationTurn("hi")))


def test_upload_recording_names_file(tmp_path):
    def handler(request):
        assert request.url.path == "/upload_audio"
        body = request.content.decode("utf-8", errors="ignore")
        assert "User:u1|Session:s1|recording.wav" in body
        return httpx.Response(200, json={"status": "ok"})

    audio = tmp_path / "rec.wav"
    audio.write_bytes(b"RIFF")
    resp = make_client(handler).upload_recording(str(audio), user_id="u1", session_id="s1")
    assert resp == {"status": "ok"}


def test_fetch_questions():
    def handler(request):
        assert request.url.params["session_id"] == "s9"
        return httpx.Response(200, json=[{"text": "Who are you?"}, {"text": "Why now?"}])

    assert make_client(handler).fetch_questions("s9") == ["Who are you?", "Why now?"]


def test_fetch_questions_error():
    def handler(request):
        return httpx.Response(404)

    with pytest.raises(ApiError, match="404"):
        make_client(handler).fetch_questions("s9")
