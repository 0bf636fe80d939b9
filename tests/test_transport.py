import base64
import json
import queue
import threading

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from client.famy.audio.types import AudioChunk
from client.famy.errors import TransportError
from client.famy.services.transport import SessionStatus, StreamingTransport, TransportEventKind

CLOSED = object()
DROPPED = object()


class FakeConnection:
    """Stands in for a websockets sync connection."""

    def __init__(self):
        self.inbox = queue.Queue()
        self.sent = []
        self.closed = False

    def push(self, payload):
        self.inbox.put(json.dumps(payload))

    def recv(self, timeout=None):
        try:
            item = self.inbox.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError
        if item is CLOSED:
            raise ConnectionClosedOK(None, None)
        if item is DROPPED:
            raise ConnectionClosedError(None, None)
        return item

    def send(self, data):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(data)

    def close(self):
        if not self.closed:
            self.closed = True
            self.inbox.put(CLOSED)


class Recorder:
    def __init__(self):
        self.events = []
        self.lock = threading.Lock()

    def __call__(self, event):
        with self.lock:
            self.events.append(event)

    def kinds(self):
        return [event.kind for event in self.events]


def make_transport(connection, listener, **kwargs):
    calls = {}

    def connect(url, open_timeout=None):
        calls["url"] = url
        return connection

    transport = StreamingTransport(
        listener,
        url="wss://stt.example.com/ws",
        connect=connect,
        poll_interval=0.01,
        close_timeout=0.2,
        **kwargs,
    )
    return transport, calls


def test_session_url_carries_rate_and_token():
    transport, calls = make_transport(FakeConnection(), Recorder())
    session = transport.open("tok123")
    assert calls["url"] == "wss://stt.example.com/ws?sample_rate=16000&token=tok123"
    session.close()
    session.join(1)


def test_segments_are_delivered_in_arrival_order_and_close_once():
    connection = FakeConnection()
    listener = Recorder()
    transport, _ = make_transport(connection, listener)
    session = transport.open("t")
    connection.push({"message_type": "SessionBegins"})
    connection.push({"audio_start": 1000, "text": "world"})
    connection.push({"audio_start": 0, "text": "Hello"})
    connection.inbox.put(CLOSED)
    session.join(1)
    session.close()

    assert listener.kinds() == [
        TransportEventKind.OPEN,
        TransportEventKind.SEGMENT,
        TransportEventKind.SEGMENT,
        TransportEventKind.CLOSE,
    ]
    offsets = [event.segment.start_offset for event in listener.events if event.segment]
    assert offsets == [1000, 0]
    assert session.status is SessionStatus.CLOSED


def test_send_encodes_base64_envelope():
    connection = FakeConnection()
    transport, _ = make_transport(connection, Recorder())
    transport.open("t")
    chunk = AudioChunk(data=b"\x01\x02\x03\x04", captured_at=0.0)
    assert transport.send(chunk) is True
    message = json.loads(connection.sent[0])
    assert base64.b64decode(message["audio_data"]) == b"\x01\x02\x03\x04"
    transport.close()
    transport.session.join(1)


def test_binary_encoding_sends_raw_bytes():
    connection = FakeConnection()
    transport, _ = make_transport(connection, Recorder(), encoding="binary")
    transport.open("t")
    transport.send(AudioChunk(data=b"\x00\x01", captured_at=0.0))
    assert connection.sent == [b"\x00\x01"]
    transport.close()
    transport.session.join(1)


def test_terminate_sends_message_then_times_out_to_local_close():
    connection = FakeConnection()
    listener = Recorder()
    transport, _ = make_transport(connection, listener)
    session = transport.open("t")
    transport.terminate()
    assert json.loads(connection.sent[-1]) == {"terminate_session": True}
    assert transport.send(AudioChunk(data=b"\x00\x00", captured_at=0.0)) is False
    session.join(2)
    assert connection.closed
    closes = [event for event in listener.events if event.kind is TransportEventKind.CLOSE]
    assert len(closes) == 1
    assert closes[0].reason == "terminate timeout"


def test_service_error_reports_error_then_close():
    connection = FakeConnection()
    listener = Recorder()
    transport, _ = make_transport(connection, listener)
    session = transport.open("t")
    connection.push({"error": "Invalid token"})
    session.join(1)
    assert listener.kinds()[-2:] == [TransportEventKind.ERROR, TransportEventKind.CLOSE]
    assert "Invalid token" in str(listener.events[-2].error)


def test_dropped_connection_is_an_error():
    connection = FakeConnection()
    listener = Recorder()
    transport, _ = make_transport(connection, listener)
    session = transport.open("t")
    connection.inbox.put(DROPPED)
    session.join(1)
    assert listener.kinds()[-2:] == [TransportEventKind.ERROR, TransportEventKind.CLOSE]


def test_malformed_message_is_ignored():
    connection = FakeConnection()
    listener = Recorder()
    transport, _ = make_transport(connection, listener)
    session = transport.open("t")
    connection.inbox.put("not json")
    connection.push({"audio_start": 0, "text": "ok"})
    connection.inbox.put(CLOSED)
    session.join(1)
    assert listener.kinds() == [TransportEventKind.OPEN, TransportEventKind.SEGMENT, TransportEventKind.CLOSE]


def test_open_failure_raises_transport_error():
    def connect(url, open_timeout=None):
        raise OSError("connection refused")

    transport = StreamingTransport(Recorder(), connect=connect)
    with pytest.raises(TransportError):
        transport.open("t")
    assert transport.session.status is SessionStatus.CLOSED


def test_opening_again_closes_previous_session():
    first, second = FakeConnection(), FakeConnection()
    connections = iter([first, second])
    listener = Recorder()
    transport = StreamingTransport(listener, connect=lambda url, open_timeout=None: next(connections), poll_interval=0.01)
    old = transport.open("a")
    new = transport.open("b")
    old.join(1)
    assert first.closed
    assert old.status is SessionStatus.CLOSED
    assert new.status is SessionStatus.OPEN
    assert new.session_id != old.session_id
    transport.close()
    new.join(1)
