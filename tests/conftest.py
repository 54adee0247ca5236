"""
Shared fixtures: a scripted in-memory transport standing in for the socket.
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from invest_streaming import Streaming
from invest_streaming.models import ConnectionState


class FakeTransport:
    """
    Same surface as WebSocketTransport, driven by the test.

    ``open()``, ``receive()``, ``drop()`` and ``fail()`` fire the
    registered handlers synchronously, like the reader task does.
    Sends complete on the next loop iteration unless ``hold_sends`` is set.
    """

    def __init__(self, url, *, handshake_timeout, compression=False, headers=None):
        self.url = url
        self.handshake_timeout = handshake_timeout
        self.compression = compression
        self.headers = dict(headers or {})

        self.state = ConnectionState.CONNECTING
        self.handlers: Dict[str, Any] = {}
        self.sent: List[Dict[str, Any]] = []
        self.log: List[tuple] = []
        self.pings = 0
        self.terminated = False
        self.hold_sends = False
        self.send_error: Optional[BaseException] = None
        self._held: List[Any] = []

    def on(self, event, handler):
        self.handlers[event] = handler

    def off(self, event, handler):
        if self.handlers.get(event) == handler:
            del self.handlers[event]

    def _emit(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            handler(*args)

    # Scripted server side

    def open(self):
        self.state = ConnectionState.OPEN
        self._emit("open")

    def receive(self, message):
        raw = message if isinstance(message, (str, bytes)) else json.dumps(message)
        self._emit("message", raw)

    def drop(self, code=1006, reason=""):
        self.state = ConnectionState.CLOSED
        self._emit("close", code, reason)

    def fail(self, error):
        self.state = ConnectionState.CLOSED
        self._emit("error", error)

    def abort(self):
        # Reader died without a close notification
        self.state = ConnectionState.CLOSED

    def complete_sends(self):
        held, self._held = self._held, []
        for callback in held:
            callback(None)

    # Client side

    def send(self, data, callback=None):
        assert self.state is ConnectionState.OPEN, f"send on {self.state.name} socket"
        command = json.loads(data)
        self.sent.append(command)
        self.log.append(("send", command["event"]))
        if callback is None:
            return
        if self.hold_sends:
            self._held.append(callback)
        else:
            asyncio.get_running_loop().call_soon(callback, self.send_error)

    def ping(self, payload=b""):
        if self.state is ConnectionState.OPEN:
            self.pings += 1

    def close(self):
        self.log.append(("close",))
        loop = asyncio.get_running_loop()
        if self.state is ConnectionState.CONNECTING:
            self.state = ConnectionState.CLOSED
            loop.call_soon(self._emit, "close", 1006, "closed before the connection was established")
        elif self.state is ConnectionState.OPEN:
            self.state = ConnectionState.CLOSING
            loop.call_soon(self._finish_close)

    def _finish_close(self):
        self.state = ConnectionState.CLOSED
        self._emit("close", 1000, "")

    def terminate(self):
        self.handlers.clear()
        self.state = ConnectionState.CLOSED
        self.terminated = True

    async def wait_closed(self):
        await asyncio.sleep(0)

    @property
    def events_sent(self) -> List[str]:
        return [command["event"] for command in self.sent]


class TransportRecorder:
    """Transport factory that remembers every transport it built."""

    def __init__(self):
        self.created: List[FakeTransport] = []

    def __call__(self, url, **kwargs) -> FakeTransport:
        transport = FakeTransport(url, **kwargs)
        self.created.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.created[-1]


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Let pending call_soon callbacks and send completions run."""
    return _settle


@pytest.fixture
def transports():
    return TransportRecorder()


@pytest.fixture
def streaming(transports):
    return Streaming(
        url="wss://stream.test/ws",
        secret_token="t0ken",
        transport_factory=transports,
        ping_interval=0.01,
    )


@pytest.fixture
def fake_transport():
    """Stand-alone transport for queue tests."""
    return FakeTransport("wss://stream.test/ws", handshake_timeout=4.0)
