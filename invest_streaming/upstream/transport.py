"""
Thin adapter that wraps a ``websockets`` client connection behind an
event-handler surface: open / message / close / error notifications,
``send()`` with a completion callback, ``ping()``, ``close()`` and
``terminate()``.

The connection controller only ever talks to this surface, so tests can
swap in a scripted transport with the same methods.
"""
import asyncio
from typing import Any, Callable, Dict, Mapping, Optional, Set, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from invest_streaming.errors import TransportClosedError
from invest_streaming.models import ConnectionState
from invest_streaming.utils.logging import get_logger

logger = get_logger("upstream.transport")

Handler = Callable[..., Any]
SendCallback = Callable[[Optional[BaseException]], Any]

EVENTS = ("open", "message", "close", "error")

# Abnormal closure, as reported when the socket dies without a close frame
CLOSE_ABNORMAL = 1006


class WebSocketTransport:
    """
    One WebSocket connection attempt and its lifetime.

    Construction starts the handshake in a background task; it must
    happen on a running event loop. Notifications are delivered to at most
    one handler per event, synchronously from the reader task:

    - ``open()`` once the handshake completes
    - ``message(raw)`` for every inbound frame
    - ``close(code, reason)`` when the socket is closed by either side
    - ``error(exc)`` when the handshake fails
    """

    def __init__(
        self,
        url: str,
        *,
        handshake_timeout: float,
        compression: bool = False,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.url = url
        self.handshake_timeout = handshake_timeout
        self.compression = compression
        self.headers = dict(headers or {})

        self._handlers: Dict[str, Handler] = {}
        self._ws: Optional[ClientConnection] = None
        self._state = ConnectionState.CONNECTING
        self._tasks: Set[asyncio.Task] = set()

        self._reader = asyncio.get_running_loop().create_task(self._run())
        self._reader.add_done_callback(self._reader_done)

    @property
    def state(self) -> ConnectionState:
        return self._state

    # ------------------------------------------------------------------
    # Handler registration
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown transport event: {event}")
        self._handlers[event] = handler

    def off(self, event: str, handler: Handler) -> None:
        if self._handlers.get(event) == handler:
            del self._handlers[event]

    def _emit(self, event: str, *args: Any) -> None:
        handler = self._handlers.get(event)
        if handler is not None:
            handler(*args)

    # ------------------------------------------------------------------
    # Connection lifetime
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            self._ws = await connect(
                self.url,
                additional_headers=self.headers,
                compression="deflate" if self.compression else None,
                open_timeout=self.handshake_timeout,
                ping_interval=None,  # Liveness pings are sent by the controller
                ping_timeout=None,
                close_timeout=5.0,
                max_size=10 * 1024 * 1024,  # 10MB max message size
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._state = ConnectionState.CLOSED
            logger.warning(f"Handshake with {self.url} failed: {e!r}")
            self._emit("error", e)
            return

        if self._state is not ConnectionState.CONNECTING:
            # close() or terminate() won the race against the handshake
            self._ws.transport.abort()
            return

        self._state = ConnectionState.OPEN
        logger.info(f"Connected to {self.url}")
        self._emit("open")

        try:
            async for raw in self._ws:
                self._emit("message", raw)
        except ConnectionClosedError as e:
            logger.warning(f"Connection closed abnormally: {e}")
        except BaseException:
            self._ws.transport.abort()
            self._state = ConnectionState.CLOSED
            raise

        self._state = ConnectionState.CLOSED
        code = self._ws.close_code if self._ws.close_code is not None else CLOSE_ABNORMAL
        reason = self._ws.close_reason or ""
        logger.info(f"Connection to {self.url} closed ({code} {reason})".rstrip())
        self._emit("close", code, reason)

    def _reader_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.critical(f"Streaming connection aborted: {exc!r}", exc_info=exc)
        task.get_loop().call_exception_handler({
            "message": "Unrecoverable error in streaming connection",
            "exception": exc,
            "task": task,
        })

    def close(self) -> None:
        """Start the closing handshake; ``close`` is notified when done."""
        if self._state is ConnectionState.CONNECTING:
            # Nothing to shake hands with yet
            self._state = ConnectionState.CLOSED
            self._reader.cancel()
            asyncio.get_running_loop().call_soon(
                self._emit, "close", CLOSE_ABNORMAL,
                "closed before the connection was established",
            )
            return
        if self._state is ConnectionState.OPEN:
            self._state = ConnectionState.CLOSING
            self._spawn(self._ws.close())

    def terminate(self) -> None:
        """Drop the socket immediately, without notifications."""
        self._handlers.clear()
        self._state = ConnectionState.CLOSED
        if not self._reader.done():
            self._reader.cancel()
        if self._ws is not None:
            self._ws.transport.abort()

    async def wait_closed(self) -> None:
        """Wait until the reader task has finished."""
        await asyncio.gather(self._reader, return_exceptions=True)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, data: Union[str, bytes], callback: Optional[SendCallback] = None) -> None:
        """
        Send one frame; ``callback(error)`` runs once it is written.

        Raises:
            TransportClosedError: the socket is not open
        """
        if self._state is not ConnectionState.OPEN or self._ws is None:
            raise TransportClosedError(f"Cannot send on a {self._state.name} socket")
        task = self._spawn(self._ws.send(data))
        if callback is not None:
            task.add_done_callback(_completion(callback))

    def ping(self, payload: Union[str, bytes] = b"") -> None:
        """Send a liveness ping; the pong is not awaited."""
        if self._state is not ConnectionState.OPEN or self._ws is None:
            return
        self._spawn(self._ping(payload))

    async def _ping(self, payload: Union[str, bytes]) -> None:
        try:
            await self._ws.ping(payload)
            logger.debug("Ping sent")
        except ConnectionClosed as e:
            logger.debug(f"Ping failed: {e}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


def _completion(callback: SendCallback) -> Callable[[asyncio.Task], None]:
    def done(task: asyncio.Task) -> None:
        if task.cancelled():
            callback(asyncio.CancelledError())
        else:
            callback(task.exception())
    return done
