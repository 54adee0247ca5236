"""
Streaming connection lifecycle: connect, keepalive, teardown and reconnection.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Mapping, Optional

from invest_streaming.config import settings
from invest_streaming.events import Callback, Cancel, Listeners
from invest_streaming.models import ConnectionState, ConnectivityEvent
from invest_streaming.subscriptions.registry import SubscriptionRegistry
from invest_streaming.subscriptions.router import EventRouter
from invest_streaming.upstream.queue import Command, OutboundQueue
from invest_streaming.upstream.transport import WebSocketTransport
from invest_streaming.utils.logging import get_logger

logger = get_logger("upstream.connection")

# Not configurable; only the ping interval comes from settings
HANDSHAKE_TIMEOUT = 4.0

PING_PAYLOAD = b"ping"

TransportFactory = Callable[..., Any]


class StreamingConnection:
    """
    Owns the single socket shared by every subscription.

    - Idempotent ``connect()``
    - Full resubscription on every open, from the registry
    - Periodic liveness ping while a socket exists
    - Immediate reconnect after a drop, but only while subscriptions remain

    Transport faults never raise out of here; they become connectivity
    events and drive the reconnect-or-idle decision.
    """

    def __init__(
        self,
        url: str,
        registry: SubscriptionRegistry,
        router: EventRouter,
        headers: Optional[Mapping[str, str]] = None,
        transport_factory: TransportFactory = WebSocketTransport,
        ping_interval: Optional[float] = None,
    ):
        self.url = url
        self.headers = dict(headers or {})
        self.registry = registry
        self.router = router
        self.transport_factory = transport_factory
        self.ping_interval = settings.INVEST_PING_INTERVAL if ping_interval is None else ping_interval

        self.queue = OutboundQueue(on_idle=self._maybe_close)
        self.events: Dict[ConnectivityEvent, Listeners] = {
            event: Listeners() for event in ConnectivityEvent
        }

        # Connection state
        self._transport = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._close_requested = False

        # Stats
        self._connect_count = 0
        self._open_count = 0
        self._reconnect_count = 0
        self._last_message_time = 0.0
        self._messages_received = 0

    @property
    def transport(self):
        return self._transport

    @property
    def state(self) -> Optional[ConnectionState]:
        """Ready state of the current socket; None when there is none."""
        if self._transport is None:
            return None
        return self._transport.state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.OPEN

    def on(self, event: ConnectivityEvent, callback: Callback) -> Cancel:
        return self.events[ConnectivityEvent(event)].listen(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open a socket unless one is already connecting or open."""
        self._close_requested = False
        if self.state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return

        previous = self._transport
        if previous is not None:
            # Still closing; its notifications must not reach the new socket
            self._stop_keepalive()
            self._detach(previous)
            previous.terminate()

        logger.info(f"Connecting to {self.url}")
        transport = self.transport_factory(
            self.url,
            handshake_timeout=HANDSHAKE_TIMEOUT,
            compression=False,
            headers=self.headers,
        )
        self._transport = transport
        self._connect_count += 1
        self.queue.attach(transport)
        for event, handler in self._handlers().items():
            transport.on(event, handler)

    def close(self) -> None:
        """
        Close the socket once every queued command has been written.

        Used when the last subscription goes away; the resulting close
        notification finds no subscriptions and does not reconnect.
        """
        self._close_requested = True
        self._maybe_close()

    def _maybe_close(self) -> None:
        transport = self._transport
        if not self._close_requested or transport is None:
            return
        if transport.state is ConnectionState.OPEN and self.queue.busy:
            # on_idle brings us back here after the last send
            return
        self._close_requested = False
        logger.info("No active subscriptions, closing connection")
        transport.close()

    async def shutdown(self) -> None:
        """Close the socket for good, without notifications or reconnection."""
        self._close_requested = False
        self._stop_keepalive()
        transport = self._transport
        if transport is None:
            return
        self._detach(transport)
        self._transport = None
        self.queue.detach()
        self.queue.clear()
        transport.close()
        await transport.wait_closed()
        logger.info("Streaming connection stopped")

    def enqueue(self, command: Command) -> None:
        self.queue.enqueue(command)

    # ------------------------------------------------------------------
    # Transport notifications
    # ------------------------------------------------------------------

    def _handlers(self) -> Dict[str, Callable[..., None]]:
        return {
            "open": self._handle_open,
            "message": self._handle_message,
            "close": self._handle_close,
            "error": self._handle_error,
        }

    def _detach(self, transport) -> None:
        for event, handler in self._handlers().items():
            transport.off(event, handler)

    def _handle_open(self) -> None:
        self._open_count += 1
        if self._open_count > 1:
            self._reconnect_count += 1

        # Rebuild the backlog from the registry, not from whatever was queued
        records = self.registry.records()
        self.queue.replace(records)
        if records:
            logger.info(f"Resubscribing to {len(records)} channels")

        self.events[ConnectivityEvent.OPEN].emit()
        self.queue.drain()
        self._start_keepalive()

    def _handle_message(self, raw) -> None:
        self._last_message_time = time.time()
        self._messages_received += 1
        self.router.route(raw)

    def _handle_close(self, code: Optional[int] = None, reason: str = "") -> None:
        self.events[ConnectivityEvent.CLOSE].emit(code, reason)
        self._handle_error()

    def _handle_error(self, error: Optional[BaseException] = None) -> None:
        self._stop_keepalive()
        if error is not None:
            logger.warning(f"Connection error: {error!r}")
        self.events[ConnectivityEvent.ERROR].emit(error)

        transport = self._transport
        if transport is None:
            return
        self._detach(transport)
        if transport.state not in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return

        transport.terminate()
        self._transport = None
        self.queue.detach()

        if not len(self.registry):
            self.queue.clear()
            logger.info("No active subscriptions, staying disconnected")
            return

        logger.info(f"Reconnecting ({len(self.registry)} active subscriptions)")
        self.connect()

    # ------------------------------------------------------------------
    # Keepalive
    # ------------------------------------------------------------------

    def _start_keepalive(self) -> None:
        self._stop_keepalive()
        self._keepalive_task = asyncio.ensure_future(self._keepalive(self._transport))

    def _stop_keepalive(self) -> None:
        task = self._keepalive_task
        self._keepalive_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _keepalive(self, transport) -> None:
        """Ping the socket every interval for as long as it is the current one."""
        while transport is self._transport and transport.state is ConnectionState.OPEN:
            transport.ping(PING_PAYLOAD)
            await asyncio.sleep(self.ping_interval)

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        state = self.state
        return {
            "url": self.url,
            "state": state.name if state is not None else "ABSENT",
            "connect_count": self._connect_count,
            "reconnect_count": self._reconnect_count,
            "messages_received": self._messages_received,
            "commands_sent": self.queue.sent_count,
            "queue_length": len(self.queue),
            "active_subscriptions": len(self.registry),
            "last_message_ago": time.time() - self._last_message_time if self._last_message_time else None,
        }
