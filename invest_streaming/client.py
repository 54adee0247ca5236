"""
Public streaming API: market-data subscriptions over one shared socket.
"""
from typing import Any, Dict, Mapping, Optional, Union

from invest_streaming.config import settings
from invest_streaming.events import Callback, Cancel, Listeners
from invest_streaming.models import (
    CandleInterval,
    ChannelKind,
    ChannelParams,
    ConnectivityEvent,
    SubscriptionKey,
)
from invest_streaming.subscriptions.registry import SubscriptionRegistry
from invest_streaming.subscriptions.router import EventRouter
from invest_streaming.upstream.connection import StreamingConnection, TransportFactory
from invest_streaming.upstream.transport import WebSocketTransport
from invest_streaming.utils.logging import get_logger

logger = get_logger("client")


def auth_headers(secret_token: str) -> Dict[str, str]:
    """Headers sent with the WebSocket handshake."""
    return {
        "Authorization": f"Bearer {secret_token}",
        "Content-Type": "application/json",
    }


def _log_payload(payload: Dict[str, Any], meta: Dict[str, Any]) -> None:
    logger.info(f"{payload} (server time {meta.get('serverTime')})")


class Streaming:
    """
    Market-data streaming client.

    Every subscription shares one WebSocket. The socket is opened by the
    first subscription, restored with all subscriptions after a drop, and
    closed once the last subscription is cancelled.

    Must be used from code running on an asyncio event loop; callbacks are
    invoked on that loop, never synchronously from a subscribe call or from
    message parsing.

    Example:
        streaming = Streaming(secret_token=token)
        cancel = streaming.orderbook("BBG000B9XRY4", lambda ob, meta: print(ob["bids"]))
        ...
        cancel()
    """

    def __init__(
        self,
        url: Optional[str] = None,
        secret_token: Optional[str] = None,
        *,
        transport_factory: TransportFactory = WebSocketTransport,
        ping_interval: Optional[float] = None,
    ):
        self.url = url or settings.INVEST_STREAMING_URL
        self.secret_token = settings.INVEST_SECRET_TOKEN if secret_token is None else secret_token

        self.registry = SubscriptionRegistry()
        self.errors = Listeners()
        self.router = EventRouter(self.registry, self.errors)
        self.connection = StreamingConnection(
            self.url,
            self.registry,
            self.router,
            headers=auth_headers(self.secret_token),
            transport_factory=transport_factory,
            ping_interval=ping_interval,
        )

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    def connect(self) -> None:
        """Open the socket if it is not already connecting or open."""
        self.connection.connect()

    def subscribe(
        self,
        kind: Union[ChannelKind, str],
        params: Union[ChannelParams, Mapping[str, Any]],
        callback: Callback,
    ) -> Cancel:
        """
        Subscribe a callback to a channel.

        The callback receives ``(payload, {"serverTime": ...})`` for every
        update. Subscriptions with equal channel parameters share one wire
        subscription.

        Returns:
            Zero-argument function that cancels this subscription
        """
        key = SubscriptionKey.for_channel(kind, params)
        self.connection.connect()

        subscriber, first = self.registry.add(key, callback)
        if first:
            self.connection.enqueue(self.registry.record(key))
            logger.info(f"Subscribed to {key}")

        cancelled = False

        def unsubscribe() -> None:
            nonlocal cancelled
            if cancelled:
                return
            cancelled = True
            if not self.registry.remove(key, subscriber):
                return
            self.connection.enqueue(key.unsubscribe_command())
            logger.info(f"Unsubscribed from {key}")
            if not len(self.registry):
                self.connection.close()

        return unsubscribe

    def orderbook(self, figi: str, callback: Optional[Callback] = None, depth: int = 3) -> Cancel:
        """Subscribe to order book updates of an instrument."""
        return self.subscribe(
            ChannelKind.ORDERBOOK, {"figi": figi, "depth": depth}, callback or _log_payload
        )

    def candle(
        self,
        figi: str,
        callback: Optional[Callback] = None,
        interval: Union[CandleInterval, str] = CandleInterval.MIN_1,
    ) -> Cancel:
        """Subscribe to candles of an instrument at the given interval."""
        return self.subscribe(
            ChannelKind.CANDLE, {"figi": figi, "interval": interval}, callback or _log_payload
        )

    def instrument_info(self, figi: str, callback: Optional[Callback] = None) -> Cancel:
        """Subscribe to instrument metadata updates (trading status, limits)."""
        return self.subscribe(
            ChannelKind.INSTRUMENT_INFO, {"figi": figi}, callback or _log_payload
        )

    def on_streaming_error(self, callback: Callback) -> Cancel:
        """
        Receive errors reported by the streaming service, e.g. an unknown
        figi in a subscription. The callback gets ``(payload, meta)``.
        """
        return self.errors.listen(callback)

    def on(self, event: Union[ConnectivityEvent, str], callback: Callback) -> Cancel:
        """Listen for socket-open / socket-close / socket-error."""
        return self.connection.on(ConnectivityEvent(event), callback)

    async def stop(self) -> None:
        """Drop every subscription and close the socket without reconnecting."""
        self.registry.clear()
        await self.connection.shutdown()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.connection.get_stats()
        stats["subscriptions"] = [str(key) for key in self.registry.keys()]
        return stats
