"""
Market-data streaming client.

Multiplexes order book, candle and instrument-info subscriptions over one
persistent WebSocket with automatic resubscription and keepalive.
"""
from .client import Streaming, auth_headers
from .errors import ContractViolation, StreamingError, TransportClosedError, UnknownEventError
from .models import CandleInterval, ChannelKind, ConnectionState, ConnectivityEvent, SubscriptionKey

__all__ = [
    "Streaming",
    "auth_headers",
    "StreamingError",
    "TransportClosedError",
    "ContractViolation",
    "UnknownEventError",
    "CandleInterval",
    "ChannelKind",
    "ConnectionState",
    "ConnectivityEvent",
    "SubscriptionKey",
]
