"""Upstream package for the streaming socket."""
from .connection import StreamingConnection, HANDSHAKE_TIMEOUT
from .queue import OutboundQueue
from .transport import WebSocketTransport

__all__ = [
    "StreamingConnection",
    "HANDSHAKE_TIMEOUT",
    "OutboundQueue",
    "WebSocketTransport",
]
