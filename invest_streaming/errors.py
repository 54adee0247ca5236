"""
Exceptions raised by the streaming client.

Transport faults never surface here: they are converted into connectivity
events by the connection controller. What remains are programming errors
(sending on a dead socket) and protocol drift between client and server.
"""


class StreamingError(Exception):
    """Base class for every streaming client error."""


class TransportClosedError(StreamingError):
    """A frame was handed to a transport that is not open."""


class ContractViolation(StreamingError):
    """An inbound message cannot be routed to any channel.

    Fatal: the server speaks a protocol this client does not understand.
    """

    def __init__(self, event: str, message: str):
        super().__init__(message)
        self.event = event


class UnknownEventError(ContractViolation):
    """Inbound message carries an event type outside the known channel set."""

    def __init__(self, event: str):
        super().__init__(event, f"Unknown type: {event}")
