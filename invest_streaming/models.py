"""
Pydantic models for the market-data streaming protocol.
Defines channel parameters, subscription keys and inbound frames.
"""
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from invest_streaming.errors import ContractViolation, UnknownEventError


class ChannelKind(str, Enum):
    """Available streaming channels."""
    ORDERBOOK = "orderbook"
    CANDLE = "candle"
    INSTRUMENT_INFO = "instrument_info"


# Reserved inbound event carrying server-side errors
ERROR_EVENT = "error"


class CandleInterval(str, Enum):
    """Candle resolutions accepted by the server."""
    MIN_1 = "1min"
    MIN_2 = "2min"
    MIN_3 = "3min"
    MIN_5 = "5min"
    MIN_10 = "10min"
    MIN_15 = "15min"
    MIN_30 = "30min"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class ConnectionState(IntEnum):
    """Socket ready states, numbered like the WebSocket readyState."""
    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


class ConnectivityEvent(str, Enum):
    """Socket lifecycle notifications re-emitted to listeners."""
    OPEN = "socket-open"
    CLOSE = "socket-close"
    ERROR = "socket-error"


# =============================================================================
# Channel Parameters
# =============================================================================

class ChannelParams(BaseModel):
    """Base for per-channel parameters. Frozen so it can key a dict."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    figi: str = Field(..., min_length=1)


class OrderbookParams(ChannelParams):
    """
    Order book subscription.

    Example wire command:
    {"event": "orderbook:subscribe", "figi": "BBG000B9XRY4", "depth": 3}
    """
    depth: int = Field(3, ge=1, le=20)


class CandleParams(ChannelParams):
    """Candle subscription; interval defaults to one minute."""
    interval: CandleInterval = CandleInterval.MIN_1


class InstrumentInfoParams(ChannelParams):
    """Instrument metadata subscription."""


CHANNEL_PARAMS: Dict[ChannelKind, Type[ChannelParams]] = {
    ChannelKind.ORDERBOOK: OrderbookParams,
    ChannelKind.CANDLE: CandleParams,
    ChannelKind.INSTRUMENT_INFO: InstrumentInfoParams,
}


# =============================================================================
# Subscription Keys
# =============================================================================

@dataclass(frozen=True)
class SubscriptionKey:
    """
    Identity of one logical channel on the shared socket.

    Outbound subscribe calls and inbound frames derive keys the same way,
    so two subscriptions with equal keys share one wire subscription and
    every inbound frame finds the callbacks registered for its channel.
    """
    kind: ChannelKind
    params: ChannelParams

    @classmethod
    def for_channel(
        cls,
        kind: Union[ChannelKind, str],
        params: Union[ChannelParams, Mapping[str, Any]],
    ) -> "SubscriptionKey":
        """
        Build the key for a subscribe call.

        Raises:
            ValueError: kind is not a known channel
            ValidationError: params do not fit the channel
        """
        kind = ChannelKind(kind)
        model = CHANNEL_PARAMS[kind]
        if not isinstance(params, model):
            params = model.model_validate(dict(params))
        return cls(kind, params)

    @classmethod
    def from_event(cls, event: str, payload: Mapping[str, Any]) -> "SubscriptionKey":
        """
        Build the key an inbound frame is routed to.

        Raises:
            UnknownEventError: event is not a channel name
            ContractViolation: payload lacks the fields that identify the channel
        """
        try:
            kind = ChannelKind(event)
        except ValueError:
            raise UnknownEventError(event) from None
        try:
            params = CHANNEL_PARAMS[kind].model_validate(payload)
        except ValidationError as e:
            raise ContractViolation(event, f"Cannot route {event} payload: {e}") from e
        return cls(kind, params)

    def subscribe_command(self) -> Dict[str, Any]:
        return self._command("subscribe")

    def unsubscribe_command(self) -> Dict[str, Any]:
        return self._command("unsubscribe")

    def _command(self, action: str) -> Dict[str, Any]:
        return {"event": f"{self.kind.value}:{action}", **self.params.model_dump(mode="json")}

    def __str__(self) -> str:
        values = self.params.model_dump(mode="json").values()
        return "-".join([self.kind.value, *(str(v) for v in values)])


# =============================================================================
# Server -> Client Messages
# =============================================================================

class InboundMessage(BaseModel):
    """
    Frame pushed by the server.

    Example:
    {
        "event": "orderbook",
        "payload": {"figi": "BBG000B9XRY4", "depth": 3, "bids": [...], "asks": [...]},
        "time": "2023-01-01T00:00:00Z"
    }
    """
    event: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    time: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.event == ERROR_EVENT

    def meta(self) -> Dict[str, Optional[str]]:
        """Fields delivered next to the payload."""
        return {"serverTime": self.time}
