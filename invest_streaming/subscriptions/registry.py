"""
Subscription bookkeeping for the shared streaming socket.
Tracks local callbacks per channel and the subscribe commands to replay.
"""
from typing import Any, Dict, List, Optional, Tuple

from invest_streaming.events import Callback, Listeners, Subscriber
from invest_streaming.models import SubscriptionKey
from invest_streaming.utils.logging import get_logger

logger = get_logger("subscriptions.registry")

Command = Dict[str, Any]


class SubscriptionRegistry:
    """
    Reference-counts local callbacks per subscription key.

    This lets the client know:
    - When a subscribe call needs a new wire subscription (first callback)
    - When an unsubscribe needs a wire unsubscribe (last callback gone)
    - Which subscribe commands to resend after a reconnect

    Records are kept in registration order; replay follows that order.
    """

    def __init__(self) -> None:
        self._listeners: Dict[SubscriptionKey, Listeners] = {}
        self._records: Dict[SubscriptionKey, Command] = {}

    def add(self, key: SubscriptionKey, callback: Callback) -> Tuple[Subscriber, bool]:
        """
        Register a callback for a key.

        Returns:
            The registration handle and whether it is the first one for the key
        """
        listeners = self._listeners.get(key)
        first = listeners is None
        if first:
            listeners = self._listeners[key] = Listeners()
            self._records[key] = key.subscribe_command()
            logger.debug(f"New subscription {key}")
        return listeners.add(callback), first

    def remove(self, key: SubscriptionKey, subscriber: Subscriber) -> bool:
        """
        Drop a registration.

        Returns:
            True when it was the last callback and the key is now inactive
        """
        listeners = self._listeners.get(key)
        if listeners is None or not listeners.remove(subscriber):
            return False
        if listeners:
            return False

        del self._listeners[key]
        self._records.pop(key, None)
        logger.debug(f"Subscription {key} has no callbacks left")
        return True

    def listeners(self, key: SubscriptionKey) -> Optional[Listeners]:
        return self._listeners.get(key)

    def record(self, key: SubscriptionKey) -> Optional[Command]:
        """The subscribe command retained for a key, if it is active."""
        return self._records.get(key)

    def records(self) -> List[Command]:
        """Subscribe commands of every active key, in registration order."""
        return list(self._records.values())

    def keys(self) -> List[SubscriptionKey]:
        return list(self._records)

    def clear(self) -> None:
        self._listeners.clear()
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: SubscriptionKey) -> bool:
        return key in self._records
