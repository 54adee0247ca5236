"""
Inbound message routing.
Decodes server frames and fans them out to the callbacks of their channel.
"""
from typing import Union

from pydantic import ValidationError

from invest_streaming.events import Listeners
from invest_streaming.models import InboundMessage, SubscriptionKey
from invest_streaming.subscriptions.registry import SubscriptionRegistry
from invest_streaming.utils.logging import get_logger

logger = get_logger("subscriptions.router")


class EventRouter:
    """
    Routes every inbound frame to exactly one callback set:
    server errors to the error channel, data to its subscription key.
    """

    def __init__(self, registry: SubscriptionRegistry, errors: Listeners):
        self.registry = registry
        self.errors = errors
        self.messages_routed = 0

    def route(self, raw: Union[str, bytes]) -> None:
        """
        Process an incoming frame.

        Raises:
            ContractViolation: the frame names an event this client cannot route
        """
        try:
            message = InboundMessage.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Invalid message: {raw[:200]!r}")
            return

        meta = message.meta()

        if message.is_error:
            logger.debug(f"Streaming error: {message.payload}")
            self.errors.emit(message.payload, meta)
            self.messages_routed += 1
            return

        key = SubscriptionKey.from_event(message.event, message.payload)
        listeners = self.registry.listeners(key)
        if not listeners:
            # Late frame for a channel that was just unsubscribed
            logger.debug(f"No callbacks for {key}, dropping")
            return

        listeners.emit(message.payload, meta)
        self.messages_routed += 1
