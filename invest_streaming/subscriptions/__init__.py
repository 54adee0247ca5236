"""Subscription registry and inbound routing."""
from .registry import SubscriptionRegistry
from .router import EventRouter

__all__ = [
    "SubscriptionRegistry",
    "EventRouter",
]
