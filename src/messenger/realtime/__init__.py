from .bus import InMemoryBus, RealtimeBus, RedisBus, Subscription, get_bus
from .subscriptions import Lease, SubscriptionManager
from .sync import ConversationFollower, RealtimeSync

__all__ = [
    "RealtimeBus",
    "Subscription",
    "InMemoryBus",
    "RedisBus",
    "get_bus",
    "Lease",
    "SubscriptionManager",
    "RealtimeSync",
    "ConversationFollower",
]
