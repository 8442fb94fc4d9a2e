from .cache import CachedMessage, InvalidTransitionError, MessageState, MessagingCache
from .message_gateway import MessageGateway
from .queries import (
    ConversationsQuery,
    QueryStatus,
    SendMutation,
    StartConversationMutation,
    ThreadQuery,
)

__all__ = [
    "MessageState",
    "InvalidTransitionError",
    "CachedMessage",
    "MessagingCache",
    "MessageGateway",
    "QueryStatus",
    "ConversationsQuery",
    "ThreadQuery",
    "SendMutation",
    "StartConversationMutation",
]
