from .records import MessageRecord, ConversationRecord, StartConversationResult
from .events import (
    MessageEvent,
    ConversationEvent,
    ChangeEvent,
    parse_change_event,
    dump_change_event,
    conversation_topic,
    viewer_topic,
)
from .requests import SendMessageRequest, StartConversationRequest, MarkReadResponse

__all__ = [
    "MessageRecord",
    "ConversationRecord",
    "StartConversationResult",
    "MessageEvent",
    "ConversationEvent",
    "ChangeEvent",
    "parse_change_event",
    "dump_change_event",
    "conversation_topic",
    "viewer_topic",
    "SendMessageRequest",
    "StartConversationRequest",
    "MarkReadResponse",
]
