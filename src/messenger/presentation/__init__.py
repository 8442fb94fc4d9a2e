from .conversation_list import ConversationListModel, ConversationListView, ConversationRow, ListState
from .formatting import badge_text, day_label, distance_in_words, relative_time, truncate
from .message_thread import (
    Composer,
    DayGroup,
    MessageBubble,
    MessageThreadView,
    ScrollFollower,
    ThreadModel,
    group_by_day,
)
from .surfaces import FloatingWidget, InboxPage, MessagingSession, MessagingSurface, open_chat_greeting

__all__ = [
    "ListState",
    "ConversationRow",
    "ConversationListModel",
    "ConversationListView",
    "badge_text",
    "day_label",
    "distance_in_words",
    "relative_time",
    "truncate",
    "DayGroup",
    "group_by_day",
    "MessageBubble",
    "ThreadModel",
    "Composer",
    "ScrollFollower",
    "MessageThreadView",
    "MessagingSession",
    "MessagingSurface",
    "FloatingWidget",
    "InboxPage",
    "open_chat_greeting",
]
