"""
Centralized access to all messaging models.

Importing this package registers every table on `Base.metadata`:

    from messenger.models import Profile, PetListing, Conversation, ConversationMember, Message
"""

from .profile import Profile
from .pet_listing import PetListing
from .conversation import Conversation, ordered_pair, pet_context_key
from .conversation_member import ConversationMember
from .message import Message

__all__ = [
    "Profile",
    "PetListing",
    "Conversation",
    "ConversationMember",
    "Message",
    "ordered_pair",
    "pet_context_key",
]
