"""
Repository layer.

Usage:
    from messenger.repositories import ConversationRepository, MessageRepository
"""

from .base_repository import BaseRepository
from .profile_repository import ProfileRepository, PetListingRepository
from .conversation_repository import ConversationRepository
from .member_repository import MemberRepository
from .message_repository import MessageRepository

__all__ = [
    "BaseRepository",
    "ProfileRepository",
    "PetListingRepository",
    "ConversationRepository",
    "MemberRepository",
    "MessageRepository",
]
