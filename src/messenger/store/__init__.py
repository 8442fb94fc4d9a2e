from .protocol import ConversationStoreProtocol
from .conversation_store import ConversationStore

__all__ = ["ConversationStoreProtocol", "ConversationStore"]
