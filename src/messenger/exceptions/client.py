"""
Client-side error taxonomy.

These errors are raised by the gateway and caught at the query/mutation
boundary, where they become presentable state (a banner, a failed send
notification, a disabled surface). None of them is fatal to a session.
"""

from uuid import UUID


class MessagingError(Exception):
    """Base class for client-side messaging failures."""

    #: Short, user-facing text for banners and toasts.
    user_message = "Something went wrong"

    def __init__(self, message: str | None = None, *, cause: BaseException | None = None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        if cause is not None:
            self.__cause__ = cause


class NotAuthenticatedError(MessagingError):
    """No viewer in the session; operations are preconditions, not failures."""
    user_message = "Sign in to use messages"


class EmptyMessageError(MessagingError):
    """Content was empty after trimming; rejected before any store call."""
    user_message = "Message cannot be empty"


class TransientFetchError(MessagingError):
    """A read (conversations, messages) failed or timed out; cached data is kept."""
    user_message = "Couldn't load messages. Check your connection and try again."


class SendFailedError(MessagingError):
    """The store rejected or never confirmed a send; the optimistic entry was withdrawn."""
    user_message = "Failed to send message"

    def __init__(self, message: str | None = None, *, content: str = "",
                 local_id: UUID | None = None, cause: BaseException | None = None):
        super().__init__(message, cause=cause)
        self.content = content
        self.local_id = local_id


class ResolveFailedError(MessagingError):
    """Starting (or reusing) a conversation failed."""
    user_message = "Failed to start conversation"


class RealtimeDisconnected(MessagingError):
    """The realtime channel dropped; resubscription is automatic."""
    user_message = "Reconnecting..."


__all__ = [
    "MessagingError",
    "NotAuthenticatedError",
    "EmptyMessageError",
    "TransientFetchError",
    "SendFailedError",
    "ResolveFailedError",
    "RealtimeDisconnected",
]
