"""
Client-side gateway between the views and the conversation store.

Every store call runs under its own correlation id and is bounded by the fetch
timeout. Store-side failures (`RepositoryError`, database errors, timeouts) are
translated into the client error taxonomy; nothing raised from here is fatal.
"""

import asyncio
import logging
import time
from typing import Awaitable, TypeVar
from uuid import UUID, uuid4

from messenger.core.logging.filters import reset_correlation_id, set_correlation_id
from messenger.exceptions.base import RepositoryError
from messenger.exceptions.client import (
    EmptyMessageError,
    MessagingError,
    ResolveFailedError,
    SendFailedError,
    TransientFetchError,
)
from messenger.schemas.records import ConversationRecord, MessageRecord
from messenger.store.protocol import ConversationStoreProtocol
from .cache import CachedMessage, MessagingCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageGateway:
    """
    Args:
        store: conversation store (or a test double).
        cache: the viewer's cache; the gateway is its main writer.
        timeout: seconds allowed for each store call.
        preview_length: characters kept in the list preview after a send.
    """

    def __init__(
        self,
        store: ConversationStoreProtocol,
        cache: MessagingCache,
        *,
        timeout: float = 10.0,
        preview_length: int = 100,
    ):
        self._store = store
        self.cache = cache
        self._timeout = timeout
        self._preview_length = preview_length

    @property
    def viewer_id(self) -> UUID:
        return self.cache.viewer_id

    # =================================================================================================================
    # Reads
    # =================================================================================================================

    async def list_conversations(self) -> list[ConversationRecord]:
        """
        Fetch the viewer's conversations and install them in the cache.

        Raises:
            TransientFetchError: the store failed or timed out. The cache keeps
                whatever it held before.
        """
        try:
            records = await self._call("list_conversations", self._store.list_conversations(self.viewer_id))
        except MessagingError as exc:
            raise TransientFetchError(cause=exc.__cause__) from exc
        self.cache.replace_conversations(records)
        return self.cache.conversations()

    async def list_messages(self, conversation_id: UUID) -> list[MessageRecord]:
        """
        Fetch one thread, ascending by created_at. The cache is not touched;
        the caller decides whether the result is still wanted.

        Raises:
            TransientFetchError: the store failed or timed out.
        """
        try:
            records = await self._call(
                "list_messages", self._store.list_messages(self.viewer_id, conversation_id)
            )
        except MessagingError as exc:
            raise TransientFetchError(cause=exc.__cause__) from exc
        return sorted(records, key=lambda r: (r.created_at, str(r.id)))

    # =================================================================================================================
    # Writes
    # =================================================================================================================

    async def send_message(self, conversation_id: UUID, content: str) -> CachedMessage:
        """
        Optimistically append a message, then confirm it with the store.

        Raises:
            EmptyMessageError: content is blank after trimming (no store call).
            SendFailedError: the store rejected the write or timed out; the
                optimistic entry has been withdrawn.
        """
        text = (content or "").strip()
        if not text:
            raise EmptyMessageError()

        entry = CachedMessage.pending(conversation_id, self.viewer_id, text)
        self.cache.add_pending(entry)
        self.cache.update_preview(conversation_id, text[: self._preview_length], entry.created_at)

        try:
            record = await self._call(
                "send_message",
                self._store.send_message(self.viewer_id, conversation_id, text, entry.client_message_id),
            )
        except MessagingError as exc:
            self.cache.fail(conversation_id, entry.local_id, exc.message)
            logger.warning(
                "gateway.send.failed",
                extra={"conversation_id": conversation_id, "local_id": entry.local_id, "reason": exc.message},
            )
            raise SendFailedError(
                _reason(exc, SendFailedError.user_message),
                content=text,
                local_id=entry.local_id,
                cause=exc.__cause__,
            ) from exc

        confirmed = self.cache.confirm(entry.local_id, record)
        self.cache.update_preview(conversation_id, record.content[: self._preview_length], record.created_at)
        return confirmed

    async def start_conversation(
        self,
        recipient_id: UUID,
        pet_context_id: UUID | None,
        initial_message: str,
    ) -> UUID:
        """
        Resolve the conversation with `recipient_id` about `pet_context_id` and
        post `initial_message` to it. Returns the conversation id.

        A conversation already in the loaded list is reused through the normal
        send path; otherwise the store creates it together with the message.

        Raises:
            EmptyMessageError: the message is blank.
            ResolveFailedError: the recipient is the viewer, does not exist, or
                the store write failed.
        """
        text = (initial_message or "").strip()
        if not text:
            raise EmptyMessageError()
        if recipient_id == self.viewer_id:
            raise ResolveFailedError("Cannot message yourself")

        existing = self.cache.find_conversation(recipient_id, pet_context_id)
        if existing is not None:
            logger.info("gateway.start.reused", extra={"conversation_id": existing.id})
            try:
                await self.send_message(existing.id, text)
            except SendFailedError as exc:
                raise ResolveFailedError(exc.message, cause=exc.__cause__) from exc
            return existing.id

        try:
            result = await self._call(
                "start_conversation",
                self._store.start_conversation(self.viewer_id, recipient_id, pet_context_id, text, uuid4()),
            )
        except MessagingError as exc:
            raise ResolveFailedError(
                _reason(exc, ResolveFailedError.user_message), cause=exc.__cause__
            ) from exc

        self.cache.merge_conversation(result.conversation)
        self.cache.merge_message(result.message)
        logger.info(
            "gateway.start.resolved",
            extra={"conversation_id": result.conversation.id, "created": result.created},
        )
        return result.conversation.id

    def clear_unread(self, conversation_id: UUID) -> int:
        """Zero the local unread count immediately. Returns the previous count."""
        return self.cache.clear_unread(conversation_id)

    async def acknowledge_read(self, conversation_id: UUID, previous: int) -> None:
        """
        Tell the store the viewer has read `conversation_id`. Skipped when the
        local count was already zero, so two surfaces never decrement twice.
        Failures are logged; the local state stays cleared.
        """
        if previous <= 0:
            return
        try:
            await self._call("mark_read", self._store.mark_read(self.viewer_id, conversation_id))
        except MessagingError as exc:
            logger.warning(
                "gateway.mark_read.failed", extra={"conversation_id": conversation_id, "reason": exc.message}
            )

    async def mark_read(self, conversation_id: UUID) -> int:
        previous = self.clear_unread(conversation_id)
        await self.acknowledge_read(conversation_id, previous)
        return previous

    # =================================================================================================================
    # Internals
    # =================================================================================================================

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """
        Run one store call with a fresh correlation id and the fetch timeout.

        Raises:
            MessagingError: wrapping the underlying failure as `__cause__`.
        """
        token = set_correlation_id(uuid4().hex)
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("gateway.timeout", extra={"operation": operation, "timeout_s": self._timeout})
            raise MessagingError("Request timed out", cause=exc) from exc
        except RepositoryError as exc:
            logger.info(
                "gateway.store_rejected",
                extra={"operation": operation, "code": exc.error_code, "reason": exc.message},
            )
            raise MessagingError(exc.message, cause=exc) from exc
        except Exception as exc:
            logger.exception("gateway.store_failed", extra={"operation": operation})
            raise MessagingError(cause=exc) from exc
        else:
            logger.debug(
                "gateway.call",
                extra={"operation": operation, "duration_ms": int((time.perf_counter() - start) * 1000)},
            )
            return result
        finally:
            reset_correlation_id(token)


def _reason(exc: MessagingError, default: str) -> str:
    """User-facing reason: the store's own message for rejections, else `default`."""
    if isinstance(exc.__cause__, RepositoryError):
        return exc.message
    return default
