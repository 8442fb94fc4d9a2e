"""
Conversation store: the transactional facade over the repositories.

Each public operation opens its own session, runs in one transaction and
commits or rolls back as a unit. Change events are published to the realtime
bus only after a successful commit:

  - `conversation:{id}`  MessageEvent(created) for every new message
  - `viewer:{user_id}`   ConversationEvent(created|updated) with that
                         participant's view of the conversation
"""

from __future__ import annotations

import logging
import time
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from messenger.database.types import utcnow
from messenger.exceptions.base import DuplicateError, InvalidInputError, NotFoundError
from messenger.models.conversation import Conversation
from messenger.models.message import Message
from messenger.realtime.bus import RealtimeBus
from messenger.repositories import (
    ConversationRepository,
    MemberRepository,
    MessageRepository,
    PetListingRepository,
    ProfileRepository,
)
from messenger.schemas.events import (
    ChangeEvent,
    ConversationEvent,
    MessageEvent,
    conversation_topic,
    viewer_topic,
)
from messenger.schemas.records import ConversationRecord, MessageRecord, StartConversationResult

logger = logging.getLogger(__name__)

# Attempts for start_conversation when a concurrent creator wins the unique key.
_START_ATTEMPTS = 2


class _ConversationRace(Exception):
    """Another transaction created the same (pair, pet context) first."""


class ConversationStore:
    """
    SQLAlchemy-backed implementation of ConversationStoreProtocol.

    Args:
        session_factory: async_sessionmaker producing AsyncSessions.
        bus: realtime bus that receives change events after commit.
        preview_length: characters of a message kept as the conversation preview.
        max_message_length: longest accepted message (after trimming).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: RealtimeBus,
        *,
        preview_length: int = 100,
        max_message_length: int = 5000,
    ):
        self._session_factory = session_factory
        self._bus = bus
        self._preview_length = preview_length
        self._max_message_length = max_message_length

    # =================================================================================================================
    # Reads
    # =================================================================================================================

    async def list_conversations(self, viewer_id: UUID) -> list[ConversationRecord]:
        """
        Every conversation `viewer_id` participates in, latest activity first.
        """
        async with self._session_factory() as session:
            conversations = await ConversationRepository(session).list_for_participant(viewer_id)
            return await self._conversation_records(session, viewer_id, conversations)

    async def get_conversation(self, viewer_id: UUID, conversation_id: UUID) -> ConversationRecord:
        async with self._session_factory() as session:
            conversation = await ConversationRepository(session).get_for_participant(conversation_id, viewer_id)
            records = await self._conversation_records(session, viewer_id, [conversation])
            return records[0]

    async def list_messages(self, viewer_id: UUID, conversation_id: UUID) -> list[MessageRecord]:
        """
        Messages of a conversation, created_at ascending.

        Raises:
            NotFoundError: unknown conversation, or viewer is not a participant.
        """
        async with self._session_factory() as session:
            conversation = await ConversationRepository(session).get_for_participant(conversation_id, viewer_id)
            messages = await MessageRepository(session).list_for_conversation(conversation.id)
            return await self._message_records(session, messages)

    async def can_access(self, viewer_id: UUID, conversation_id: UUID) -> bool:
        async with self._session_factory() as session:
            try:
                await ConversationRepository(session).get_for_participant(conversation_id, viewer_id)
            except NotFoundError:
                return False
            return True

    # =================================================================================================================
    # Writes
    # =================================================================================================================

    async def send_message(
        self,
        viewer_id: UUID,
        conversation_id: UUID,
        content: str,
        client_message_id: UUID | None = None,
    ) -> MessageRecord:
        """
        Append a message from `viewer_id` and bump the counterpart's unread count.

        A retry carrying an already stored `client_message_id` returns the stored
        message without writing or publishing again.

        Raises:
            InvalidInputError: content empty after trimming, or too long.
            NotFoundError: unknown conversation, or viewer is not a participant.
        """
        text = self._validated_content(content)
        start = time.perf_counter()

        async with self._session_factory() as session:
            try:
                conversations = ConversationRepository(session)
                conversation = await conversations.get_for_participant(conversation_id, viewer_id)

                if client_message_id is not None:
                    existing = await MessageRepository(session).get_by_client_message_id(client_message_id)
                    if existing is not None and existing.conversation_id == conversation.id \
                            and existing.sender_id == viewer_id:
                        logger.info(
                            "store.send.replayed",
                            extra={"conversation_id": conversation.id, "message_id": existing.id},
                        )
                        return (await self._message_records(session, [existing]))[0]

                message = await self._append(session, conversation, viewer_id, text, client_message_id)
                events = await self._events_for_message(session, conversation, message, operation="updated")
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(
            "store.send.success",
            extra={
                "conversation_id": conversation_id,
                "message_id": events[0].record.id,
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        await self._publish_all(events)
        return events[0].record

    async def start_conversation(
        self,
        viewer_id: UUID,
        recipient_id: UUID,
        pet_context_id: UUID | None,
        initial_message: str,
        client_message_id: UUID | None = None,
    ) -> StartConversationResult:
        """
        Resolve the conversation for (viewer, recipient, pet context) and append
        `initial_message` to it, creating the conversation when none exists.

        Creation and the first message share one transaction: a failure leaves
        neither behind. When a concurrent caller creates the same conversation
        first, the operation retries and appends to the winner's conversation.

        Raises:
            InvalidInputError: recipient is the viewer, or the message is empty.
            NotFoundError: recipient or pet listing does not exist.
        """
        if recipient_id == viewer_id:
            raise InvalidInputError("Cannot message yourself", fields=["recipient_id"])
        text = self._validated_content(initial_message)

        for attempt in range(1, _START_ATTEMPTS + 1):
            try:
                result, events = await self._start_once(
                    viewer_id, recipient_id, pet_context_id, text, client_message_id
                )
            except _ConversationRace:
                logger.info(
                    "store.start.race_lost",
                    extra={"viewer_id": viewer_id, "recipient_id": recipient_id, "attempt": attempt},
                )
                continue

            logger.info(
                "store.start.success",
                extra={
                    "conversation_id": result.conversation.id,
                    "created": result.created,
                    "has_pet_context": pet_context_id is not None,
                },
            )
            await self._publish_all(events)
            return result

        raise DuplicateError(
            "Conversation is being created concurrently; retry",
            fields=["participant_ids", "pet_context_id"],
        )

    async def mark_read(self, viewer_id: UUID, conversation_id: UUID) -> int:
        """
        Zero the viewer's unread count. Returns how many were cleared.

        A conversation-updated event goes to the viewer's own topic when the
        count actually changed, so other sessions of the same viewer follow.
        """
        async with self._session_factory() as session:
            try:
                conversation = await ConversationRepository(session).get_for_participant(conversation_id, viewer_id)
                cleared = await MemberRepository(session).mark_read(conversation.id, viewer_id, utcnow())
                events: list[ChangeEvent] = []
                if cleared:
                    record = (await self._conversation_records(session, viewer_id, [conversation]))[0]
                    events.append(ConversationEvent(operation="updated", record=record))
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info("store.mark_read", extra={"conversation_id": conversation_id, "cleared": cleared})
        await self._publish_all(events)
        return cleared

    # =================================================================================================================
    # Internals
    # =================================================================================================================

    async def _start_once(
        self,
        viewer_id: UUID,
        recipient_id: UUID,
        pet_context_id: UUID | None,
        text: str,
        client_message_id: UUID | None,
    ) -> tuple[StartConversationResult, list[ChangeEvent]]:
        async with self._session_factory() as session:
            try:
                if not await ProfileRepository(session).exists(recipient_id):
                    raise NotFoundError(f"Recipient {recipient_id} not found", fields=["recipient_id"])
                if pet_context_id is not None and not await PetListingRepository(session).exists(pet_context_id):
                    raise NotFoundError(f"Pet listing {pet_context_id} not found", fields=["pet_context_id"])

                conversations = ConversationRepository(session)
                conversation = await conversations.find_by_key(viewer_id, recipient_id, pet_context_id)
                created = conversation is None
                if created:
                    try:
                        conversation = await conversations.create_conversation(
                            viewer_id, recipient_id, pet_context_id
                        )
                    except DuplicateError as exc:
                        raise _ConversationRace() from exc

                message = await self._append(session, conversation, viewer_id, text, client_message_id)
                events = await self._events_for_message(
                    session, conversation, message, operation="created" if created else "updated"
                )
                viewer_record = await self._conversation_records(session, viewer_id, [conversation])
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        result = StartConversationResult(
            conversation=viewer_record[0],
            message=events[0].record,
            created=created,
        )
        return result, events

    def _validated_content(self, content: str) -> str:
        text = (content or "").strip()
        if not text:
            raise InvalidInputError("Message cannot be empty", fields=["content"])
        if len(text) > self._max_message_length:
            raise InvalidInputError(
                f"Message exceeds {self._max_message_length} characters", fields=["content"]
            )
        return text

    async def _append(
        self,
        session: AsyncSession,
        conversation: Conversation,
        sender_id: UUID,
        text: str,
        client_message_id: UUID | None,
    ) -> Message:
        message = await MessageRepository(session).create_message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=text,
            client_message_id=client_message_id,
        )
        await ConversationRepository(session).set_last_message(
            conversation, text[: self._preview_length], message.created_at
        )
        await MemberRepository(session).increment_unread(conversation.id, conversation.counterpart_of(sender_id))
        return message

    async def _events_for_message(
        self,
        session: AsyncSession,
        conversation: Conversation,
        message: Message,
        *,
        operation: str,
    ) -> list[ChangeEvent]:
        """
        The message event first, then one conversation event per participant.
        """
        message_record = (await self._message_records(session, [message]))[0]
        events: list[ChangeEvent] = [MessageEvent(record=message_record)]
        for participant in (conversation.participant_low, conversation.participant_high):
            record = (await self._conversation_records(session, participant, [conversation]))[0]
            events.append(ConversationEvent(operation=operation, record=record))
        return events

    async def _publish_all(self, events: list[ChangeEvent]) -> None:
        for event in events:
            if isinstance(event, MessageEvent):
                topic = conversation_topic(event.record.conversation_id)
            else:
                topic = viewer_topic(event.record.viewer_id)
            try:
                await self._bus.publish(topic, event)
            except Exception:
                # Data is committed; subscribers recover through refetch on reconnect.
                logger.exception("store.publish_failed", extra={"topic": topic, "table": event.table})

    async def _message_records(self, session: AsyncSession, messages: list[Message]) -> list[MessageRecord]:
        names = await ProfileRepository(session).display_names(list({m.sender_id for m in messages}))
        return [
            MessageRecord(
                id=m.id,
                conversation_id=m.conversation_id,
                sender_id=m.sender_id,
                sender_name=names[m.sender_id],
                content=m.content,
                client_message_id=m.client_message_id,
                created_at=m.created_at,
            )
            for m in messages
        ]

    async def _conversation_records(
        self,
        session: AsyncSession,
        viewer_id: UUID,
        conversations: list[Conversation],
    ) -> list[ConversationRecord]:
        if not conversations:
            return []

        counterparts = {c.id: c.counterpart_of(viewer_id) for c in conversations}
        profiles = await ProfileRepository(session).get_many_by_ids(counterparts.values())
        pets = await PetListingRepository(session).get_many_by_ids(
            c.pet_context_id for c in conversations if c.pet_context_id is not None
        )
        unread = await MemberRepository(session).unread_counts(viewer_id, [c.id for c in conversations])

        records = []
        for c in conversations:
            counterpart = profiles.get(counterparts[c.id])
            pet = pets.get(c.pet_context_id) if c.pet_context_id is not None else None
            records.append(
                ConversationRecord(
                    id=c.id,
                    viewer_id=viewer_id,
                    participant_ids=(c.participant_low, c.participant_high),
                    counterpart_id=counterparts[c.id],
                    counterpart_name=(counterpart.display_name if counterpart and counterpart.display_name else "User"),
                    counterpart_avatar_url=counterpart.avatar_url if counterpart else None,
                    pet_context_id=c.pet_context_id,
                    pet_name=pet.pet_name if pet else None,
                    pet_image_url=pet.image_url if pet else None,
                    last_message=c.last_message,
                    last_message_at=c.last_message_at,
                    unread_count=unread.get(c.id, 0),
                    created_at=c.created_at,
                )
            )
        return records
