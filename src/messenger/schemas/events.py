"""
Realtime change events.

Every event names the table it concerns, the operation and the affected
record. Events are serialized to JSON for the Redis bus and the websocket
feed and parsed back with `parse_change_event`.
"""

from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .records import ConversationRecord, MessageRecord


class MessageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: Literal["messages"] = "messages"
    operation: Literal["created"] = "created"
    record: MessageRecord


class ConversationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: Literal["conversations"] = "conversations"
    operation: Literal["created", "updated"]
    record: ConversationRecord


ChangeEvent = Annotated[Union[MessageEvent, ConversationEvent], Field(discriminator="table")]

_change_event_adapter: TypeAdapter[ChangeEvent] = TypeAdapter(ChangeEvent)


def parse_change_event(data: str | bytes | dict) -> MessageEvent | ConversationEvent:
    """Parse a JSON string/bytes or a plain dict into the matching event model."""
    if isinstance(data, dict):
        return _change_event_adapter.validate_python(data)
    return _change_event_adapter.validate_json(data)


def dump_change_event(event: MessageEvent | ConversationEvent) -> str:
    return event.model_dump_json()


def conversation_topic(conversation_id: UUID) -> str:
    """Topic carrying message events for one conversation."""
    return f"conversation:{conversation_id}"


def viewer_topic(viewer_id: UUID) -> str:
    """Topic carrying that viewer's conversation created/updated events."""
    return f"viewer:{viewer_id}"
