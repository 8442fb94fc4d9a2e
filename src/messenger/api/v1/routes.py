"""
HTTP routes for conversations and messages.

The viewer is identified by the X-User-ID header. Store errors propagate to
the exception handlers registered in `error_handlers`.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from messenger.schemas.records import ConversationRecord, MessageRecord, StartConversationResult
from messenger.schemas.requests import MarkReadResponse, SendMessageRequest, StartConversationRequest
from messenger.store.conversation_store import ConversationStore
from .dependencies import get_store, get_viewer_id

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationRecord])
async def list_conversations(
    viewer_id: UUID = Depends(get_viewer_id),
    store: ConversationStore = Depends(get_store),
):
    return await store.list_conversations(viewer_id)


@router.post("", response_model=StartConversationResult, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    body: StartConversationRequest,
    response: Response,
    viewer_id: UUID = Depends(get_viewer_id),
    store: ConversationStore = Depends(get_store),
):
    """Create or reuse the conversation and post the first message. 200 when reused."""
    result = await store.start_conversation(
        viewer_id,
        body.recipient_id,
        body.pet_context_id,
        body.initial_message,
        body.client_message_id,
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return result


@router.get("/{conversation_id}", response_model=ConversationRecord)
async def get_conversation(
    conversation_id: UUID,
    viewer_id: UUID = Depends(get_viewer_id),
    store: ConversationStore = Depends(get_store),
):
    return await store.get_conversation(viewer_id, conversation_id)


@router.get("/{conversation_id}/messages", response_model=list[MessageRecord])
async def list_messages(
    conversation_id: UUID,
    viewer_id: UUID = Depends(get_viewer_id),
    store: ConversationStore = Depends(get_store),
):
    return await store.list_messages(viewer_id, conversation_id)


@router.post("/{conversation_id}/messages", response_model=MessageRecord, status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    viewer_id: UUID = Depends(get_viewer_id),
    store: ConversationStore = Depends(get_store),
):
    return await store.send_message(viewer_id, conversation_id, body.content, body.client_message_id)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: UUID,
    viewer_id: UUID = Depends(get_viewer_id),
    store: ConversationStore = Depends(get_store),
):
    cleared = await store.mark_read(viewer_id, conversation_id)
    return MarkReadResponse(conversation_id=conversation_id, cleared=cleared)
