"""
Message API routes.
Thin HTTP layer over the message orchestrator; domain errors are mapped to
HTTP statuses by the application's exception handler.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from chatcore.config import settings
from chatcore.core.exceptions import ValidationError
from chatcore.dependencies import get_current_user, get_orchestrator
from chatcore.models.message import ConversationKind
from chatcore.schemas.conversation import ConversationScope
from chatcore.schemas.message import (
    DeliveryStatusResponse,
    MessageDeleteResponse,
    MessagePage,
    MessageReactionUpdate,
    MessageScheduleRequest,
    MessageSendRequest,
    MessageSendResponse,
    MessageSnapshot,
    MessageStatusUpdate,
    OperationResponse,
    ScheduledMessageSnapshot,
    TypingIndicatorRequest,
)
from chatcore.services.orchestrator import MessageOrchestrator

router = APIRouter()


def _scope(kind: ConversationKind, target_id: str, user_id: str) -> ConversationScope:
    """
    Resolve the conversation addressed by a path.

    For direct conversations the target is the other participant.
    """
    try:
        if kind == ConversationKind.DIRECT:
            return ConversationScope.direct(user_id, target_id)
        if kind == ConversationKind.GROUP:
            return ConversationScope.group(target_id)
        return ConversationScope.channel(target_id)
    except ValueError as e:
        raise ValidationError(str(e))


@router.post(
    "/",
    response_model=MessageSendResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a new message",
    description="Send an encrypted message to a direct, group or channel conversation."
)
async def send_message(
    message_data: MessageSendRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """
    Send a new message.

    - **kind**: direct, group or channel
    - **recipient_id** / **target_id**: who or where the message goes
    - **content**: encrypted envelope, stored as-is
    - **reply_to_id**: optional message in the same conversation
    """
    try:
        scope = message_data.scope_for(user_id)
    except ValueError as e:
        raise ValidationError(str(e))

    message = await orchestrator.send(
        user_id,
        scope,
        message_data.content,
        message_type=message_data.type,
        media_id=message_data.media_id,
        reply_to_id=message_data.reply_to_id,
        expires_at=message_data.expires_at,
    )
    return MessageSendResponse(message_id=message.message_id, sent_at=message.sent_at)


@router.get(
    "/conversations/{kind}/{target_id}",
    response_model=MessagePage,
    summary="Get conversation messages",
    description="Newest-first page of a conversation. Fetched messages are marked delivered (or seen)."
)
async def get_conversation_messages(
    kind: ConversationKind,
    target_id: str,
    limit: int = Query(default=settings.default_page_size, ge=1, le=settings.max_page_size, description="Number of messages to return"),
    before: Optional[int] = Query(None, ge=0, description="Exclusive upper bound on sent_at, epoch milliseconds"),
    mark_seen: bool = Query(False, description="Mark returned messages as seen instead of delivered"),
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Get one page of messages with cursor-based pagination."""
    scope = _scope(kind, target_id, user_id)
    return await orchestrator.fetch(user_id, scope, limit=limit, before=before, mark_seen=mark_seen)


@router.get(
    "/pinned/{kind}/{target_id}",
    response_model=List[MessageSnapshot],
    summary="Get pinned messages"
)
async def get_pinned_messages(
    kind: ConversationKind,
    target_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Pinned messages of a group or channel, most recently pinned first."""
    scope = _scope(kind, target_id, user_id)
    return await orchestrator.pinned(user_id, scope)


@router.post(
    "/typing",
    response_model=OperationResponse,
    summary="Send a typing indicator"
)
async def send_typing_indicator(
    data: TypingIndicatorRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Broadcast that the user started or stopped typing."""
    target_id = data.recipient_id if data.kind == ConversationKind.DIRECT else data.target_id
    if not target_id:
        raise ValidationError("recipient_id or target_id is required")
    scope = _scope(data.kind, target_id, user_id)
    await orchestrator.send_typing(user_id, scope, data.is_typing)
    return OperationResponse(success=True, message="Typing indicator sent")


@router.post(
    "/schedule",
    response_model=ScheduledMessageSnapshot,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a message",
    description="Validate a message now and send it at send_at."
)
async def schedule_message(
    message_data: MessageScheduleRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """
    Schedule a message for later.

    - **send_at**: when to send, must be in the future
    - every other field as for sending
    """
    try:
        scope = message_data.scope_for(user_id)
    except ValueError as e:
        raise ValidationError(str(e))

    return await orchestrator.schedule(
        user_id,
        scope,
        message_data.content,
        message_data.send_at,
        message_type=message_data.type,
        media_id=message_data.media_id,
        reply_to_id=message_data.reply_to_id,
        expires_at=message_data.expires_at,
    )


@router.get(
    "/scheduled",
    response_model=List[ScheduledMessageSnapshot],
    summary="List scheduled messages"
)
async def list_scheduled_messages(
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Pending scheduled messages of the current user, soonest first."""
    return await orchestrator.list_scheduled(user_id)


@router.delete(
    "/scheduled/{scheduled_id}",
    response_model=OperationResponse,
    summary="Cancel a scheduled message"
)
async def cancel_scheduled_message(
    scheduled_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Cancel a scheduled message that has not been sent yet."""
    await orchestrator.cancel_scheduled(user_id, scheduled_id)
    return OperationResponse(success=True, message="Scheduled message cancelled")


@router.get(
    "/{message_id}",
    response_model=MessageSnapshot,
    summary="Get message by ID"
)
async def get_message(
    message_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Get a single message visible to the current user."""
    return await orchestrator.get_message(user_id, message_id)


@router.post(
    "/{message_id}/status",
    response_model=OperationResponse,
    summary="Acknowledge a message"
)
async def update_message_status(
    message_id: str,
    data: MessageStatusUpdate,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Record that the current user received or read a message."""
    changed = await orchestrator.update_status(user_id, message_id, data.state)
    return OperationResponse(
        success=True,
        message=f"Marked as {data.state.value}" if changed else f"Already {data.state.value} or later",
    )


@router.get(
    "/{message_id}/status",
    response_model=DeliveryStatusResponse,
    summary="Get delivery status"
)
async def get_message_status(
    message_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Senders see every recipient's record, recipients only their own."""
    deliveries = await orchestrator.get_delivery_status(user_id, message_id)
    return DeliveryStatusResponse(message_id=message_id, deliveries=deliveries)


@router.put(
    "/{message_id}/reaction",
    response_model=MessageSnapshot,
    summary="Set or clear a reaction"
)
async def set_reaction(
    message_id: str,
    data: MessageReactionUpdate,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """One reaction per user; a null reaction removes it."""
    return await orchestrator.react(user_id, message_id, data.reaction)


@router.delete(
    "/{message_id}",
    response_model=MessageDeleteResponse,
    summary="Delete a message"
)
async def delete_message(
    message_id: str,
    for_everyone: bool = Query(False, description="Delete for all participants (sender or moderator only)"),
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Delete a message for everyone or only for the current user."""
    await orchestrator.delete(user_id, message_id, for_everyone=for_everyone)
    return MessageDeleteResponse(success=True, message_id=message_id, delete_for_everyone=for_everyone)


@router.post(
    "/{message_id}/pin",
    response_model=MessageSnapshot,
    summary="Pin a message"
)
async def pin_message(
    message_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Pin a group or channel message (moderators only)."""
    return await orchestrator.pin(user_id, message_id)


@router.delete(
    "/{message_id}/pin",
    response_model=MessageSnapshot,
    summary="Unpin a message"
)
async def unpin_message(
    message_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: MessageOrchestrator = Depends(get_orchestrator)
):
    """Unpin a group or channel message (moderators only)."""
    return await orchestrator.unpin(user_id, message_id)
