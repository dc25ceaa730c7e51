"""
Pydantic schema exports.
Provides domain snapshots and request/response models for API endpoints.
"""
from chatcore.schemas.conversation import ConversationScope
from chatcore.schemas.message import (
    DeliveryRecord,
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

__all__ = [
    "ConversationScope",
    "DeliveryRecord",
    "DeliveryStatusResponse",
    "MessageDeleteResponse",
    "MessagePage",
    "MessageReactionUpdate",
    "MessageScheduleRequest",
    "MessageSendRequest",
    "MessageSendResponse",
    "MessageSnapshot",
    "MessageStatusUpdate",
    "OperationResponse",
    "ScheduledMessageSnapshot",
    "TypingIndicatorRequest",
]
