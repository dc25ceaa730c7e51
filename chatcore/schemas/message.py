"""
Pydantic schemas for messages.

MessageSnapshot is the immutable view of a message shared by every tier:
the durable store returns it, the fast cache stores it as JSON, and the API
serializes it. Request schemas validate the HTTP surface.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chatcore.models.message import (
    ConversationKind,
    DeletionState,
    DeliveryState,
    MessageType,
)
from chatcore.schemas.conversation import ConversationScope
from chatcore.utils.datetime_utils import ensure_utc, to_epoch_millis


# ============================================================================
# Domain snapshots
# ============================================================================

class DeliveryRecord(BaseModel):
    """Delivery progress of one recipient."""

    state: DeliveryState = DeliveryState.SENT
    delivered_at: Optional[datetime] = None
    seen_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    def advanced_to(self, state: DeliveryState, at: datetime) -> "DeliveryRecord":
        """
        Apply a monotonic transition.

        Returns the same record when the state is not strictly later; seen
        implies delivered, so recording seen first also fills delivered_at.
        """
        if state.rank <= self.state.rank:
            return self
        at = ensure_utc(at)
        delivered_at = self.delivered_at or at
        seen_at = at if state == DeliveryState.SEEN else self.seen_at
        return DeliveryRecord(state=state, delivered_at=delivered_at, seen_at=seen_at)


class MessageSnapshot(BaseModel):
    """Immutable snapshot of a message taken at read or write time."""

    message_id: str
    scope: ConversationScope
    sender_id: str
    content: Optional[str] = Field(None, description="Encrypted envelope, stripped once deleted for everyone")
    content_hash: str
    type: MessageType = MessageType.TEXT
    media_id: Optional[str] = None
    reply_to_id: Optional[str] = None
    sent_at: datetime
    delivery: Dict[str, DeliveryRecord] = Field(default_factory=dict)
    deletion_state: DeletionState = DeletionState.NOT_DELETED
    deleted_at: Optional[datetime] = None
    reactions: Dict[str, str] = Field(default_factory=dict)
    is_pinned: bool = False
    pinned_by: Optional[str] = None
    pinned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("sent_at", "deleted_at", "pinned_at", "expires_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store drivers may hand back naive UTC datetimes."""
        return ensure_utc(v)

    @property
    def conversation_key(self) -> str:
        return self.scope.key

    @property
    def score(self) -> int:
        """Conversation index score: sent_at in epoch milliseconds."""
        return to_epoch_millis(self.sent_at)

    @property
    def sort_key(self):
        """Total order used by fetch merges (sent_at, then ID for ties)."""
        return (self.sent_at, self.message_id)

    @property
    def is_deleted_for_everyone(self) -> bool:
        return self.deletion_state == DeletionState.DELETED_FOR_EVERYONE

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= ensure_utc(now)

    def delivery_state_of(self, recipient_id: str) -> DeliveryState:
        record = self.delivery.get(recipient_id)
        return record.state if record else DeliveryState.SENT

    def with_delivery(self, recipient_id: str, state: DeliveryState, at: datetime) -> "MessageSnapshot":
        """Copy with one recipient's delivery record advanced."""
        current = self.delivery.get(recipient_id, DeliveryRecord())
        advanced = current.advanced_to(state, at)
        if advanced is current:
            return self
        delivery = dict(self.delivery)
        delivery[recipient_id] = advanced
        return self.model_copy(update={"delivery": delivery})

    def with_reaction(self, user_id: str, reaction: Optional[str]) -> "MessageSnapshot":
        """Copy with a user's reaction replaced (None removes it)."""
        reactions = dict(self.reactions)
        if reaction is None:
            reactions.pop(user_id, None)
        else:
            reactions[user_id] = reaction
        return self.model_copy(update={"reactions": reactions})

    def to_cache(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_cache(cls, raw: str) -> "MessageSnapshot":
        return cls.model_validate_json(raw)

    def notification_payload(self) -> Dict[str, object]:
        """Event metadata for real-time fan-out; never includes content."""
        return {
            "message_id": self.message_id,
            "conversation_key": self.conversation_key,
            "sender_id": self.sender_id,
            "type": self.type.value,
            "media_id": self.media_id,
            "reply_to_id": self.reply_to_id,
            "sent_at": self.score,
        }


class MessagePage(BaseModel):
    """One page of a conversation, newest first."""

    messages: List[MessageSnapshot] = Field(default_factory=list)
    next_before: Optional[int] = Field(None, description="Cursor for the next (older) page in epoch millis")
    has_more: bool = False


class ScheduledMessageSnapshot(BaseModel):
    """A message accepted for sending at ``send_at``."""

    scheduled_id: str
    scope: ConversationScope
    sender_id: str
    content: str = Field(..., description="Encrypted envelope, sent as-is when due")
    type: MessageType = MessageType.TEXT
    media_id: Optional[str] = None
    reply_to_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    send_at: datetime
    created_at: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("expires_at", "send_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def conversation_key(self) -> str:
        return self.scope.key

    @property
    def message_id(self) -> str:
        """ID the message is sent under; shares the scheduled ID's suffix."""
        return "msg_" + self.scheduled_id.split("_", 1)[1]

    def is_due(self, now: datetime) -> bool:
        return self.send_at <= ensure_utc(now)


# ============================================================================
# Request Schemas
# ============================================================================

class MessageSendRequest(BaseModel):
    """Schema for sending a new message."""

    kind: ConversationKind = Field(..., description="direct, group or channel")
    recipient_id: Optional[str] = Field(None, description="Recipient for direct messages")
    target_id: Optional[str] = Field(None, description="Group or channel ID")
    content: str = Field(..., min_length=1, description="Encrypted content envelope")
    type: MessageType = Field(default=MessageType.TEXT, description="Message type")
    media_id: Optional[str] = Field(None, description="Uploaded media reference")
    reply_to_id: Optional[str] = Field(None, description="ID of message being replied to")
    expires_at: Optional[datetime] = Field(None, description="Optional expiry for ephemeral messages")

    def scope_for(self, sender_id: str) -> ConversationScope:
        """
        Build the conversation scope for this request.

        Raises:
            ValueError: If the identifiers do not match the kind
        """
        if self.kind == ConversationKind.DIRECT:
            if not self.recipient_id:
                raise ValueError("recipient_id is required for direct messages")
            return ConversationScope.direct(sender_id, self.recipient_id)
        if not self.target_id:
            raise ValueError("target_id is required for group and channel messages")
        if self.kind == ConversationKind.GROUP:
            return ConversationScope.group(self.target_id)
        return ConversationScope.channel(self.target_id)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "direct",
                "recipient_id": "user_b",
                "content": "{\"message\": \"...\", \"key\": \"...\", \"iv\": \"...\"}",
                "type": "text",
            }
        }
    )


class MessageScheduleRequest(MessageSendRequest):
    """Schema for scheduling a message to be sent later."""

    send_at: datetime = Field(..., description="When to send the message (must be in the future)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "kind": "group",
                "target_id": "team",
                "content": "{\"message\": \"...\", \"keys\": {\"user_b\": \"...\"}, \"iv\": \"...\"}",
                "send_at": "2026-10-20T09:00:00Z",
            }
        }
    )


class MessageStatusUpdate(BaseModel):
    """Schema for an explicit delivery acknowledgement."""

    state: DeliveryState

    @field_validator("state")
    @classmethod
    def validate_state(cls, v: DeliveryState) -> DeliveryState:
        """Clients can only acknowledge delivery or reading."""
        if v == DeliveryState.SENT:
            raise ValueError("State must be 'delivered' or 'seen'")
        return v


class MessageReactionUpdate(BaseModel):
    """Schema for setting or clearing a reaction."""

    reaction: Optional[str] = Field(None, max_length=32, description="Reaction token, null to remove")

    @field_validator("reaction")
    @classmethod
    def validate_reaction(cls, v: Optional[str]) -> Optional[str]:
        """Blank reactions are treated as removal."""
        if v is None:
            return None
        v = v.strip()
        return v or None


class TypingIndicatorRequest(BaseModel):
    """Schema for typing indicators."""

    kind: ConversationKind = ConversationKind.DIRECT
    recipient_id: Optional[str] = None
    target_id: Optional[str] = None
    is_typing: bool = True


# ============================================================================
# Response Schemas
# ============================================================================

class MessageSendResponse(BaseModel):
    """Response for a successful send."""

    message_id: str
    status: DeliveryState = DeliveryState.SENT
    sent_at: datetime


class DeliveryStatusResponse(BaseModel):
    """Sender-side delivery status of a message."""

    message_id: str
    deliveries: Dict[str, DeliveryRecord]


class MessageDeleteResponse(BaseModel):
    """Response for message deletion."""

    success: bool
    message_id: str
    delete_for_everyone: bool


class OperationResponse(BaseModel):
    """Generic acknowledgement."""

    success: bool
    message: str
