"""
Conversation scope schema.

A scope identifies the ordered conversation a message belongs to: an
unordered direct pair, a group, or a channel. Its key is shared by the
durable store, the conversation index and the tombstone sets.
"""
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from chatcore.models.message import ConversationKind

KEY_SEPARATOR = ":"


class ConversationScope(BaseModel):
    """Tagged conversation identifier."""

    kind: ConversationKind
    participants: Optional[Tuple[str, str]] = None
    target_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_shape(self) -> "ConversationScope":
        """Direct scopes carry a sorted pair, others a single target ID."""
        if self.kind == ConversationKind.DIRECT:
            if not self.participants or self.target_id is not None:
                raise ValueError("Direct scopes need exactly two participants")
            ids = self.participants
        else:
            if not self.target_id or self.participants is not None:
                raise ValueError(f"{self.kind.value} scopes need a target ID")
            ids = (self.target_id,)

        for value in ids:
            if not value or KEY_SEPARATOR in value:
                raise ValueError(f"Invalid identifier in conversation scope: {value!r}")

        if self.participants and list(self.participants) != sorted(self.participants):
            raise ValueError("Direct participants must be sorted, use ConversationScope.direct()")
        return self

    @classmethod
    def direct(cls, user_a: str, user_b: str) -> "ConversationScope":
        """Scope for the direct conversation between two users (order-insensitive)."""
        low, high = sorted((user_a, user_b))
        return cls(kind=ConversationKind.DIRECT, participants=(low, high))

    @classmethod
    def group(cls, group_id: str) -> "ConversationScope":
        return cls(kind=ConversationKind.GROUP, target_id=group_id)

    @classmethod
    def channel(cls, channel_id: str) -> "ConversationScope":
        return cls(kind=ConversationKind.CHANNEL, target_id=channel_id)

    @classmethod
    def from_key(cls, key: str) -> "ConversationScope":
        """
        Parse a conversation key back into a scope.

        Raises:
            ValueError: If the key is not a valid conversation key
        """
        kind, _, rest = key.partition(KEY_SEPARATOR)
        if kind == ConversationKind.DIRECT.value:
            user_a, _, user_b = rest.partition(KEY_SEPARATOR)
            return cls.direct(user_a, user_b)
        if kind == ConversationKind.GROUP.value:
            return cls.group(rest)
        if kind == ConversationKind.CHANNEL.value:
            return cls.channel(rest)
        raise ValueError(f"Unknown conversation key: {key!r}")

    @property
    def key(self) -> str:
        """Composite key; scopes of different kinds can never alias."""
        if self.kind == ConversationKind.DIRECT:
            return KEY_SEPARATOR.join((self.kind.value, *self.participants))
        return KEY_SEPARATOR.join((self.kind.value, self.target_id))

    @property
    def is_direct(self) -> bool:
        return self.kind == ConversationKind.DIRECT

    def involves(self, user_id: str) -> bool:
        """True if the user is one of a direct pair."""
        return self.is_direct and user_id in self.participants

    def counterpart(self, user_id: str) -> str:
        """
        The other participant of a direct conversation.

        Raises:
            ValueError: If the scope is not direct or the user is not in it
        """
        if not self.involves(user_id):
            raise ValueError(f"{user_id} is not a participant of {self.key}")
        low, high = self.participants
        return high if user_id == low else low

    def __str__(self) -> str:
        return self.key
