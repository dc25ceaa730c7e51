"""
Tests for conversation scopes, message snapshots and request schemas.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from chatcore.models.message import ConversationKind, DeletionState, DeliveryState
from chatcore.schemas.conversation import ConversationScope
from chatcore.schemas.message import (
    DeliveryRecord,
    MessageReactionUpdate,
    MessageSendRequest,
    MessageStatusUpdate,
)
from chatcore.utils.datetime_utils import from_epoch_millis


class TestConversationScope:
    """Conversation keys and participant helpers."""

    def test_direct_key_is_order_insensitive(self):
        """Test that both directions of a pair share one conversation."""
        assert ConversationScope.direct("user_b", "user_a").key == "direct:user_a:user_b"
        assert ConversationScope.direct("user_a", "user_b") == ConversationScope.direct("user_b", "user_a")

    def test_kinds_never_alias(self):
        """Test that a group and a channel with the same ID have different keys."""
        assert ConversationScope.group("x").key != ConversationScope.channel("x").key

    @pytest.mark.parametrize("key", ["direct:user_a:user_b", "group:team", "channel:news"])
    def test_from_key_round_trip(self, key):
        """Test that keys parse back into the scope they came from."""
        assert ConversationScope.from_key(key).key == key

    def test_from_key_rejects_unknown_kind(self):
        """Test that unknown prefixes are rejected."""
        with pytest.raises(ValueError):
            ConversationScope.from_key("thread:abc")

    def test_rejects_separator_in_ids(self):
        """Test that identifiers containing the key separator are rejected."""
        with pytest.raises(ValueError):
            ConversationScope.group("a:b")

    def test_counterpart(self):
        """Test that the other side of a direct pair is resolved."""
        scope = ConversationScope.direct("user_a", "user_b")

        assert scope.counterpart("user_a") == "user_b"
        assert scope.counterpart("user_b") == "user_a"
        with pytest.raises(ValueError):
            scope.counterpart("user_c")


class TestDeliveryRecord:
    """Monotonic record transitions."""

    def test_advances_forward_only(self):
        """Test that a transition to an earlier or equal state is a no-op."""
        seen = DeliveryRecord().advanced_to(DeliveryState.SEEN, from_epoch_millis(1000))

        assert seen.state == DeliveryState.SEEN
        assert seen.delivered_at == from_epoch_millis(1000)
        assert seen.advanced_to(DeliveryState.DELIVERED, from_epoch_millis(2000)) is seen


class TestMessageSnapshot:
    """Snapshot helpers."""

    def test_score_and_payload(self, make_snapshot, direct_scope):
        """Test that the notification payload carries metadata only."""
        snapshot = make_snapshot(direct_scope, millis=1234)

        payload = snapshot.notification_payload()

        assert snapshot.score == 1234
        assert payload["sent_at"] == 1234
        assert payload["conversation_key"] == direct_scope.key
        assert "content" not in payload

    def test_with_delivery_is_copy(self, make_snapshot, direct_scope):
        """Test that snapshots are never mutated in place."""
        snapshot = make_snapshot(direct_scope)

        updated = snapshot.with_delivery("user_b", DeliveryState.DELIVERED, from_epoch_millis(2000))

        assert snapshot.delivery == {}
        assert updated.delivery_state_of("user_b") == DeliveryState.DELIVERED
        assert updated.with_delivery("user_b", DeliveryState.DELIVERED, from_epoch_millis(3000)) is updated

    def test_cache_round_trip_keeps_deletion(self, make_snapshot, direct_scope):
        """Test that a deleted snapshot decodes with its state and no content."""
        snapshot = make_snapshot(direct_scope).model_copy(update={
            "deletion_state": DeletionState.DELETED_FOR_EVERYONE,
            "content": None,
        })

        decoded = type(snapshot).from_cache(snapshot.to_cache())

        assert decoded.is_deleted_for_everyone
        assert decoded.content is None
        assert decoded.scope == direct_scope

    def test_expiry(self, make_snapshot, direct_scope):
        """Test that a message is expired from its expiry instant on."""
        snapshot = make_snapshot(direct_scope, expires_at=from_epoch_millis(5000))

        assert not snapshot.is_expired(from_epoch_millis(4999))
        assert snapshot.is_expired(from_epoch_millis(5000))


class TestRequestSchemas:
    """HTTP request validation."""

    def test_send_request_scope(self):
        """Test that the request builds the scope for its kind."""
        direct = MessageSendRequest(kind=ConversationKind.DIRECT, recipient_id="user_b", content="x")
        group = MessageSendRequest(kind=ConversationKind.GROUP, target_id="team", content="x")

        assert direct.scope_for("user_a").key == "direct:user_a:user_b"
        assert group.scope_for("user_a").key == "group:team"

    def test_send_request_missing_target(self):
        """Test that a direct request without a recipient is rejected."""
        request = MessageSendRequest(kind=ConversationKind.DIRECT, content="x")

        with pytest.raises(ValueError):
            request.scope_for("user_a")

    def test_status_update_rejects_sent(self):
        """Test that clients cannot acknowledge a message as sent."""
        with pytest.raises(PydanticValidationError):
            MessageStatusUpdate(state=DeliveryState.SENT)

    def test_blank_reaction_is_removal(self):
        """Test that a blank reaction clears the user's reaction."""
        assert MessageReactionUpdate(reaction="  ").reaction is None
