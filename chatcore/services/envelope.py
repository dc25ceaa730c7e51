"""
Encrypted envelope validation.

The core never decrypts content. It only checks that the client sent an
envelope of the expected shape for the conversation kind.
"""
import json
import logging
from typing import Dict, Protocol, Tuple

from chatcore.models.message import ConversationKind

logger = logging.getLogger(__name__)

# Required envelope fields and their JSON types per conversation kind
ENVELOPE_FIELDS: Dict[ConversationKind, Tuple[Tuple[str, type], ...]] = {
    ConversationKind.DIRECT: (("message", str), ("key", str), ("iv", str)),
    ConversationKind.GROUP: (("message", str), ("keys", dict), ("iv", str)),
    ConversationKind.CHANNEL: (("message", str), ("iv", str)),
}


class EnvelopeValidator(Protocol):
    def is_well_formed(self, kind: ConversationKind, content: str) -> bool: ...


class JsonEnvelopeValidator:
    """Checks the JSON envelope produced by the client encryption layer."""

    def is_well_formed(self, kind: ConversationKind, content: str) -> bool:
        """
        Check an envelope.

        Args:
            kind: Conversation kind the message is sent to
            content: Envelope text as sent by the client

        Returns:
            True if the envelope parses and carries every required field
        """
        try:
            envelope = json.loads(content)
        except (TypeError, ValueError):
            return False

        if not isinstance(envelope, dict):
            return False

        for field, expected in ENVELOPE_FIELDS[kind]:
            value = envelope.get(field)
            if not isinstance(value, expected) or not value:
                logger.debug(f"Envelope for {kind.value} rejected: bad or missing '{field}'")
                return False

        return True
