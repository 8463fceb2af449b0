"""Conversation persistence."""
from switchboard.storage.conversation_store import (
    ConversationMetadata,
    ConversationStore,
    generate_title,
    validate_conversation_id,
)

__all__ = ["ConversationMetadata", "ConversationStore", "generate_title", "validate_conversation_id"]
