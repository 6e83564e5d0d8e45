from groundchat.models.conversation import (
    AppState,
    Conversation,
    Message,
    Role,
    Source,
    dedupe_sources,
    new_conversation_id,
    new_message_id,
)

__all__ = [
    "AppState",
    "Conversation",
    "Message",
    "Role",
    "Source",
    "dedupe_sources",
    "new_conversation_id",
    "new_message_id",
]
