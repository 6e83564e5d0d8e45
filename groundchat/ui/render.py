"""Conversion of conversation state into gradio component values."""

from typing import Any, Dict, List, Optional, Tuple

from groundchat.models import AppState, Conversation, Message

THINKING_PLACEHOLDER = "_Thinking..._"
CURSOR = "▍"


def conversation_choices(state: AppState) -> List[Tuple[str, str]]:
    """Get the radio choices for the conversation list.

    Args:
        state: The application state.

    Returns:
        The conversations as (title, id) pairs, newest first.
    """
    return [(conversation.title, conversation.id) for conversation in state.conversations]


def render_model_message(message: Message) -> str:
    if message.pending:
        return message.content + CURSOR if message.content else THINKING_PLACEHOLDER

    content = message.content
    if message.sources:
        links = "\n".join(f"- [{source.title}]({source.uri})" for source in message.sources)
        content += f"\n\n**Sources:**\n{links}"
    return content


def to_chatbot_messages(conversation: Optional[Conversation]) -> List[Dict[str, Any]]:
    """Convert a conversation into the chatbot's messages format.

    Args:
        conversation: The conversation to display, if any.

    Returns:
        A list of {"role", "content"} dicts.
    """
    if conversation is None:
        return []
    return [
        {"role": "user", "content": message.content}
        if message.role == "user"
        else {"role": "assistant", "content": render_model_message(message)}
        for message in conversation.messages
    ]
