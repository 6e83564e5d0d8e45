"""Error kinds raised by the conversation state engine."""

from __future__ import annotations

from typing import Any


class GroundchatError(Exception):
    """Base class for all groundchat errors."""


class NotFound(GroundchatError):
    """A conversation id does not reference an existing conversation."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class TurnInProgress(GroundchatError):
    """A turn was started on a conversation that already has a pending message."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} already has a turn in progress")
        self.conversation_id = conversation_id


class InvalidShareToken(GroundchatError):
    """A share token is not well-formed or is missing required fields."""


class PersistenceFailure(GroundchatError):
    """Reading or writing the durable snapshot slot failed."""


class ProducerFailure(GroundchatError):
    """The answer-generation service failed.

    Carries the question and attachments of the failed turn so the caller can
    hand them back to the user for resubmission.
    """

    def __init__(self, message: str, question: str | None = None, attachments: list[Any] | None = None):
        super().__init__(message)
        self.message = message
        self.question = question
        self.attachments = list(attachments or [])
