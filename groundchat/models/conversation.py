"""Conversation models for groundchat."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

Role = Literal["user", "model"]


def new_conversation_id() -> str:
    return f"chat-{uuid4().hex}"


def new_message_id(role: str) -> str:
    return f"{role}-{uuid4().hex}"


class Source(BaseModel):
    """Grounding source model."""

    uri: str
    title: str


def dedupe_sources(sources: Iterable[Source]) -> list[Source]:
    """Drop sources whose uri was already seen, keeping first-seen order."""
    unique: dict[str, Source] = {}
    for source in sources:
        if source.uri not in unique:
            unique[source.uri] = source
    return list(unique.values())


class Message(BaseModel):
    """Message model."""

    id: str = ""
    role: Role
    content: str = ""
    sources: list[Source] = Field(default_factory=list)
    pending: bool = False

    def model_post_init(self, __context) -> None:
        if not self.id:
            self.id = new_message_id(self.role)


class Conversation(BaseModel):
    """Conversation model."""

    id: str = Field(default_factory=new_conversation_id)
    title: str
    messages: list[Message] = Field(default_factory=list)

    def pending_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.pending:
                return message
        return None


class AppState(BaseModel):
    """Application state model.

    Conversations are ordered newest first. ``version`` counts committed
    mutations and is never persisted.
    """

    conversations: list[Conversation] = Field(default_factory=list)
    active_conversation_id: str | None = None
    version: int = 0

    def get_conversation(self, conversation_id: str | None) -> Conversation | None:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    @property
    def active_conversation(self) -> Conversation | None:
        return self.get_conversation(self.active_conversation_id)
