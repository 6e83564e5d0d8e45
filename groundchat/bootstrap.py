"""Startup resolution of the initial application state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from urllib.parse import urldefrag

from groundchat.errors import InvalidShareToken
from groundchat.log import logger
from groundchat.models import AppState, Conversation
from groundchat.persistence import PersistenceAdapter
from groundchat.share import ShareLinkCodec, extract_token


class Location(ABC):
    """Where the application was opened from."""

    @abstractmethod
    def share_token(self) -> str | None:
        pass

    @abstractmethod
    def strip_share_token(self) -> None:
        pass


class UrlLocation(Location):
    """Location backed by a URL whose fragment may carry ``share=<token>``."""

    def __init__(self, url: str = ""):
        self.url = url

    def share_token(self) -> str | None:
        return extract_token(self.url)

    def strip_share_token(self) -> None:
        self.url, _ = urldefrag(self.url)


class BootstrapResolver:
    def __init__(self, persistence: PersistenceAdapter, codec: ShareLinkCodec, default_title: str = "New chat"):
        self.persistence = persistence
        self.codec = codec
        self.default_title = default_title

    def resolve(self, location: Location | None = None) -> AppState:
        """Pick the initial state: shared conversation, saved history, or a fresh chat."""
        token = location.share_token() if location else None
        if token:
            try:
                imported = self.codec.decode(token)
            except InvalidShareToken as e:
                logger.exception(f"Failed to load shared chat from URL: {e}")
            else:
                saved = self.persistence.load()
                conversations = [imported, *(saved.conversations if saved else [])]
                location.strip_share_token()
                logger.info(f"Loaded shared chat {imported.id}: {imported.title}")
                return AppState(conversations=conversations, active_conversation_id=imported.id)

        saved = self.persistence.load()
        if saved is not None:
            logger.info(f"Loaded {len(saved.conversations)} conversations from history")
            return saved

        conversation = Conversation(title=self.default_title)
        return AppState(conversations=[conversation], active_conversation_id=conversation.id)
