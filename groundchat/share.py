"""Share-link codec.

A shared conversation travels in the URL fragment as ``#share=<token>``,
where the token is the URL-safe base64 encoding of a JSON document::

    {"title": "...", "messages": [{"role": "user", "content": "...", "sources": [...]}]}

Message ids are not transported; they are regenerated on decode.
"""

from __future__ import annotations

import base64
import binascii
import json
from urllib.parse import unquote, urldefrag

from pydantic import BaseModel, Field, ValidationError

from groundchat.errors import InvalidShareToken
from groundchat.models import Conversation, Message, Role, Source, dedupe_sources

SHARE_FRAGMENT_KEY = "share"


class SharedMessage(BaseModel):
    role: Role
    content: str
    sources: list[Source] = Field(default_factory=list)


class SharedConversation(BaseModel):
    title: str
    messages: list[SharedMessage]


class ShareLinkCodec:
    def __init__(self, imported_title_prefix: str = "Shared: "):
        self.imported_title_prefix = imported_title_prefix

    def encode(self, conversation: Conversation) -> str:
        payload = {
            "title": conversation.title,
            "messages": [self._encode_message(message) for message in conversation.messages],
        }
        raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @staticmethod
    def _encode_message(message: Message) -> dict:
        data = {"role": message.role, "content": message.content}
        if message.sources:
            data["sources"] = [source.model_dump() for source in message.sources]
        return data

    def decode(self, token: str) -> Conversation:
        raw = self._b64decode(token)
        try:
            data = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise InvalidShareToken("Share token is not valid UTF-8") from e
        except json.JSONDecodeError as e:
            raise InvalidShareToken("Share token does not contain valid JSON") from e

        if not isinstance(data, dict) or not isinstance(data.get("title"), str):
            raise InvalidShareToken("Share token is missing a title")
        if not isinstance(data.get("messages"), list):
            raise InvalidShareToken("Share token is missing messages")

        try:
            shared = SharedConversation.model_validate(data)
        except ValidationError as e:
            raise InvalidShareToken(f"Share token contains malformed messages: {e}") from e

        return Conversation(
            title=f"{self.imported_title_prefix}{shared.title}",
            messages=[
                Message(
                    role=message.role,
                    content=message.content,
                    sources=dedupe_sources(message.sources) if message.role == "model" else [],
                )
                for message in shared.messages
            ],
        )

    @staticmethod
    def _b64decode(token: str) -> bytes:
        token = unquote(token).strip()
        if not token:
            raise InvalidShareToken("Share token is empty")
        # Accept both the URL-safe and the standard alphabet, padded or not.
        normalized = token.replace("-", "+").replace("_", "/")
        normalized += "=" * (-len(normalized) % 4)
        try:
            return base64.b64decode(normalized, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidShareToken("Share token is not valid base64") from e

    def share_url(self, conversation: Conversation, base_url: str) -> str:
        base, _ = urldefrag(base_url)
        return f"{base}#{SHARE_FRAGMENT_KEY}={self.encode(conversation)}"


def extract_token(url: str) -> str | None:
    """Return the share token carried in the fragment of ``url``, if any."""
    _, fragment = urldefrag(url)
    # Not parse_qs: it would turn "+" from the standard base64 alphabet into spaces.
    for part in fragment.split("&"):
        key, sep, value = part.partition("=")
        if sep and key == SHARE_FRAGMENT_KEY:
            return value or None
    return None
