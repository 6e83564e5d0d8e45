from __future__ import annotations

import asyncio
import mimetypes
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from os import PathLike
from pathlib import Path
from typing import Union

from pydantic import BaseModel, Field

from groundchat.models import Source


class Attachment(BaseModel):
    """Binary payload sent along with a question."""

    name: str
    mime_type: str
    data: bytes

    @classmethod
    async def from_path(cls, path: PathLike | str) -> Attachment:
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, mime_type=mime_type or "application/octet-stream", data=data)


class Fragment(BaseModel):
    text: str


class Final(BaseModel):
    sources: list[Source] = Field(default_factory=list)


StreamUnit = Union[Fragment, Final]


class Answer(BaseModel):
    text: str
    sources: list[Source] = Field(default_factory=list)


class AnswerProducer(ABC):
    @abstractmethod
    def stream(self, question: str, attachments: Sequence[Attachment] = ()) -> AsyncIterator[StreamUnit]:
        """Yield text fragments, then exactly one final unit with the sources."""

    @abstractmethod
    async def answer(self, question: str, attachments: Sequence[Attachment] = ()) -> Answer:
        pass


__all__ = ["Answer", "AnswerProducer", "Attachment", "Final", "Fragment", "StreamUnit"]
