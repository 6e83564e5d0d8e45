from __future__ import annotations

import os

os.environ["LOGURU_LEVEL"] = "DEBUG"

from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import pytest

from groundchat.llms import Answer, AnswerProducer, Attachment, Final, Fragment, StreamUnit
from groundchat.models import AppState, Conversation, Source
from groundchat.persistence import MemorySnapshotSlot, PersistenceAdapter
from groundchat.store import ConversationStore


class ScriptedProducer(AnswerProducer):
    """Answer producer replaying a fixed list of units.

    ``fail_after`` makes the stream raise after that many units have been
    yielded; ``answer_error`` makes the single-shot call raise.
    """

    def __init__(
        self,
        units: Sequence[StreamUnit] = (),
        fail_after: int | None = None,
        answer: Answer | None = None,
        answer_error: Exception | None = None,
    ):
        self.units = list(units)
        self.fail_after = fail_after
        self._answer = answer or Answer(text="")
        self.answer_error = answer_error
        self.calls: list[tuple[str, list[Attachment]]] = []
        self.closed = False
        self.yielded = 0

    async def stream(self, question: str, attachments: Sequence[Attachment] = ()) -> AsyncIterator[StreamUnit]:
        self.calls.append((question, list(attachments)))
        try:
            for index, unit in enumerate(self.units):
                if self.fail_after is not None and index == self.fail_after:
                    raise RuntimeError("connection reset")
                self.yielded += 1
                yield unit
            if self.fail_after is not None and self.fail_after >= len(self.units):
                raise RuntimeError("connection reset")
        finally:
            self.closed = True

    async def answer(self, question: str, attachments: Sequence[Attachment] = ()) -> Answer:
        self.calls.append((question, list(attachments)))
        if self.answer_error:
            raise self.answer_error
        return self._answer

    async def close(self) -> None:
        self.closed = True


def fragments(*texts: str, sources: Sequence[Source] | None = None) -> list[StreamUnit]:
    units: list[StreamUnit] = [Fragment(text=text) for text in texts]
    if sources is not None:
        units.append(Final(sources=list(sources)))
    return units


@pytest.fixture
def scripted_producer():
    return ScriptedProducer


@pytest.fixture
def make_units():
    return fragments


@pytest.fixture
def slot() -> MemorySnapshotSlot:
    return MemorySnapshotSlot()


@pytest.fixture
def persistence(slot: MemorySnapshotSlot) -> PersistenceAdapter:
    return PersistenceAdapter(slot)


@pytest.fixture
def conversation() -> Conversation:
    return Conversation(id="conv1", title="New chat")


@pytest.fixture
def store(persistence: PersistenceAdapter, conversation: Conversation) -> ConversationStore:
    store = ConversationStore(persistence)
    store.install(AppState(conversations=[conversation], active_conversation_id=conversation.id))
    return store


@pytest.fixture
def db_env(monkeypatch, tmp_path: Path) -> Path:
    sqlite_path = tmp_path / "groundchat.sqlite"
    monkeypatch.setenv("GROUNDCHAT_SQLITE_FILE_PATH", str(sqlite_path))
    return sqlite_path
