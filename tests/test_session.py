from pathlib import Path

import pytest

from groundchat.models import Source
from groundchat.reconciler import StreamReconciler
from groundchat.session import ChatSession, attachment_prompt
from groundchat.share import ShareLinkCodec
from groundchat.voice import VoiceCapture


class FakeVoice(VoiceCapture):
    def __init__(self):
        self.listening = False

    @property
    def is_listening(self) -> bool:
        return self.listening

    def start(self) -> None:
        self.listening = True

    def stop(self) -> None:
        self.listening = False


@pytest.fixture
def files(tmp_path: Path) -> list[Path]:
    manual = tmp_path / "manual.pdf"
    manual.write_bytes(b"%PDF-1.4")
    photo = tmp_path / "photo.png"
    photo.write_bytes(b"\x89PNG")
    return [manual, photo]


def make_session(store, producer, **kwargs) -> ChatSession:
    return ChatSession(store, StreamReconciler(store, producer), codec=ShareLinkCodec(), **kwargs)


async def test_send_success(store, scripted_producer, make_units):
    producer = scripted_producer(make_units("Hello", " world", sources=[Source(uri="A", title="x")]))
    session = make_session(store, producer)
    session.question = "Why does door F-28 fail?"

    assert await session.send() is True
    assert session.question == ""
    assert session.error == ""
    assert session.is_loading is False

    conversation = store.get_conversation("conv1")
    assert conversation.title == "Why does door F-28 fail?"
    assert [m.content for m in conversation.messages] == ["Why does door F-28 fail?", "Hello world"]


async def test_send_failure_restores_question_and_attachments(store, scripted_producer, make_units, files):
    producer = scripted_producer(make_units("one", "two", "three"), fail_after=2)
    session = make_session(store, producer)
    session.question = "Why does door F-28 fail?"
    session.add_files(files)

    assert await session.send() is False
    assert session.question == "Why does door F-28 fail?"
    assert session.attachments == files
    assert session.error == "An error occurred: connection reset"
    assert session.is_loading is False
    assert store.get_conversation("conv1").messages == []

    question, attachments = producer.calls[0]
    assert question == "Why does door F-28 fail?"
    assert [(a.name, a.mime_type, a.data) for a in attachments] == [
        ("manual.pdf", "application/pdf", b"%PDF-1.4"),
        ("photo.png", "image/png", b"\x89PNG"),
    ]


async def test_send_attachments_only(store, scripted_producer, make_units, files):
    producer = scripted_producer(make_units("Looks fine", sources=[]))
    session = make_session(store, producer)
    session.add_files(files)

    assert await session.send() is True
    assert store.get_conversation("conv1").messages[0].content == "Analyze the 2 attached files."
    assert session.attachments == []


async def test_send_ignored_without_input(store, scripted_producer):
    producer = scripted_producer()
    session = make_session(store, producer)
    session.question = "   "
    assert session.can_send is False
    assert await session.send() is False
    assert producer.calls == []


async def test_send_with_missing_file_restores_input(store, scripted_producer, tmp_path):
    producer = scripted_producer()
    session = make_session(store, producer)
    missing = tmp_path / "gone.pdf"
    session.attachments = [missing]

    assert await session.send("check this") is False
    assert session.question == "check this"
    assert session.attachments == [missing]
    assert session.error.startswith("Could not read the attached files")
    assert producer.calls == []
    assert store.get_conversation("conv1").messages == []


async def test_send_stops_voice_capture(store, scripted_producer, make_units):
    voice = FakeVoice()
    voice.start()
    session = make_session(store, scripted_producer(make_units("ok", sources=[])), voice=voice)
    session.on_transcript("door stuck")
    assert await session.send() is True
    assert voice.is_listening is False


async def test_single_shot_session(store, scripted_producer):
    from groundchat.llms import Answer

    producer = scripted_producer(answer=Answer(text="Complete", sources=[]))
    session = make_session(store, producer, streaming=False)
    assert await session.send("q") is True
    assert store.get_conversation("conv1").messages[-1].content == "Complete"


def test_add_files_dedupes_by_name(store, scripted_producer, tmp_path):
    session = make_session(store, scripted_producer())
    first = tmp_path / "a" / "manual.pdf"
    other = tmp_path / "photo.png"
    replacement = tmp_path / "b" / "manual.pdf"

    session.add_files([first, other])
    session.add_files([replacement])
    assert session.attachments == [replacement, other]

    session.remove_file("manual.pdf")
    assert session.attachments == [other]


def test_new_conversation_clears_inputs(store, scripted_producer):
    session = make_session(store, scripted_producer())
    session.question = "draft"
    session.error = "old error"
    session.new_conversation()
    assert session.question == ""
    assert session.error == ""
    assert store.state.active_conversation_id != "conv1"


def test_share_and_import(store, scripted_producer):
    store.begin_turn("conv1", "Door question")
    store.append_fragment("conv1", "Door answer")
    store.finalize_turn("conv1", [])
    session = make_session(store, scripted_producer())

    link = session.share_url("https://chat.example.com/")
    assert session.import_link(link) is True

    state = store.state
    assert state.conversations[0].title == "Shared: Door question"
    assert state.active_conversation_id == state.conversations[0].id
    assert [m.content for m in state.conversations[0].messages] == ["Door question", "Door answer"]


def test_import_invalid_link(store, scripted_producer):
    session = make_session(store, scripted_producer())
    assert session.import_link("https://chat.example.com/#share=%%%") is False
    assert session.error == "The share link is not valid."
    assert len(store.state.conversations) == 1


@pytest.mark.parametrize("count, expected", [(1, "Analyze the 1 attached file."), (3, "Analyze the 3 attached files.")])
def test_attachment_prompt(count, expected):
    assert attachment_prompt(count) == expected


async def test_send_restores_input_when_conversation_deleted_while_reading_files(
    store, scripted_producer, make_units, files, monkeypatch
):
    from groundchat.llms import Attachment

    read = Attachment.from_path

    async def read_and_delete(path):
        store.delete_conversation("conv1")
        return await read(path)

    monkeypatch.setattr(Attachment, "from_path", read_and_delete)
    producer = scripted_producer(make_units("a", sources=[]))
    session = make_session(store, producer)
    session.add_files(files)

    assert await session.send("what is wrong?") is False
    assert session.question == "what is wrong?"
    assert session.attachments == files
    assert session.is_loading is False
    assert session.error == "The conversation was deleted before the answer completed."
    assert producer.calls == []
    assert store.get_conversation(store.state.active_conversation_id).messages == []
