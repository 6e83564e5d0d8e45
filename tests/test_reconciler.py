import asyncio

import pytest

from groundchat.errors import ProducerFailure
from groundchat.llms import Answer, Attachment, Fragment
from groundchat.models import Source
from groundchat.reconciler import StreamReconciler


async def test_run_turn_streams_fragments_and_finalizes(store, scripted_producer, make_units):
    sources = [Source(uri="A", title="x"), Source(uri="B", title="y"), Source(uri="A", title="z")]
    producer = scripted_producer(make_units("Hello", " world", "!", sources=sources))
    reconciler = StreamReconciler(store, producer)

    contents = []
    store.subscribe(lambda state: contents.append(state.get_conversation("conv1").messages[-1].content))

    message = await reconciler.run_turn("conv1", "Say hello")

    assert message.content == "Hello world!"
    assert message.pending is False
    assert message.sources == [Source(uri="A", title="x"), Source(uri="B", title="y")]
    assert contents == ["", "Hello", "Hello world", "Hello world!", "Hello world!"]
    assert producer.calls == [("Say hello", [])]
    assert producer.closed


async def test_run_turn_without_final_unit_finalizes_with_no_sources(store, scripted_producer, make_units):
    reconciler = StreamReconciler(store, scripted_producer(make_units("partial answer")))
    message = await reconciler.run_turn("conv1", "q")
    assert message.content == "partial answer"
    assert message.sources == []
    assert message.pending is False


async def test_run_turn_uses_user_content(store, scripted_producer, make_units):
    producer = scripted_producer(make_units("ok", sources=[]))
    attachment = Attachment(name="plan.png", mime_type="image/png", data=b"\x89PNG")
    await StreamReconciler(store, producer).run_turn(
        "conv1", "", [attachment], user_content="Analyze the 1 attached file."
    )

    user = store.get_conversation("conv1").messages[0]
    assert user.content == "Analyze the 1 attached file."
    assert producer.calls == [("", [attachment])]


async def test_producer_failure_rolls_back_and_returns_question(store, scripted_producer, make_units):
    store.begin_turn("conv1", "earlier")
    store.finalize_turn("conv1", [])
    before = store.get_conversation("conv1").messages

    producer = scripted_producer(make_units("one", "two", "three", sources=[]), fail_after=2)
    attachment = Attachment(name="a.txt", mime_type="text/plain", data=b"a")

    with pytest.raises(ProducerFailure) as exc_info:
        await StreamReconciler(store, producer).run_turn("conv1", "Why does door F-28 fail?", [attachment])

    assert producer.yielded == 2
    assert exc_info.value.question == "Why does door F-28 fail?"
    assert exc_info.value.attachments == [attachment]
    assert "connection reset" in str(exc_info.value)
    assert store.get_conversation("conv1").messages == before
    assert not store.has_pending_turn("conv1")


async def test_deleted_conversation_discards_remaining_units(store, scripted_producer, make_units):
    other = store.create_conversation().active_conversation_id
    producer = scripted_producer(make_units("a", "b", "c", sources=[]))

    def delete_on_first_fragment(state):
        conversation = state.get_conversation(other)
        if conversation and conversation.messages and conversation.messages[-1].content == "a":
            store.delete_conversation(other)

    store.subscribe(delete_on_first_fragment)
    result = await StreamReconciler(store, producer).run_turn(other, "q")

    assert result is None
    assert producer.yielded == 2
    assert producer.closed
    assert [c.id for c in store.state.conversations] == ["conv1"]


async def test_cancellation_rolls_back(store):
    gate = asyncio.Event()

    class StallingProducer:
        async def stream(self, question, attachments=()):
            yield Fragment(text="started")
            await gate.wait()

    task = asyncio.create_task(StreamReconciler(store, StallingProducer()).run_turn("conv1", "q"))
    while not store.get_conversation("conv1").messages or not store.get_conversation("conv1").messages[-1].content:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert store.get_conversation("conv1").messages == []


async def test_run_single_shot(store, scripted_producer):
    producer = scripted_producer(
        answer=Answer(text="Full answer", sources=[Source(uri="A", title="x"), Source(uri="A", title="y")])
    )
    message = await StreamReconciler(store, producer).run_single_shot("conv1", "q")
    assert message.content == "Full answer"
    assert message.sources == [Source(uri="A", title="x")]
    assert message.pending is False


async def test_run_single_shot_failure_removes_both_messages(store, scripted_producer):
    producer = scripted_producer(answer_error=ProducerFailure("Failed to connect to the AI service."))
    with pytest.raises(ProducerFailure) as exc_info:
        await StreamReconciler(store, producer).run_single_shot("conv1", "q")

    assert exc_info.value.message == "Failed to connect to the AI service."
    assert exc_info.value.question == "q"
    assert store.get_conversation("conv1").messages == []


async def test_turn_on_missing_conversation_is_noop(store, scripted_producer, make_units):
    producer = scripted_producer(make_units("a", sources=[]))
    reconciler = StreamReconciler(store, producer)
    version = store.version

    assert await reconciler.run_turn("stale", "q") is None
    assert await reconciler.run_single_shot("stale", "q") is None
    assert producer.calls == []
    assert store.version == version
