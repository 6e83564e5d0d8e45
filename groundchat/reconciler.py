"""Drives one turn against an answer producer and commits it to the store."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from groundchat.errors import NotFound, ProducerFailure
from groundchat.llms import AnswerProducer, Attachment, Final, Fragment
from groundchat.log import logger
from groundchat.models import AppState, Message, Source
from groundchat.store import ConversationStore


class StreamReconciler:
    def __init__(self, store: ConversationStore, producer: AnswerProducer) -> None:
        self.store = store
        self.producer = producer

    async def run_turn(
        self,
        conversation_id: str,
        question: str,
        attachments: Sequence[Attachment] = (),
        user_content: str | None = None,
    ) -> Message | None:
        """Stream an answer into ``conversation_id``.

        Returns the finalized model message, or None if the conversation went
        away while the answer was streaming. Raises :class:`ProducerFailure`
        after rolling the turn back when the producer fails.
        """
        if self._apply(self.store.begin_turn, conversation_id, user_content or question) is None:
            return None

        sources: list[Source] | None = None
        stream = self.producer.stream(question, attachments)
        try:
            async for unit in stream:
                if isinstance(unit, Fragment):
                    if self._apply(self.store.append_fragment, conversation_id, unit.text) is None:
                        logger.info(f"Conversation {conversation_id} is gone, discarding the rest of the answer")
                        return None
                elif isinstance(unit, Final):
                    sources = unit.sources
        except asyncio.CancelledError:
            self._apply(self.store.fail_turn, conversation_id)
            raise
        except Exception as e:
            logger.exception(f"Answer stream failed for conversation {conversation_id}: {e}")
            self._apply(self.store.fail_turn, conversation_id)
            raise self._failure(e, question, attachments) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if sources is None:
            logger.warning(f"Answer stream for conversation {conversation_id} ended without sources")
        state = self._apply(self.store.finalize_turn, conversation_id, sources or [])
        return self._last_model_message(state, conversation_id)

    async def run_single_shot(
        self,
        conversation_id: str,
        question: str,
        attachments: Sequence[Attachment] = (),
        user_content: str | None = None,
    ) -> Message | None:
        """Fetch a complete answer in one call and commit it as a single fragment."""
        if self._apply(self.store.begin_turn, conversation_id, user_content or question) is None:
            return None
        try:
            answer = await self.producer.answer(question, attachments)
        except asyncio.CancelledError:
            self._apply(self.store.fail_turn, conversation_id)
            raise
        except Exception as e:
            logger.exception(f"Answer request failed for conversation {conversation_id}: {e}")
            self._apply(self.store.fail_turn, conversation_id)
            raise self._failure(e, question, attachments) from e

        if self._apply(self.store.append_fragment, conversation_id, answer.text) is None:
            return None
        state = self._apply(self.store.finalize_turn, conversation_id, answer.sources)
        return self._last_model_message(state, conversation_id)

    @staticmethod
    def _apply(mutation: Callable[..., AppState], conversation_id: str, *args: Any) -> AppState | None:
        try:
            return mutation(conversation_id, *args)
        except NotFound:
            logger.debug(f"Ignoring {mutation.__name__} for missing conversation {conversation_id}")
            return None

    @staticmethod
    def _failure(error: Exception, question: str, attachments: Sequence[Attachment]) -> ProducerFailure:
        message = error.message if isinstance(error, ProducerFailure) else str(error) or type(error).__name__
        return ProducerFailure(message, question=question, attachments=list(attachments))

    @staticmethod
    def _last_model_message(state: AppState | None, conversation_id: str) -> Message | None:
        conversation = state.get_conversation(conversation_id) if state else None
        if conversation is None or not conversation.messages:
            return None
        message = conversation.messages[-1]
        return message if message.role == "model" else None
