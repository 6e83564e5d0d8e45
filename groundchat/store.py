"""Conversation store.

:class:`ConversationStore` is the only writer of the application state. Every
operation commits synchronously: it bumps the state version, saves a snapshot
through the persistence adapter, notifies subscribers and returns a copy of the
resulting state.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import NamedTuple

from groundchat.errors import NotFound, TurnInProgress
from groundchat.log import logger
from groundchat.models import AppState, Conversation, Message, Source, dedupe_sources
from groundchat.persistence import PersistenceAdapter

StateListener = Callable[[AppState], None]


class _Turn(NamedTuple):
    """Tentative changes of a turn in flight, undone by a rollback."""

    user_message_id: str
    model_message_id: str
    derived_title: str | None
    previous_title: str


def derive_title(user_content: str, word_count: int = 5) -> str:
    """Build a conversation title from the leading words of the first question."""
    words = user_content.split()
    title = " ".join(words[:word_count])
    if len(words) > word_count:
        title += "..."
    return title


class ConversationStore:
    def __init__(
        self,
        persistence: PersistenceAdapter | None = None,
        state: AppState | None = None,
        default_title: str = "New chat",
        title_word_count: int = 5,
    ) -> None:
        self.persistence = persistence
        self.default_title = default_title
        self.title_word_count = title_word_count

        self._state = state.model_copy(deep=True) if state else AppState()
        self._turns: dict[str, _Turn] = {}
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> AppState:
        return self._state.model_copy(deep=True)

    @property
    def version(self) -> int:
        return self._state.version

    @property
    def active_conversation(self) -> Conversation | None:
        conversation = self._state.active_conversation
        return conversation.model_copy(deep=True) if conversation else None

    def get_conversation(self, conversation_id: str) -> Conversation:
        return self._get(conversation_id).model_copy(deep=True)

    def has_pending_turn(self, conversation_id: str) -> bool:
        return self._get(conversation_id).pending_message() is not None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with the new state after every committed mutation."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def install(self, state: AppState) -> AppState:
        """Replace the whole state, e.g. with the result of bootstrapping."""
        conversations = [conversation.model_copy(deep=True) for conversation in state.conversations]
        for conversation in conversations:
            # A turn interrupted by a previous shutdown can never complete.
            for message in conversation.messages:
                if message.pending:
                    logger.warning(f"Settling interrupted message {message.id} in conversation {conversation.id}")
                    message.pending = False

        self._state.conversations = conversations
        self._state.active_conversation_id = state.active_conversation_id
        self._turns.clear()
        if not conversations:
            return self.create_conversation()
        if self._state.get_conversation(state.active_conversation_id) is None:
            self._state.active_conversation_id = conversations[0].id
        return self._commit()

    def import_conversation(self, conversation: Conversation) -> AppState:
        """Prepend an imported conversation and make it active."""
        imported = conversation.model_copy(deep=True)
        for message in imported.messages:
            message.pending = False
        self._state.conversations.insert(0, imported)
        self._state.active_conversation_id = imported.id
        logger.info(f"Imported conversation {imported.id}: {imported.title}")
        return self._commit()

    def create_conversation(self) -> AppState:
        conversation = Conversation(title=self.default_title)
        self._state.conversations.insert(0, conversation)
        self._state.active_conversation_id = conversation.id
        logger.debug(f"Created conversation {conversation.id}")
        return self._commit()

    def select_conversation(self, conversation_id: str) -> AppState:
        self._get(conversation_id)
        self._state.active_conversation_id = conversation_id
        return self._commit()

    def delete_conversation(self, conversation_id: str) -> AppState:
        conversation = self._state.get_conversation(conversation_id)
        if conversation is None:
            return self.state

        self._state.conversations.remove(conversation)
        self._turns.pop(conversation_id, None)
        logger.debug(f"Deleted conversation {conversation_id}")

        if self._state.active_conversation_id == conversation_id:
            if not self._state.conversations:
                return self.create_conversation()
            self._state.active_conversation_id = self._state.conversations[0].id
        return self._commit()

    def rename_conversation(self, conversation_id: str, title: str) -> AppState:
        conversation = self._get(conversation_id)
        conversation.title = title.strip() or self.default_title
        return self._commit()

    def begin_turn(self, conversation_id: str, user_content: str) -> AppState:
        conversation = self._get(conversation_id)
        if conversation.pending_message() is not None:
            raise TurnInProgress(conversation_id)

        previous_title = conversation.title
        derived_title = None
        if not conversation.messages and conversation.title == self.default_title:
            derived_title = derive_title(user_content, self.title_word_count) or None
            if derived_title:
                conversation.title = derived_title

        user_message = Message(role="user", content=user_content)
        model_message = Message(role="model", pending=True)
        conversation.messages.extend([user_message, model_message])
        self._turns[conversation_id] = _Turn(user_message.id, model_message.id, derived_title, previous_title)
        return self._commit()

    def append_fragment(self, conversation_id: str, text: str) -> AppState:
        message = self._get(conversation_id).pending_message()
        if message is None:
            logger.warning(f"Dropping fragment for conversation {conversation_id} without a pending message")
            return self.state

        message.content += text
        return self._commit()

    def finalize_turn(self, conversation_id: str, sources: Iterable[Source]) -> AppState:
        message = self._get(conversation_id).pending_message()
        if message is None:
            logger.warning(f"No pending message to finalize in conversation {conversation_id}")
            return self.state

        message.sources = dedupe_sources(sources)
        message.pending = False
        self._turns.pop(conversation_id, None)
        return self._commit()

    def fail_turn(self, conversation_id: str) -> AppState:
        conversation = self._get(conversation_id)
        turn = self._turns.pop(conversation_id, None)
        if turn is None:
            logger.warning(f"No turn in flight to roll back in conversation {conversation_id}")
            return self.state

        rolled_back = {turn.user_message_id, turn.model_message_id}
        conversation.messages = [message for message in conversation.messages if message.id not in rolled_back]
        # A rename during the turn wins over the derived title.
        if turn.derived_title is not None and conversation.title == turn.derived_title:
            conversation.title = turn.previous_title
        logger.debug(f"Rolled back turn in conversation {conversation_id}")
        return self._commit()

    def _get(self, conversation_id: str) -> Conversation:
        conversation = self._state.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(conversation_id)
        return conversation

    def _commit(self) -> AppState:
        self._state.version += 1
        if self.persistence:
            self.persistence.save(self._state)

        state = self.state
        for listener in list(self._listeners):
            listener(state)
        return state
