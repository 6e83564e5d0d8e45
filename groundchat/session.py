"""Chat session: the input side of the assistant.

Holds the question being typed, the selected attachments and the last error,
and turns a send action into a reconciled turn. A failed turn hands the
question and the attachments back so the user can retry without retyping.
"""

from __future__ import annotations

from collections.abc import Iterable
from os import PathLike
from pathlib import Path

from groundchat.errors import InvalidShareToken, ProducerFailure
from groundchat.llms import Attachment
from groundchat.log import logger
from groundchat.reconciler import StreamReconciler
from groundchat.share import ShareLinkCodec, extract_token
from groundchat.store import ConversationStore
from groundchat.voice import VoiceCapture, append_transcript


def attachment_prompt(count: int) -> str:
    return f"Analyze the {count} attached file{'' if count == 1 else 's'}."


class ChatSession:
    def __init__(
        self,
        store: ConversationStore,
        reconciler: StreamReconciler,
        codec: ShareLinkCodec | None = None,
        voice: VoiceCapture | None = None,
        streaming: bool = True,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.codec = codec or ShareLinkCodec()
        self.voice = voice
        self.streaming = streaming

        self.question = ""
        self.attachments: list[Path] = []
        self.is_loading = False
        self.error = ""

    @property
    def can_send(self) -> bool:
        return (bool(self.question.strip()) or bool(self.attachments)) and not self.is_loading

    def add_files(self, paths: Iterable[PathLike | str]) -> None:
        # Unique by file name; a later pick replaces an earlier one in place.
        unique = {path.name: path for path in self.attachments}
        for path in map(Path, paths):
            unique[path.name] = path
        self.attachments = list(unique.values())
        self.error = ""

    def remove_file(self, name: str) -> None:
        self.attachments = [path for path in self.attachments if path.name != name]

    def on_transcript(self, transcript: str) -> None:
        self.question = append_transcript(self.question, transcript)

    def new_conversation(self) -> None:
        self.store.create_conversation()
        self.question = ""
        self.attachments = []
        self.error = ""

    def select_conversation(self, conversation_id: str) -> None:
        self.store.select_conversation(conversation_id)

    def share_url(self, base_url: str, conversation_id: str | None = None) -> str:
        conversation_id = conversation_id or self.store.state.active_conversation_id
        return self.codec.share_url(self.store.get_conversation(conversation_id), base_url)

    def import_link(self, link: str) -> bool:
        """Import a conversation from a share link or a bare token."""
        token = extract_token(link) or link.strip()
        try:
            conversation = self.codec.decode(token)
        except InvalidShareToken as e:
            logger.warning(f"Failed to import shared chat: {e}")
            self.error = "The share link is not valid."
            return False
        self.store.import_conversation(conversation)
        self.error = ""
        return True

    async def send(self, question: str | None = None) -> bool:
        """Send the question and attachments as a new turn of the active conversation.

        Returns True when the answer completed.
        """
        question = question or self.question
        if (not question.strip() and not self.attachments) or self.is_loading:
            return False
        conversation_id = self.store.state.active_conversation_id
        if not conversation_id:
            return False

        if self.voice is not None and self.voice.is_listening:
            self.voice.stop()

        files = list(self.attachments)
        user_content = question.strip() or attachment_prompt(len(files))

        self.question = ""
        self.attachments = []
        self.is_loading = True
        self.error = ""
        try:
            try:
                payloads = [await Attachment.from_path(path) for path in files]
            except OSError as e:
                logger.exception(f"Failed to read attachments: {e}")
                self._restore(question, files, f"Could not read the attached files: {e}")
                return False

            run = self.reconciler.run_turn if self.streaming else self.reconciler.run_single_shot
            try:
                answer = await run(conversation_id, question, payloads, user_content=user_content)
            except ProducerFailure as e:
                self._restore(question, files, f"An error occurred: {e.message}")
                return False
            if answer is None:
                logger.info(f"Conversation {conversation_id} was deleted before the answer completed")
                self._restore(question, files, "The conversation was deleted before the answer completed.")
                return False
        finally:
            self.is_loading = False
        return True

    def _restore(self, question: str, files: list[Path], error: str) -> None:
        self.question = question
        self.attachments = files
        self.error = error
