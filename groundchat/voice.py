"""Voice input: merging recognized speech into the pending question."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from pydantic import BaseModel


class RecognitionResult(BaseModel):
    transcript: str
    is_final: bool = False


class VoiceCapture(ABC):
    """External speech recognizer with start/stop controls."""

    @property
    @abstractmethod
    def is_listening(self) -> bool:
        pass

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    def toggle(self) -> None:
        if self.is_listening:
            self.stop()
        else:
            self.start()


def final_transcript(results: Iterable[RecognitionResult]) -> str:
    """Concatenate the final results of one recognition event; interim results are ignored."""
    return "".join(result.transcript for result in results if result.is_final).strip()


def append_transcript(question: str, transcript: str) -> str:
    question = question.strip()
    transcript = transcript.strip()
    if not transcript:
        return question
    return f"{question} {transcript}" if question else transcript
