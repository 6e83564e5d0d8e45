"""Answer service backed by the Gemini REST API."""

from __future__ import annotations

import base64
import json
from collections.abc import AsyncIterator, Sequence
from typing import Any, Dict, List, Optional

import httpx
from httpx_sse import SSEError, aconnect_sse

from groundchat.config import DEFAULT_ANSWER_PROMPT, Config
from groundchat.errors import ProducerFailure
from groundchat.llms import Answer, AnswerProducer, Attachment, Final, Fragment, StreamUnit
from groundchat.log import logger
from groundchat.models import Source

FAILURE_MESSAGE = "Failed to connect to the AI service."


class GroundingProcessor:
    """Processor for Gemini response chunks.

    Extracts the text of each chunk and collects grounding sources across the
    whole response, unique by uri.
    """

    def __init__(self):
        self.sources: Dict[str, Source] = {}

    def process_chunk(self, chunk: Dict[str, Any]) -> Optional[str]:
        """Process one response chunk.

        Args:
            chunk: A decoded ``GenerateContentResponse``.

        Returns:
            The text carried by the chunk, or None if it carries no text.

        Raises:
            ProducerFailure: If the chunk is not an object or reports an API error.
        """
        if not isinstance(chunk, dict) or "error" in chunk:
            logger.error(f"Unexpected Gemini response chunk: {chunk}")
            raise ProducerFailure(FAILURE_MESSAGE)

        candidates = chunk.get("candidates") or []
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return None
        candidate = candidates[0]

        grounding_chunks = (candidate.get("groundingMetadata") or {}).get("groundingChunks") or []
        for grounding_chunk in grounding_chunks:
            if not isinstance(grounding_chunk, dict):
                continue
            web = grounding_chunk.get("web") or {}
            uri = web.get("uri")
            if uri and uri not in self.sources:
                self.sources[uri] = Source(uri=uri, title=web.get("title") or uri)

        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str))
        return text or None

    def get_sources(self) -> List[Source]:
        """Get the collected sources, in first-seen order."""
        return list(self.sources.values())

    def clear(self) -> None:
        """Clear the processor state."""
        self.sources = {}


class GeminiAnswerService(AnswerProducer):
    """Answer producer for the Gemini API, with Google Search grounding."""

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        prompt_template: str = DEFAULT_ANSWER_PROMPT,
        enable_search: bool = True,
        timeout: float = 120.0,
    ):
        """Initialize the answer service.

        Args:
            api_key: The Gemini API key.
            model_name: The model to query.
            base_url: The base URL of the API.
            prompt_template: Instruction template with a ``{question}`` placeholder.
            enable_search: Whether to enable the Google Search tool.
            timeout: Request timeout in seconds.
        """
        self.api_key = api_key
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.prompt_template = prompt_template
        self.enable_search = enable_search
        self.headers = {"x-goog-api-key": api_key} if api_key else {}
        self.client = httpx.AsyncClient(headers=self.headers, timeout=timeout)
        logger.info(f"Initialized Gemini client for model: {model_name}")

    @classmethod
    def from_config(cls, config: Config) -> GeminiAnswerService:
        return cls(
            api_key=config.gemini_api_key,
            model_name=config.gemini_model_name,
            base_url=config.gemini_base_url,
            prompt_template=config.answer_prompt,
            enable_search=config.enable_search,
            timeout=config.request_timeout,
        )

    def build_payload(self, question: str, attachments: Sequence[Attachment] = ()) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [
            {
                "inlineData": {
                    "mimeType": attachment.mime_type,
                    "data": base64.b64encode(attachment.data).decode("ascii"),
                }
            }
            for attachment in attachments
        ]
        parts.append({"text": self.prompt_template.replace("{question}", question)})

        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if self.enable_search:
            payload["tools"] = [{"googleSearch": {}}]
        return payload

    def _ensure_api_key(self) -> None:
        if not self.api_key:
            raise ProducerFailure("The Gemini API key is not configured.")

    async def stream(self, question: str, attachments: Sequence[Attachment] = ()) -> AsyncIterator[StreamUnit]:
        """Stream an answer.

        Args:
            question: The user's question.
            attachments: Files to send along with the question.

        Yields:
            Text fragments, then one final unit with the grounding sources.
        """
        self._ensure_api_key()
        url = f"{self.base_url}/models/{self.model_name}:streamGenerateContent"
        payload = self.build_payload(question, attachments)
        processor = GroundingProcessor()

        logger.info(f"Making POST request to: {url} with question: {question[:50]}...")
        try:
            async with aconnect_sse(self.client, "POST", url, params={"alt": "sse"}, json=payload) as event_source:
                event_source.response.raise_for_status()
                async for sse in event_source.aiter_sse():
                    if not sse.data:
                        continue
                    text = processor.process_chunk(json.loads(sse.data))
                    if text:
                        yield Fragment(text=text)
        except (httpx.HTTPError, SSEError, json.JSONDecodeError) as e:
            logger.exception(f"Error calling Gemini API: {e}")
            raise ProducerFailure(FAILURE_MESSAGE) from e

        sources = processor.get_sources()
        logger.info(f"Stream completed with {len(sources)} sources")
        yield Final(sources=sources)

    async def answer(self, question: str, attachments: Sequence[Attachment] = ()) -> Answer:
        """Get a complete answer in one request.

        Args:
            question: The user's question.
            attachments: Files to send along with the question.

        Returns:
            The answer text and its grounding sources.
        """
        self._ensure_api_key()
        url = f"{self.base_url}/models/{self.model_name}:generateContent"
        payload = self.build_payload(question, attachments)

        logger.info(f"Making POST request to: {url} with question: {question[:50]}...")
        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.exception(f"Error calling Gemini API: {e}")
            raise ProducerFailure(FAILURE_MESSAGE) from e

        processor = GroundingProcessor()
        text = processor.process_chunk(data) or ""
        return Answer(text=text, sources=processor.get_sources())

    async def close(self) -> None:
        """Close the client."""
        logger.info("Closing Gemini client")
        await self.client.aclose()
