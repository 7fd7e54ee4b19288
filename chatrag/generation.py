"""Streaming text-generation backends."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from .config import config
from .errors import GenerationFailure

logger = config.get_logger(__name__)


@dataclass
class GenerationRequest:
    """Everything the backend needs to answer one chat turn."""

    system_prompt: str
    current_message: str
    prior_messages: list[dict[str, str]] = field(default_factory=list)

    def to_messages(self) -> list[dict[str, str]]:
        """Chat-completions message list for the request.

        Returns:
            System prompt, prior turns, then the current user message.
        """
        return [
            {"role": "system", "content": self.system_prompt},
            *self.prior_messages,
            {"role": "user", "content": self.current_message},
        ]


class GenerationBackend(Protocol):
    """A one-way, single-pass stream of text deltas."""

    def stream(self, request: GenerationRequest) -> AsyncIterator[str]: ...


class OpenAIGenerationBackend:
    """Streams chat completions from the OpenAI API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            api_key: OpenAI API key. If None, reads from OPENAI_API_KEY.
            model: Chat model. If None, uses config.CHAT_MODEL.
            max_tokens: Completion limit. If None, uses config.CHAT_MAX_TOKENS.
            temperature: Sampling temperature. If None, uses
                config.CHAT_TEMPERATURE.
        """
        default_headers = config.get_api_headers()
        self.client = AsyncOpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.CHAT_MODEL
        self.max_tokens = max_tokens or config.CHAT_MAX_TOKENS
        self.temperature = (
            temperature if temperature is not None else config.CHAT_TEMPERATURE
        )

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield text deltas in arrival order.

        Chunks without text content are skipped. Closing the generator early
        closes the underlying HTTP stream.

        Yields:
            Non-empty text deltas.

        Raises:
            GenerationFailure: If the request or the stream fails.
        """
        logger.info(
            "Generating streaming response for message: %r",
            request.current_message[:50],
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=request.to_messages(),  # pyright: ignore[reportArgumentType]
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
            )
        except OpenAIError as exc:
            msg = f"Generation request failed: {exc}"
            raise GenerationFailure(msg) from exc

        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except OpenAIError as exc:
            msg = f"Generation stream failed: {exc}"
            raise GenerationFailure(msg) from exc
        finally:
            await response.close()


def build_generation_backend(
    api_key: str | None = None,
) -> OpenAIGenerationBackend | None:
    """Construct the generation backend if an API key is available.

    Returns:
        The backend, or None when generation is not configured.
    """
    if not api_key and not config.is_generation_configured():
        logger.warning("OPENAI_API_KEY not set; chat replies will use fallback mode")
        return None
    return OpenAIGenerationBackend(api_key=api_key)
