"""Chat turn orchestration: retrieval, prompting, streaming and fallback."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .config import config
from .generation import GenerationRequest
from .models import RetrievalOutcome, StreamEvent

if TYPE_CHECKING:
    from .generation import GenerationBackend
    from .models import Chatbot, ConversationTurn, RetrievalResult
    from .records import ConversationStore, DocumentRepository
    from .retrieval import Retriever

logger = config.get_logger(__name__)

PREVIEW_LENGTH = 200
FALLBACK_SEPARATOR = "\n\n"
ERROR_PREFIX = "There was an error processing your request."


class ChatState(Enum):
    """Stages of a single chat turn."""

    IDLE = "idle"
    RETRIEVING = "retrieving"
    PROMPTING = "prompting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FALLBACK_COMPLETED = "fallback_completed"


@dataclass
class ChatTurn:
    """Progress of a single call to :meth:`ChatOrchestrator.stream_reply`.

    Each call owns its turn, so concurrent replies never see each other's state.
    """

    state: ChatState = ChatState.IDLE


@dataclass
class _TurnContext:
    history: list[ConversationTurn]
    outcome: RetrievalOutcome


def fallback_response(message: str, document_count: int) -> str:
    """Canned reply used when the generation service is unavailable.

    Returns:
        Text restating the query and the size of the knowledge base.
    """
    if document_count > 0:
        doc_info = (
            f" I have access to {document_count} document(s) in my knowledge base."
        )
    else:
        doc_info = " No documents are currently available in my knowledge base."
    return (
        f'I understand you\'re asking about: "{message}".{doc_info} '
        "However, I'm currently running in fallback mode as the AI service is "
        "not available. Please try again later or contact support if this issue "
        "persists."
    )


def error_response(message: str, document_count: int) -> str:
    """Canned reply used when the turn failed before generation started.

    Returns:
        Text restating the query and the size of the knowledge base.
    """
    return (
        f'{ERROR_PREFIX} However, I can see you asked: "{message}". '
        f"I have access to {document_count} document(s) in my knowledge base."
    )


class ChatOrchestrator:
    """Answers chat messages with retrieved context, streaming the reply.

    Each call to :meth:`stream_reply` walks Idle -> Retrieving -> Prompting ->
    Streaming -> Finalizing and ends Completed, or Fallback-Completed when the
    backend is missing or fails. Both endings emit the same event sequence:
    ``content`` events, one ``metadata`` event, then ``done``. Pass a
    :class:`ChatTurn` to follow the state of one reply.
    """

    def __init__(  # noqa: PLR0913
        self,
        retriever: Retriever,
        documents: DocumentRepository,
        history: ConversationStore,
        backend: GenerationBackend | None,
        top_k: int | None = None,
        history_turns: int | None = None,
        fallback_delay: float | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            retriever: Finds relevant chunks for the message.
            documents: Document records, used for the fallback document count.
            history: Conversation history collaborator.
            backend: Generation backend, or None when not configured.
            top_k: Chunks requested from the retriever. If None, uses
                config.RAG_TOP_K.
            history_turns: Prior turns included in the prompt. If None, uses
                config.HISTORY_TURNS.
            fallback_delay: Seconds between fallback tokens. If None, uses
                config.FALLBACK_TOKEN_DELAY.
        """
        self.retriever = retriever
        self.documents = documents
        self.history = history
        self.backend = backend
        self.top_k = top_k if top_k is not None else config.RAG_TOP_K
        self.history_turns = (
            history_turns if history_turns is not None else config.HISTORY_TURNS
        )
        self.fallback_delay = (
            fallback_delay if fallback_delay is not None else config.FALLBACK_TOKEN_DELAY
        )

    @staticmethod
    def build_system_prompt(chatbot: Chatbot, results: list[RetrievalResult]) -> str:
        """Combine the chatbot's instructions with retrieved document content.

        Returns:
            The system prompt for the generation backend.
        """
        prompt = chatbot.system_prompt or "You are a helpful assistant."
        if results:
            context_text = "\n\n".join(result.content for result in results)
            prompt += (
                f"\n\nRELEVANT DOCUMENTS:\n{context_text}\n\n"
                "Please use this information to help answer the user's question. "
                "If the information is relevant, reference it naturally in your "
                "response."
            )
        return prompt

    def build_request(
        self,
        chatbot: Chatbot,
        message: str,
        history: list[ConversationTurn],
        results: list[RetrievalResult],
    ) -> GenerationRequest:
        """Assemble the augmented prompt for one turn.

        Returns:
            Request carrying system prompt, prior turns and the user message.
        """
        prior = [
            {"role": turn.role, "content": turn.content}
            for turn in history[-self.history_turns :]
            if turn.role in {"user", "assistant"}
        ]
        return GenerationRequest(
            system_prompt=self.build_system_prompt(chatbot, results),
            current_message=message,
            prior_messages=prior,
        )

    @staticmethod
    def describe_results(results: list[RetrievalResult]) -> dict[str, Any]:
        """Metadata reported to the caller once the reply is complete.

        Returns:
            ``documentsUsed`` count and short previews of the chunks used.
        """
        return {
            "documentsUsed": len(results),
            "relevantDocuments": [
                {
                    "content": result.content[:PREVIEW_LENGTH] + "...",
                    "relevanceScore": result.relevance_score,
                    "metadata": result.metadata,
                }
                for result in results
            ],
        }

    async def _prepare(
        self, turn: ChatTurn, chatbot: Chatbot, conversation_id: str, message: str
    ) -> _TurnContext:
        history = await asyncio.to_thread(
            self.history.get_history, conversation_id, self.history_turns
        )
        await asyncio.to_thread(
            self.history.append_message, conversation_id, "user", message
        )

        turn.state = ChatState.RETRIEVING
        outcome = await asyncio.to_thread(
            self.retriever.search_relevant, chatbot.id, message, self.top_k
        )
        if outcome.degraded:
            logger.warning(
                "No relevant context for chatbot %s (%s)",
                chatbot.id,
                outcome.status.value,
            )
        else:
            logger.info(
                "Using %d relevant documents for chatbot %s", len(outcome), chatbot.id
            )
        return _TurnContext(history=history, outcome=outcome)

    async def stream_reply(
        self,
        chatbot: Chatbot,
        conversation_id: str,
        message: str,
        turn: ChatTurn | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Answer ``message`` as a stream of events.

        Deltas are forwarded as they arrive. If the consumer stops iterating,
        the backend stream is closed and nothing more is pulled from it. When
        the backend fails after delivering text, the fallback reply follows a
        blank line.

        Args:
            chatbot: Chatbot answering the message.
            conversation_id: Conversation the turn belongs to.
            message: The user message.
            turn: Receives the state of this reply as it progresses.

        Yields:
            ``content`` events, then one ``metadata`` event, then ``done``.
        """
        turn = turn if turn is not None else ChatTurn()
        turn.state = ChatState.IDLE
        delivered: list[str] = []

        try:
            context: _TurnContext | None = await self._prepare(
                turn, chatbot, conversation_id, message
            )
        except Exception:  # noqa: BLE001
            logger.exception("Error in chat processing for chatbot %s", chatbot.id)
            context = None

        if context is not None and self.backend is not None:
            turn.state = ChatState.PROMPTING
            results = context.outcome.results
            request = self.build_request(chatbot, message, context.history, results)

            turn.state = ChatState.STREAMING
            try:
                async with aclosing(self.backend.stream(request)) as deltas:
                    async for delta in deltas:
                        delivered.append(delta)
                        yield StreamEvent(type="content", content=delta)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Generation failed after %d deltas, falling back", len(delivered)
                )
            else:
                async for event in self._finalize(
                    turn,
                    conversation_id,
                    "".join(delivered),
                    self.describe_results(results),
                    ChatState.COMPLETED,
                ):
                    yield event
                logger.info(
                    "Response generated for chatbot %s using %d documents",
                    chatbot.id,
                    len(results),
                )
                return
        elif context is not None:
            logger.warning("Generation backend not configured, using fallback response")

        text = await self._fallback_text(chatbot, message, failed=context is None)
        if delivered:
            delivered.append(FALLBACK_SEPARATOR)
            yield StreamEvent(type="content", content=FALLBACK_SEPARATOR)
        async for token in self._fallback_tokens(text):
            delivered.append(token)
            yield StreamEvent(type="content", content=token)

        async for event in self._finalize(
            turn,
            conversation_id,
            "".join(delivered),
            self.describe_results([]),
            ChatState.FALLBACK_COMPLETED,
        ):
            yield event

    async def _fallback_text(self, chatbot: Chatbot, message: str, *, failed: bool) -> str:
        try:
            document_count = await asyncio.to_thread(
                self.documents.count_by_chatbot, chatbot.id
            )
        except Exception:  # noqa: BLE001
            logger.exception("Could not count documents for chatbot %s", chatbot.id)
            document_count = 0
        if failed:
            return error_response(message, document_count)
        return fallback_response(message, document_count)

    async def _fallback_tokens(self, text: str) -> AsyncIterator[str]:
        """Deliver canned text one word at a time with a fixed delay.

        Yields:
            Each word followed by a single space.
        """
        for position, word in enumerate(text.split(" ")):
            if position and self.fallback_delay > 0:
                await asyncio.sleep(self.fallback_delay)
            yield f"{word} "

    async def _finalize(
        self,
        turn: ChatTurn,
        conversation_id: str,
        full_text: str,
        metadata: dict[str, Any],
        final_state: ChatState,
    ) -> AsyncIterator[StreamEvent]:
        turn.state = ChatState.FINALIZING
        try:
            await asyncio.to_thread(
                self.history.append_message, conversation_id, "assistant", full_text
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to save assistant reply for conversation %s", conversation_id
            )
        yield StreamEvent(type="metadata", metadata=metadata)
        turn.state = final_state
        yield StreamEvent(type="done")

    async def answer(self, chatbot: Chatbot, conversation_id: str, message: str) -> str:
        """Run a turn to completion and return the delivered text.

        Returns:
            The concatenated content of the reply.
        """
        parts = [
            event.content
            async for event in self.stream_reply(chatbot, conversation_id, message)
            if event.type == "content"
        ]
        return "".join(parts)
