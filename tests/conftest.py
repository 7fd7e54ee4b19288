"""Test configuration and fixtures for chatrag tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Scripted generation backend
- Embedder and text chunking fixtures
- Vector store and record fixtures
- Service factories (pipeline, documents, retrieval, chat)
"""

import asyncio
from collections.abc import AsyncIterator
from unittest.mock import Mock, patch

import pytest

from chatrag import (
    ChatOrchestrator,
    Chatbot,
    ConversationStore,
    DeterministicEmbedder,
    DocumentRepository,
    DocumentService,
    FaissVectorStore,
    IngestionPipeline,
    Retriever,
    SQLiteVectorStore,
    TextChunker,
)
from chatrag.errors import GenerationFailure
from chatrag.generation import GenerationRequest


class TestConstants:
    """Centralized test constants to avoid repetition across test files.

    All test constants are defined here to maintain consistency across
    the test suite and make it easy to update values globally.
    """

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_OPENAI_MODEL = "text-embedding-3-small"
    EMBEDDING_DIMENSION = 64

    # Text Chunking Configuration
    SMALL_CHUNK_SIZE = 100
    SMALL_CHUNK_OVERLAP = 20
    DEFAULT_CHUNK_SIZE = 500
    DEFAULT_CHUNK_OVERLAP = 100

    # Chatbots
    CHATBOT_A = "bot-a"
    CHATBOT_B = "bot-b"
    CONVERSATION_ID = "conversation-1"


ML_TEXTS = [
    "Machine learning is a subset of artificial intelligence.",
    "Neural networks are computational models inspired by the brain.",
    "Deep learning uses multiple layers to learn complex patterns.",
    "Supervised learning uses labeled training data.",
    "Unsupervised learning finds patterns in unlabeled data.",
]

ML_DOCUMENT = "\n\n".join(ML_TEXTS)


class ScriptedBackend:
    """Generation backend that replays fixed deltas, optionally failing.

    ``fail_after`` is the number of deltas delivered before ``error`` is
    raised. ``closed`` records whether the stream was released.
    """

    def __init__(
        self,
        deltas: list[str] | None = None,
        fail_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.deltas = ["Hello", " from", " the", " model."] if deltas is None else deltas
        self.fail_after = fail_after
        self.error = error or GenerationFailure("backend went away")
        self.requests: list[GenerationRequest] = []
        self.pulled = 0
        self.closed = False

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        try:
            for delta in self.deltas:
                if self.fail_after is not None and self.pulled >= self.fail_after:
                    raise self.error
                self.pulled += 1
                await asyncio.sleep(0)
                yield delta
            if self.fail_after is not None and self.pulled >= self.fail_after:
                raise self.error
        finally:
            self.closed = True


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def collect_events(stream) -> list:
    """Drain an async event stream into a list."""

    async def _drain():  # noqa: ANN202
        return [event async for event in stream]

    return asyncio.run(_drain())


@pytest.fixture
def ml_texts() -> list[str]:
    return list(ML_TEXTS)


@pytest.fixture
def ml_document() -> str:
    """Five one-sentence paragraphs about machine learning."""
    return ML_DOCUMENT


@pytest.fixture
def scripted_backend_factory():
    """Factory for ``ScriptedBackend`` instances."""
    return ScriptedBackend


@pytest.fixture
def event_collector():
    """Runs a reply stream to completion and returns its events."""
    return collect_events


@pytest.fixture
def openai_embeddings_api_mock():
    """Patches OpenAI embeddings.create; returns the mock directly."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_embeddings_factory(openai_embeddings_api_mock):
    """Configure the embeddings mock to return the given vectors."""

    def _create_mock(embeddings=None, error=None):  # noqa: ANN202
        openai_embeddings_api_mock.reset_mock()
        openai_embeddings_api_mock.side_effect = error
        openai_embeddings_api_mock.return_value = create_mock_openai_response(
            embeddings or [[0.6, 0.8]]
        )
        return openai_embeddings_api_mock

    return _create_mock


@pytest.fixture
def embedder():
    """Small-dimension deterministic embedder."""
    return DeterministicEmbedder(dimension=TestConstants.EMBEDDING_DIMENSION)


@pytest.fixture
def text_chunker_factory():
    """Factory fixture that creates ``TextChunker`` instances on demand."""
    presets: dict[str, tuple[int, int]] = {
        "small": (
            TestConstants.SMALL_CHUNK_SIZE,
            TestConstants.SMALL_CHUNK_OVERLAP,
        ),
        "default": (
            TestConstants.DEFAULT_CHUNK_SIZE,
            TestConstants.DEFAULT_CHUNK_OVERLAP,
        ),
    }

    def _create_chunker(
        name: str = "default",
        *,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> TextChunker:
        if chunk_size is None or overlap is None:
            try:
                preset_chunk_size, preset_overlap = presets[name]
            except KeyError as exc:
                msg = f"Unknown text chunker preset: {name}"
                raise ValueError(msg) from exc
            chunk_size = preset_chunk_size if chunk_size is None else chunk_size
            overlap = preset_overlap if overlap is None else overlap

        return TextChunker(chunk_size=chunk_size, overlap=overlap)

    return _create_chunker


@pytest.fixture
def text_chunker_small(text_chunker_factory):
    """Text chunker configured for small chunks (100/20)."""
    return text_chunker_factory("small")


@pytest.fixture
def sqlite_store(tmp_path) -> SQLiteVectorStore:
    """Create temporary SQLite vector store for testing."""
    return SQLiteVectorStore(tmp_path / "test_store.db", tmp_path / "vectors")


@pytest.fixture
def faiss_store(tmp_path) -> FaissVectorStore:
    """Create temporary FAISS vector store for testing."""
    return FaissVectorStore(tmp_path / "faiss_store.db", tmp_path / "faiss")


@pytest.fixture(params=["sqlite", "faiss"])
def vector_store(request, tmp_path):
    """Each vector store backend in turn."""
    if request.param == "sqlite":
        return SQLiteVectorStore(tmp_path / "store.db", tmp_path / "vectors")
    return FaissVectorStore(tmp_path / "store.db", tmp_path / "faiss")


@pytest.fixture
def store_chunks(embedder, text_chunker_small):
    """Chunk, embed and store a text under a chatbot; returns the item ids."""

    def _store(store, chatbot_id: str, document_id: str, text: str) -> list[str]:
        chunks = text_chunker_small.chunk_text(text, document_id=document_id)
        vectors = embedder.embed([chunk.text for chunk in chunks])
        return store.store(chatbot_id, document_id, chunks, vectors)

    return _store


@pytest.fixture
def document_repository(tmp_path) -> DocumentRepository:
    return DocumentRepository(tmp_path / "records.db")


@pytest.fixture
def conversation_store(tmp_path) -> ConversationStore:
    return ConversationStore(tmp_path / "records.db")


@pytest.fixture
def pipeline(embedder, sqlite_store, text_chunker_small) -> IngestionPipeline:
    return IngestionPipeline(
        embedder=embedder, vector_store=sqlite_store, chunker=text_chunker_small
    )


@pytest.fixture
def document_service(tmp_path, document_repository, pipeline, sqlite_store):
    """Document service writing uploads under ``tmp_path``."""
    return DocumentService(
        repository=document_repository,
        pipeline=pipeline,
        vector_store=sqlite_store,
        upload_dir=tmp_path / "uploads",
    )


@pytest.fixture
def retriever(embedder, sqlite_store) -> Retriever:
    return Retriever(embedder=embedder, vector_store=sqlite_store)


@pytest.fixture
def chatbot() -> Chatbot:
    return Chatbot(
        id=TestConstants.CHATBOT_A,
        name="Study helper",
        system_prompt="You answer questions about machine learning.",
    )


@pytest.fixture
def orchestrator_factory(retriever, document_repository, conversation_store):
    """Factory for ``ChatOrchestrator`` instances with a chosen backend."""

    def _create_orchestrator(backend=None, **kwargs) -> ChatOrchestrator:
        kwargs.setdefault("fallback_delay", 0)
        return ChatOrchestrator(
            retriever=retriever,
            documents=document_repository,
            history=conversation_store,
            backend=backend,
            **kwargs,
        )

    return _create_orchestrator


@pytest.fixture
def populated_chatbot(sqlite_store, store_chunks):
    """Store the ML document under chatbot A."""
    return store_chunks(sqlite_store, TestConstants.CHATBOT_A, "doc-ml", ML_DOCUMENT)
