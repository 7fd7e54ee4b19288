"""chatrag - retrieval-augmented chatbot core."""

from .context import RAGContext, build_context
from .conversation import ChatOrchestrator, ChatState, ChatTurn
from .document_processing import DocumentLoader, FileFormat, TextChunker, extract_text
from .documents import DocumentService
from .embeddings import DeterministicEmbedder, OpenAIEmbedder, get_embedder
from .generation import GenerationRequest, OpenAIGenerationBackend
from .models import (
    Chatbot,
    Chunk,
    ConversationTurn,
    Document,
    RetrievalOutcome,
    RetrievalResult,
    RetrievalStatus,
    StreamEvent,
)
from .pipeline import IngestionPipeline
from .records import ConversationStore, DocumentRepository
from .retrieval import Retriever
from .vector_store import FaissVectorStore, SQLiteVectorStore, get_vector_store

__all__ = [
    "ChatOrchestrator",
    "ChatState",
    "ChatTurn",
    "Chatbot",
    "Chunk",
    "ConversationStore",
    "ConversationTurn",
    "DeterministicEmbedder",
    "Document",
    "DocumentLoader",
    "DocumentRepository",
    "DocumentService",
    "FaissVectorStore",
    "FileFormat",
    "GenerationRequest",
    "IngestionPipeline",
    "OpenAIEmbedder",
    "OpenAIGenerationBackend",
    "RAGContext",
    "Retriever",
    "RetrievalOutcome",
    "RetrievalResult",
    "RetrievalStatus",
    "SQLiteVectorStore",
    "StreamEvent",
    "TextChunker",
    "build_context",
    "extract_text",
    "get_embedder",
    "get_vector_store",
]
