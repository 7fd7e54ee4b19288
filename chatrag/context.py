"""Explicit wiring of the components a chatrag process needs."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from .config import config
from .conversation import ChatOrchestrator
from .documents import DocumentService
from .embeddings import get_embedder
from .generation import build_generation_backend
from .pipeline import IngestionPipeline
from .records import ConversationStore, DocumentRepository
from .retrieval import Retriever
from .vector_store import get_vector_store

if TYPE_CHECKING:
    from .embeddings import Embedder
    from .generation import GenerationBackend
    from .vector_store import BaseSQLiteStore


@dataclass
class RAGContext:
    """Every long-lived component, built once and passed where needed."""

    embedder: Embedder
    vector_store: BaseSQLiteStore
    documents: DocumentRepository
    history: ConversationStore
    pipeline: IngestionPipeline
    document_service: DocumentService
    retriever: Retriever
    backend: GenerationBackend | None
    orchestrator: ChatOrchestrator


def build_context(  # noqa: PLR0913
    *,
    data_dir: Path | None = None,
    embedder: Embedder | None = None,
    vector_store: BaseSQLiteStore | None = None,
    backend: GenerationBackend | None = None,
    use_generation: bool = True,
    fallback_delay: float | None = None,
) -> RAGContext:
    """Construct a :class:`RAGContext` from the configuration.

    Args:
        data_dir: Root for every on-disk artefact. If None, the individual
            config paths are used.
        embedder: Embedder to use. If None, built from config.EMBEDDING_BACKEND.
        vector_store: Vector store to use. If None, built from
            config.VECTOR_BACKEND.
        backend: Generation backend to use. If None and ``use_generation`` is
            set, an OpenAI backend is built when an API key is available.
        use_generation: When False, no backend is built and every chat reply
            uses the fallback path.
        fallback_delay: Seconds between fallback tokens.

    Returns:
        The assembled context.
    """
    if data_dir is not None:
        data_dir = Path(data_dir)
        records_db = data_dir / "records.db"
        upload_dir = data_dir / "uploads"
        store_kwargs = {
            "db_path": data_dir / "vector_store.db",
            "vectors_dir": data_dir / "vectors",
            "index_dir": data_dir / "faiss",
        }
    else:
        records_db = config.RECORDS_DB_PATH
        upload_dir = config.UPLOAD_DIR
        store_kwargs = {}

    if embedder is None:
        embedder = get_embedder()
    if vector_store is None:
        vector_store = get_vector_store(**store_kwargs)
    if backend is None and use_generation:
        backend = build_generation_backend()

    documents = DocumentRepository(records_db)
    history = ConversationStore(records_db)
    pipeline = IngestionPipeline(embedder=embedder, vector_store=vector_store)
    document_service = DocumentService(
        repository=documents,
        pipeline=pipeline,
        vector_store=vector_store,
        upload_dir=upload_dir,
    )
    retriever = Retriever(embedder=embedder, vector_store=vector_store)
    orchestrator = ChatOrchestrator(
        retriever=retriever,
        documents=documents,
        history=history,
        backend=backend,
        fallback_delay=fallback_delay,
    )
    return RAGContext(
        embedder=embedder,
        vector_store=vector_store,
        documents=documents,
        history=history,
        pipeline=pipeline,
        document_service=document_service,
        retriever=retriever,
        backend=backend,
        orchestrator=orchestrator,
    )
