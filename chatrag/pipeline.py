"""Ingestion pipeline orchestrating Extract -> Split -> Embed -> Store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import config
from .document_processing import TextChunker, extract_text
from .errors import EmbeddingFailure

if TYPE_CHECKING:
    from .embeddings import Embedder
    from .vector_store import BaseSQLiteStore

logger = config.get_logger(__name__)


class IngestionPipeline:
    """Turns document bytes into vectors stored in a chatbot namespace."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: BaseSQLiteStore,
        chunker: TextChunker | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            embedder: Embeds chunk text.
            vector_store: Destination index.
            chunker: Text chunker. If None, one is built from config.CHUNK_SIZE
                and config.CHUNK_OVERLAP.
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or TextChunker(
            chunk_size=config.CHUNK_SIZE, overlap=config.CHUNK_OVERLAP
        )

    def run(
        self,
        chatbot_id: str,
        document_id: str,
        data: bytes,
        extension: str,
    ) -> list[str]:
        """Process one document through the complete pipeline.

        Returns:
            Ids of the stored vectors; empty if the document has no text.

        Raises:
            EmbeddingFailure: If the embedder returns the wrong number of vectors.
        """
        logger.info("Starting ingestion for document %s (%s)", document_id, extension)

        text = extract_text(data, extension)
        chunks = self.chunker.chunk_text(text, document_id=document_id)
        if not chunks:
            logger.warning("Document %s produced no chunks", document_id)
            return []

        embeddings = self.embedder.embed([chunk.text for chunk in chunks])
        if len(embeddings) != len(chunks):
            msg = (
                f"Embedder returned {len(embeddings)} vectors "
                f"for {len(chunks)} chunks of document {document_id}"
            )
            raise EmbeddingFailure(msg)

        vector_ids = self.vector_store.store(chatbot_id, document_id, chunks, embeddings)
        logger.info(
            "Document %s processed into %d vectors", document_id, len(vector_ids)
        )
        return vector_ids
