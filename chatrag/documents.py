"""Document lifecycle: upload, background processing, reprocess and delete."""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from .config import config
from .document_processing import normalize_extension
from .errors import (
    DocumentNotFound,
    EmbeddingFailure,
    ExtractionFailure,
    UnsupportedFileType,
    UnsupportedFormat,
)
from .vector_store import validate_chatbot_id

if TYPE_CHECKING:
    from .models import Document
    from .pipeline import IngestionPipeline
    from .records import DocumentRepository
    from .vector_store import BaseSQLiteStore

logger = config.get_logger(__name__)

ALLOWED_UPLOAD_TYPES = frozenset({".pdf", ".docx", ".xlsx", ".xls", ".txt", ".doc"})

# Failures that still mark a document processed (with no vectors).
_RECOVERABLE_STAGES = {
    UnsupportedFormat: "extract",
    ExtractionFailure: "extract",
    EmbeddingFailure: "embed",
}


class DocumentService:
    """Owns document records and keeps their vectors in sync with the index.

    Uploads return as soon as the record exists; processing runs as a
    background ``asyncio`` task that later fills in ``processed_at`` and the
    vector ids.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        pipeline: IngestionPipeline,
        vector_store: BaseSQLiteStore,
        upload_dir: Path | None = None,
        max_upload_bytes: int | None = None,
    ) -> None:
        self.repository = repository
        self.pipeline = pipeline
        self.vector_store = vector_store
        self.upload_dir = Path(upload_dir or config.UPLOAD_DIR)
        self.upload_dir.mkdir(exist_ok=True, parents=True)
        self.max_upload_bytes = max_upload_bytes or config.MAX_UPLOAD_BYTES
        self._tasks: set[asyncio.Task[None]] = set()

    def validate_upload(self, filename: str, size: int) -> str:
        """Check an upload before anything is stored.

        Returns:
            The normalized file extension.

        Raises:
            UnsupportedFileType: If the extension is not accepted or the file
                is larger than the upload limit.
        """
        extension = normalize_extension(Path(filename).suffix)
        if extension not in ALLOWED_UPLOAD_TYPES:
            allowed = ", ".join(sorted(ALLOWED_UPLOAD_TYPES))
            msg = f'File type "{extension}" not supported. Allowed types: {allowed}'
            logger.warning("Rejected upload %s: %s", filename, msg)
            raise UnsupportedFileType(msg, extension=extension)
        if size > self.max_upload_bytes:
            msg = (
                f"File {filename} is {size} bytes; "
                f"the limit is {self.max_upload_bytes} bytes"
            )
            logger.warning("Rejected upload %s: %s", filename, msg)
            raise UnsupportedFileType(msg, extension=extension)
        return extension

    async def upload(
        self,
        chatbot_id: str,
        filename: str,
        data: bytes,
        *,
        process: bool = True,
    ) -> Document:
        """Store an uploaded file and schedule its processing.

        Returns:
            The new, not yet processed, document record.

        Raises:
            ValueError: If the chatbot id cannot name a vector namespace.
        """
        validate_chatbot_id(chatbot_id)
        extension = self.validate_upload(filename, len(data))
        document_id = str(uuid.uuid4())
        file_path = self.upload_dir / f"{document_id}{extension}"
        await asyncio.to_thread(file_path.write_bytes, data)

        document = self.repository.create(
            chatbot_id=chatbot_id,
            filename=filename,
            file_type=extension,
            file_size=len(data),
            file_path=str(file_path),
            document_id=document_id,
        )
        logger.info(
            "File upload: chatbot=%s document=%s filename=%s size=%d",
            chatbot_id,
            document.id,
            filename,
            len(data),
        )
        if process:
            self._schedule(document.id)
        return document

    def _schedule(self, document_id: str) -> None:
        task = asyncio.create_task(
            self._process_in_background(document_id),
            name=f"process-document-{document_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process_in_background(self, document_id: str) -> None:
        try:
            await self.process(document_id)
        except Exception:
            logger.exception("Failed to process document %s", document_id)

    async def wait_for_background(self) -> None:
        """Wait until every scheduled processing task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def get(self, document_id: str) -> Document:
        """Look up a document record.

        Returns:
            The document.

        Raises:
            DocumentNotFound: If no such document exists.
        """
        document = self.repository.get(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    def list_documents(self, chatbot_id: str) -> list[Document]:
        return self.repository.list_by_chatbot(chatbot_id)

    async def process(self, document_id: str) -> Document:
        """Run the ingestion pipeline for a document and record the result.

        Extraction and embedding failures mark the document processed with no
        vectors so it never stays pending; it can be retried with
        :meth:`reprocess`. A vector store outage propagates and leaves the
        document pending.

        Returns:
            The updated document record.
        """
        document = self.get(document_id)
        try:
            try:
                data = await asyncio.to_thread(Path(document.file_path).read_bytes)
            except OSError as exc:
                msg = f"Cannot read {document.file_path}: {exc}"
                raise ExtractionFailure(msg, extension=document.file_type) from exc
            vector_ids = await asyncio.to_thread(
                self.pipeline.run,
                document.chatbot_id,
                document.id,
                data,
                document.file_type,
            )
        except (UnsupportedFormat, ExtractionFailure, EmbeddingFailure) as exc:
            logger.warning(
                "Document %s failed at stage %s: %s",
                document.id,
                _RECOVERABLE_STAGES.get(type(exc), "process"),
                exc,
            )
            vector_ids = []

        self.repository.mark_processed(document.id, vector_ids)
        logger.info("Document %s processed with %d vectors", document.id, len(vector_ids))
        return self.get(document.id)

    async def _delete_vectors(self, document: Document) -> None:
        if document.vector_ids:
            await asyncio.to_thread(
                self.vector_store.delete, document.chatbot_id, document.vector_ids
            )

    async def reprocess(self, document_id: str) -> Document:
        """Delete a document's vectors and run the pipeline again.

        Returns:
            The updated document record.
        """
        document = self.get(document_id)
        await self._delete_vectors(document)
        self.repository.reset_processing(document.id)
        logger.info("Reprocessing document %s", document.id)
        return await self.process(document.id)

    async def delete(self, document_id: str) -> None:
        """Delete a document together with its vectors and stored file."""
        document = self.get(document_id)
        await self._delete_vectors(document)
        self._remove_file(document)
        self.repository.delete(document.id)
        logger.info("Document %s deleted successfully", document.id)

    async def delete_chatbot(self, chatbot_id: str) -> int:
        """Remove a chatbot's namespace and all of its documents.

        Returns:
            Number of document records deleted.
        """
        await asyncio.to_thread(self.vector_store.delete_namespace, chatbot_id)
        for document in self.repository.list_by_chatbot(chatbot_id):
            self._remove_file(document)
        deleted = self.repository.delete_by_chatbot(chatbot_id)
        logger.info("Deleted %d documents of chatbot %s", deleted, chatbot_id)
        return deleted

    @staticmethod
    def _remove_file(document: Document) -> None:
        try:
            Path(document.file_path).unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to delete file: %s", document.file_path)
