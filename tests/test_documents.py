"""Tests for the document lifecycle service and the ingestion pipeline."""

import asyncio
from unittest.mock import patch

import numpy as np
import pytest

from chatrag.errors import (
    DocumentNotFound,
    EmbeddingFailure,
    UnsupportedFileType,
    VectorStoreUnavailable,
)


def upload_and_wait(service, chatbot_id, filename, data):
    """Upload a file and let background processing finish."""

    async def _run():  # noqa: ANN202
        document = await service.upload(chatbot_id, filename, data)
        await service.wait_for_background()
        return service.get(document.id)

    return asyncio.run(_run())


def test_pipeline_run_stores_vectors(pipeline, sqlite_store, ml_document):
    ids = pipeline.run("bot", "doc-1", ml_document.encode(), ".txt")

    assert ids
    assert sqlite_store.count("bot") == len(ids)


def test_pipeline_empty_document(pipeline, sqlite_store):
    assert pipeline.run("bot", "doc-1", b"   \n\n  ", ".txt") == []
    assert sqlite_store.count("bot") == 0


def test_pipeline_rejects_short_embedding_batch(pipeline, ml_document):
    with (
        patch.object(pipeline.embedder, "embed", return_value=[np.ones(64)]),
        pytest.raises(EmbeddingFailure, match="vectors"),
    ):
        pipeline.run("bot", "doc-1", ml_document.encode(), ".txt")


def test_upload_processes_in_background(document_service, sqlite_store, ml_document):
    document = upload_and_wait(
        document_service, "bot", "notes.txt", ml_document.encode()
    )

    assert document.is_processed
    assert document.vector_ids
    assert document.file_type == ".txt"
    assert document.file_size == len(ml_document.encode())
    assert sqlite_store.count("bot") == len(document.vector_ids)


def test_upload_returns_before_processing(document_service, ml_document):
    async def _run():  # noqa: ANN202
        document = await document_service.upload(
            "bot", "notes.txt", ml_document.encode()
        )
        pending = document_service.get(document.id)
        await document_service.wait_for_background()
        return pending, document_service.get(document.id)

    pending, finished = asyncio.run(_run())

    assert not pending.is_processed
    assert finished.is_processed


def test_upload_without_processing(document_service, ml_document):
    async def _run():  # noqa: ANN202
        return await document_service.upload(
            "bot", "notes.txt", ml_document.encode(), process=False
        )

    document = asyncio.run(_run())

    assert not document_service.get(document.id).is_processed


@pytest.mark.parametrize("filename", ["image.png", "slides.pptx", "script.py", "README"])
def test_upload_rejects_unsupported_types(document_service, filename):
    with pytest.raises(UnsupportedFileType, match="not supported"):
        asyncio.run(document_service.upload("bot", filename, b"data"))

    assert document_service.list_documents("bot") == []


def test_upload_rejects_unsafe_chatbot_id(document_service):
    with pytest.raises(ValueError, match="Invalid chatbot id"):
        asyncio.run(document_service.upload("../bot", "notes.txt", b"text"))

    assert not any(document_service.upload_dir.iterdir())


def test_upload_rejects_oversized_files(document_service):
    document_service.max_upload_bytes = 10

    with pytest.raises(UnsupportedFileType, match="limit"):
        document_service.validate_upload("big.txt", 11)

    assert document_service.validate_upload("BIG.TXT", 10) == ".txt"


def test_failed_extraction_still_marks_processed(document_service):
    document = upload_and_wait(document_service, "bot", "broken.pdf", b"not a pdf")

    assert document.is_processed
    assert document.vector_ids == []


def test_legacy_doc_is_accepted_but_not_extracted(document_service):
    document = upload_and_wait(document_service, "bot", "old.doc", b"\xd0\xcf\x11\xe0")

    assert document.is_processed
    assert document.vector_ids == []


def test_embedding_failure_marks_processed(document_service, ml_document):
    with patch.object(
        document_service.pipeline.embedder,
        "embed",
        side_effect=EmbeddingFailure("quota exceeded"),
    ):
        document = upload_and_wait(
            document_service, "bot", "notes.txt", ml_document.encode()
        )

    assert document.is_processed
    assert document.vector_ids == []


def test_store_outage_leaves_document_pending(document_service, ml_document):
    with patch.object(
        document_service.pipeline.vector_store,
        "store",
        side_effect=VectorStoreUnavailable("store down"),
    ):
        document = upload_and_wait(
            document_service, "bot", "notes.txt", ml_document.encode()
        )

    assert not document.is_processed


def test_reprocess_is_idempotent(document_service, sqlite_store, ml_document):
    document = upload_and_wait(
        document_service, "bot", "notes.txt", ml_document.encode()
    )

    first = asyncio.run(document_service.reprocess(document.id))
    second = asyncio.run(document_service.reprocess(document.id))

    assert len(first.vector_ids) == len(document.vector_ids)
    assert len(second.vector_ids) == len(document.vector_ids)
    assert not set(second.vector_ids) & set(document.vector_ids)
    assert sqlite_store.count("bot") == len(second.vector_ids)


def test_delete_removes_vectors_file_and_record(
    document_service, sqlite_store, ml_document
):
    document = upload_and_wait(
        document_service, "bot", "notes.txt", ml_document.encode()
    )

    asyncio.run(document_service.delete(document.id))

    assert sqlite_store.count("bot") == 0
    assert not (document_service.upload_dir / f"{document.id}.txt").exists()
    with pytest.raises(DocumentNotFound, match=document.id):
        document_service.get(document.id)


def test_missing_document_operations(document_service):
    with pytest.raises(DocumentNotFound):
        asyncio.run(document_service.reprocess("missing"))
    with pytest.raises(DocumentNotFound):
        asyncio.run(document_service.delete("missing"))


def test_delete_chatbot(document_service, sqlite_store, ml_document):
    upload_and_wait(document_service, "bot", "a.txt", ml_document.encode())
    upload_and_wait(document_service, "bot", "b.txt", ml_document.encode())
    kept = upload_and_wait(document_service, "other", "c.txt", ml_document.encode())

    deleted = asyncio.run(document_service.delete_chatbot("bot"))

    assert deleted == 2
    assert document_service.list_documents("bot") == []
    assert sqlite_store.count("bot") == 0
    assert sqlite_store.count("other") == len(kept.vector_ids)
