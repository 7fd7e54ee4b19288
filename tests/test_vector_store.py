"""Behaviour shared by every vector store backend."""

import sqlite3
from unittest.mock import patch

import numpy as np
import pytest

from chatrag import Chunk, get_vector_store
from chatrag.errors import VectorStoreUnavailable
from chatrag.vector_store import FaissVectorStore, SQLiteVectorStore
from chatrag.vector_store.base import contained_path


def test_namespace_naming():
    assert SQLiteVectorStore.namespace_for("42") == "chatbot_42"


@pytest.mark.parametrize(
    "chatbot_id", ["x/../../victim", "../outside", "a b", "", "bot.faiss", "a\\b"]
)
def test_unsafe_chatbot_ids_are_rejected(vector_store, embedder, chatbot_id):
    chunk = Chunk(text="text", index=0, document_id="doc-1")

    with pytest.raises(ValueError, match="Invalid chatbot id"):
        vector_store.store(chatbot_id, "doc-1", [chunk], [embedder.embed_query("x")])
    with pytest.raises(ValueError, match="Invalid chatbot id"):
        vector_store.delete_namespace(chatbot_id)
    with pytest.raises(ValueError, match="Invalid chatbot id"):
        vector_store.query(chatbot_id, embedder.embed_query("x"))


def test_delete_namespace_stays_inside_store(
    vector_store, store_chunks, ml_document, tmp_path
):
    ids = store_chunks(vector_store, "x", "doc-1", ml_document)
    victim = tmp_path / "victim"
    victim.mkdir()
    (victim / "keep.txt").write_text("keep")

    with pytest.raises(ValueError, match="Invalid chatbot id"):
        vector_store.delete_namespace("x/../../victim")

    assert (victim / "keep.txt").exists()
    assert vector_store.count("x") == len(ids)


def test_contained_path(tmp_path):
    assert contained_path(tmp_path, "chatbot_a.faiss") == (
        tmp_path.resolve() / "chatbot_a.faiss"
    )
    for escape in ["../elsewhere", "chatbot_a/../../elsewhere", "/etc/passwd", "."]:
        with pytest.raises(ValueError, match="escapes"):
            contained_path(tmp_path, escape)


def test_empty_namespace_query_returns_nothing(vector_store, embedder):
    results = vector_store.query("never-populated", embedder.embed_query("hi"), k=5)

    assert results == []
    assert vector_store.count("never-populated") == 0


def test_store_returns_one_id_per_chunk(vector_store, store_chunks, ml_document):
    ids = store_chunks(vector_store, "bot", "doc-1", ml_document)

    assert ids
    assert len(set(ids)) == len(ids)
    assert vector_store.count("bot") == len(ids)


def test_store_empty_input(vector_store):
    assert vector_store.store("bot", "doc-1", [], []) == []


def test_store_rejects_mismatched_lengths(vector_store, embedder):
    chunk = Chunk(text="lonely chunk", index=0, document_id="doc-1")

    with pytest.raises(ValueError, match="chunks but"):
        vector_store.store("bot", "doc-1", [chunk], [])
    with pytest.raises(ValueError, match="chunks but"):
        vector_store.store("bot", "doc-1", [], [embedder.embed_query("x")])


def test_store_rejects_dimension_change(vector_store, embedder):
    chunk = Chunk(text="first", index=0, document_id="doc-1")
    vector_store.store("bot", "doc-1", [chunk], [embedder.embed_query("first")])

    with pytest.raises(ValueError, match="dimension"):
        vector_store.store("bot", "doc-2", [chunk], [np.ones(3)])


def test_query_clamps_k_and_orders_by_distance(vector_store, embedder, ml_texts):
    chunks = [
        Chunk(text=text, index=index, document_id="doc-1")
        for index, text in enumerate(ml_texts)
    ]
    vector_store.store("bot", "doc-1", chunks, embedder.embed(ml_texts))

    results = vector_store.query("bot", embedder.embed_query(ml_texts[2]), k=50)

    assert len(results) == len(ml_texts)
    distances = [distance for _item, distance in results]
    assert distances == sorted(distances)
    assert all(distance >= 0 for distance in distances)
    top_item, top_distance = results[0]
    assert top_item.text == ml_texts[2]
    assert top_distance == pytest.approx(0.0, abs=1e-5)


def test_query_with_non_positive_k(vector_store, store_chunks, embedder, ml_document):
    store_chunks(vector_store, "bot", "doc-1", ml_document)

    assert vector_store.query("bot", embedder.embed_query("learning"), k=0) == []


def test_metadata_carries_document_and_chunk_index(vector_store, embedder):
    chunks = [
        Chunk(text="zeroth chunk", index=0, document_id="doc-7"),
        Chunk(text="third chunk", index=3, document_id="doc-7"),
    ]
    vector_store.store("bot", "doc-7", chunks, embedder.embed([c.text for c in chunks]))

    results = vector_store.query("bot", embedder.embed_query("third chunk"), k=1)

    item, _distance = results[0]
    assert item.text == "third chunk"
    assert item.metadata["documentId"] == "doc-7"
    assert item.metadata["chunkIndex"] == 3
    assert item.metadata["timestamp"]


def test_namespaces_are_isolated(vector_store, embedder):
    chunk_a = Chunk(text="apples grow on trees", index=0, document_id="doc-a")
    chunk_b = Chunk(text="apples grow on trees", index=0, document_id="doc-b")
    vector_store.store("bot-a", "doc-a", [chunk_a], embedder.embed([chunk_a.text]))
    vector_store.store("bot-b", "doc-b", [chunk_b], embedder.embed([chunk_b.text]))

    results = vector_store.query("bot-a", embedder.embed_query(chunk_b.text), k=5)

    assert len(results) == 1
    assert {item.metadata["documentId"] for item, _ in results} == {"doc-a"}


def test_delete_removes_items(vector_store, store_chunks, embedder, ml_document):
    ids = store_chunks(vector_store, "bot", "doc-1", ml_document)

    assert vector_store.delete("bot", ids[:1]) == 1
    assert vector_store.count("bot") == len(ids) - 1

    remaining = vector_store.query("bot", embedder.embed_query("learning"), k=50)
    assert ids[0] not in {item.id for item, _ in remaining}


def test_delete_ignores_other_namespaces(vector_store, store_chunks, ml_document):
    ids = store_chunks(vector_store, "bot-a", "doc-1", ml_document)

    assert vector_store.delete("bot-b", ids) == 0
    assert vector_store.delete("bot-a", []) == 0
    assert vector_store.count("bot-a") == len(ids)


def test_delete_then_store_again(vector_store, store_chunks, ml_document):
    first = store_chunks(vector_store, "bot", "doc-1", ml_document)
    vector_store.delete("bot", first)

    second = store_chunks(vector_store, "bot", "doc-1", ml_document)

    assert vector_store.count("bot") == len(second)
    assert not set(first) & set(second)


def test_delete_namespace(vector_store, store_chunks, embedder, ml_document):
    store_chunks(vector_store, "bot-a", "doc-1", ml_document)
    kept = store_chunks(vector_store, "bot-b", "doc-2", ml_document)

    vector_store.delete_namespace("bot-a")

    assert vector_store.count("bot-a") == 0
    assert vector_store.query("bot-a", embedder.embed_query("learning"), k=5) == []
    assert vector_store.count("bot-b") == len(kept)


def test_backend_fault_raises_store_unavailable(vector_store, store_chunks, embedder):
    store_chunks(vector_store, "bot", "doc-1", "Some stored text.")

    with (
        patch.object(vector_store, "_search", side_effect=RuntimeError("disk gone")),
        pytest.raises(VectorStoreUnavailable, match="query failed"),
    ):
        vector_store.query("bot", embedder.embed_query("text"), k=3)


def test_sqlite_fault_raises_store_unavailable(vector_store, embedder):
    chunk = Chunk(text="text", index=0, document_id="doc-1")

    with (
        patch.object(
            vector_store, "_connect", side_effect=sqlite3.OperationalError("locked")
        ),
        pytest.raises(VectorStoreUnavailable),
    ):
        vector_store.store("bot", "doc-1", [chunk], [embedder.embed_query("text")])


@pytest.mark.parametrize(
    ("backend", "expected_type"),
    [("faiss", FaissVectorStore), ("SQLITE", SQLiteVectorStore)],
)
def test_get_vector_store(tmp_path, backend, expected_type):
    store = get_vector_store(
        backend,
        db_path=tmp_path / "store.db",
        vectors_dir=tmp_path / "vectors",
        index_dir=tmp_path / "faiss",
    )

    assert isinstance(store, expected_type)
    assert store.backend == backend.lower()


def test_get_vector_store_unknown_backend(tmp_path):
    with pytest.raises(ValueError, match="Unsupported vector store backend"):
        get_vector_store("chroma", db_path=tmp_path / "store.db")
