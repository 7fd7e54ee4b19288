"""Shared namespace and metadata handling for SQLite-backed vector stores."""

from __future__ import annotations

import re
import sqlite3
import threading
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import numpy as np

from chatrag.config import config
from chatrag.errors import VectorStoreUnavailable
from chatrag.models import Chunk, IndexedItem

logger = config.get_logger(__name__)

StoreFaults = (sqlite3.Error, OSError, RuntimeError)

# Namespaces become file and directory names, so ids are restricted to this set.
CHATBOT_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


def validate_chatbot_id(chatbot_id: str) -> str:
    """Check that a chatbot id is safe to use in namespace names.

    Returns:
        The id as a string.

    Raises:
        ValueError: If the id is empty or contains characters other than
            letters, digits, ``_`` and ``-``.
    """
    value = str(chatbot_id)
    if not CHATBOT_ID_PATTERN.fullmatch(value):
        msg = f"Invalid chatbot id {value!r}: use letters, digits, _ and -"
        raise ValueError(msg)
    return value


def contained_path(root: Path, relative: str) -> Path:
    """Join ``relative`` onto ``root``, refusing paths that leave ``root``.

    Returns:
        The resolved path.

    Raises:
        ValueError: If the resolved path is outside ``root``.
    """
    base = root.resolve()
    path = (base / relative).resolve()
    if path == base or not path.is_relative_to(base):
        msg = f"Path {relative!r} escapes store directory {root}"
        raise ValueError(msg)
    return path


class BaseSQLiteStore:
    """Per-chatbot namespaces with item metadata kept in SQLite.

    Subclasses own the vectors themselves and implement ``_vector_count``,
    ``_write_vectors``, ``_search``, ``_remove_vectors`` and
    ``_drop_namespace``. Every item row belongs to exactly one namespace and
    all lookups filter on it, so namespaces never leak into each other.
    """

    backend = "base"

    def __init__(self, db_path: Path) -> None:
        """Initialize metadata store and ensure schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._lock = threading.RLock()
        self._create_tables()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Cursor]:
        conn = sqlite3.connect(str(self.db_path))
        try:
            with conn:
                yield conn.cursor()
        finally:
            conn.close()

    @contextmanager
    def _guard(self, operation: str, chatbot_id: str) -> Iterator[None]:
        """Translate backend faults into ``VectorStoreUnavailable``.

        Raises:
            VectorStoreUnavailable: If SQLite, the filesystem or the index fails.
        """
        try:
            yield
        except StoreFaults as exc:
            logger.exception(
                "Vector store %s failed for chatbot %s", operation, chatbot_id
            )
            msg = f"Vector store {operation} failed for chatbot {chatbot_id}: {exc}"
            raise VectorStoreUnavailable(msg) from exc

    def _create_tables(self) -> None:
        """Create namespace and item tables if they don't exist."""
        with self._connect() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS namespaces (
                    name TEXT PRIMARY KEY,
                    chatbot_id TEXT NOT NULL,
                    dimension INTEGER,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    vector_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    namespace TEXT NOT NULL,
                    document_id TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    vector_file TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (namespace) REFERENCES namespaces (name)
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_items_namespace ON items(namespace)"
            )
            cursor.execute(
                (
                    "CREATE INDEX IF NOT EXISTS idx_items_document "
                    "ON items(namespace, document_id)"
                ),
            )

    @staticmethod
    def namespace_for(chatbot_id: str) -> str:
        """Derive the namespace name for a chatbot.

        Returns:
            ``chatbot_<id>``.

        Raises:
            ValueError: If the chatbot id is not a valid namespace component.
        """
        return f"chatbot_{validate_chatbot_id(chatbot_id)}"

    def ensure_namespace(self, chatbot_id: str) -> str:
        """Create the chatbot's namespace if missing.

        Returns:
            The namespace name.
        """
        namespace = self.namespace_for(chatbot_id)
        with self._lock, self._guard("ensure_namespace", chatbot_id):
            with self._connect() as cursor:
                cursor.execute(
                    "INSERT OR IGNORE INTO namespaces (name, chatbot_id) VALUES (?, ?)",
                    (namespace, str(chatbot_id)),
                )
        return namespace

    def count(self, chatbot_id: str) -> int:
        """Number of items currently stored for a chatbot.

        Returns:
            Item count; zero for unknown namespaces.
        """
        namespace = self.namespace_for(chatbot_id)
        with self._lock, self._guard("count", chatbot_id):
            return self._vector_count(namespace)

    def _row_count(self, namespace: str) -> int:
        with self._connect() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM items WHERE namespace = ?", (namespace,)
            )
            return int(cursor.fetchone()[0])

    def _check_dimension(
        self, cursor: sqlite3.Cursor, namespace: str, dimension: int
    ) -> None:
        """Pin the namespace dimension on first write and enforce it afterwards.

        Raises:
            ValueError: If the vectors do not match the namespace dimension.
        """
        cursor.execute("SELECT dimension FROM namespaces WHERE name = ?", (namespace,))
        row = cursor.fetchone()
        if row is None or row[0] is None:
            cursor.execute(
                "UPDATE namespaces SET dimension = ? WHERE name = ?",
                (dimension, namespace),
            )
            return
        if int(row[0]) != dimension:
            msg = (
                f"Embedding dimension {dimension} does not match "
                f"namespace {namespace} dimension {row[0]}"
            )
            raise ValueError(msg)

    def store(
        self,
        chatbot_id: str,
        document_id: str,
        chunks: Sequence[Chunk],
        vectors: Sequence[np.ndarray],
    ) -> list[str]:
        """Append chunks and their vectors to the chatbot's namespace.

        Args:
            chatbot_id: Owning chatbot.
            document_id: Document the chunks came from.
            chunks: Chunks to store; each keeps its original ``index``.
            vectors: One vector per chunk, in the same order.

        Returns:
            Generated item ids, one per chunk, in input order.

        Raises:
            ValueError: If chunk and vector counts or dimensions disagree.
        """
        if len(chunks) != len(vectors):
            msg = f"Got {len(chunks)} chunks but {len(vectors)} vectors"
            raise ValueError(msg)
        if not chunks:
            return []

        matrix = np.vstack([np.asarray(v, dtype="float32") for v in vectors])
        namespace = self.ensure_namespace(chatbot_id)
        timestamp = datetime.now(tz=UTC).isoformat()
        item_ids = [str(uuid.uuid4()) for _ in chunks]

        with self._lock, self._guard("store", chatbot_id):
            with self._connect() as cursor:
                self._check_dimension(cursor, namespace, matrix.shape[1])
                vector_ids: list[int] = []
                for item_id, chunk in zip(item_ids, chunks, strict=True):
                    cursor.execute(
                        """
                        INSERT INTO items (
                            id, namespace, document_id, chunk_index,
                            content, vector_file, created_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            item_id,
                            namespace,
                            str(document_id),
                            chunk.index,
                            chunk.text,
                            self._vector_file_for(namespace, item_id),
                            timestamp,
                        ),
                    )
                    vector_ids.append(int(cursor.lastrowid or 0))
                # The transaction commits only once the vectors are written.
                self._write_vectors(namespace, item_ids, vector_ids, matrix)

        logger.info(
            "Stored %d items for document %s in %s",
            len(item_ids),
            document_id,
            namespace,
        )
        return item_ids

    def query(
        self,
        chatbot_id: str,
        query_vector: np.ndarray,
        k: int = 5,
    ) -> list[tuple[IndexedItem, float]]:
        """Find the ``k`` nearest items in the chatbot's namespace.

        ``k`` is clamped to the namespace size, so empty or unknown namespaces
        return an empty list.

        Returns:
            ``(item, distance)`` pairs ordered by ascending distance.
        """
        if k <= 0:
            return []
        namespace = self.namespace_for(chatbot_id)
        query = np.asarray(query_vector, dtype="float32").reshape(-1)

        with self._lock, self._guard("query", chatbot_id):
            top_k = min(k, self._vector_count(namespace))
            if top_k == 0:
                return []
            hits = sorted(self._search(namespace, query, top_k), key=lambda h: h[1])
            with self._connect() as cursor:
                items = self._fetch_items(cursor, namespace, [vid for vid, _ in hits])

        return [
            (items[vector_id], max(0.0, float(distance)))
            for vector_id, distance in hits
            if vector_id in items
        ]

    def delete(self, chatbot_id: str, ids: Sequence[str]) -> int:
        """Delete items by id from the chatbot's namespace.

        Returns:
            Number of items removed.
        """
        if not ids:
            return 0
        namespace = self.namespace_for(chatbot_id)
        with self._lock, self._guard("delete", chatbot_id):
            with self._connect() as cursor:
                placeholders = ",".join("?" for _ in ids)
                cursor.execute(
                    f"SELECT vector_id, vector_file FROM items "  # noqa: S608
                    f"WHERE namespace = ? AND id IN ({placeholders})",
                    (namespace, *ids),
                )
                rows = [(int(row[0]), row[1]) for row in cursor.fetchall()]
                if not rows:
                    return 0
                cursor.execute(
                    f"DELETE FROM items "  # noqa: S608
                    f"WHERE namespace = ? AND id IN ({placeholders})",
                    (namespace, *ids),
                )
                self._remove_vectors(namespace, rows)

        logger.info("Deleted %d vectors from chatbot %s", len(rows), chatbot_id)
        return len(rows)

    def delete_namespace(self, chatbot_id: str) -> None:
        """Drop the chatbot's namespace and everything stored in it."""
        namespace = self.namespace_for(chatbot_id)
        with self._lock, self._guard("delete_namespace", chatbot_id):
            with self._connect() as cursor:
                cursor.execute("DELETE FROM items WHERE namespace = ?", (namespace,))
                cursor.execute("DELETE FROM namespaces WHERE name = ?", (namespace,))
            self._drop_namespace(namespace)
        logger.info("Deleted namespace %s", namespace)

    @staticmethod
    def _fetch_items(
        cursor: sqlite3.Cursor,
        namespace: str,
        vector_ids: list[int],
    ) -> dict[int, IndexedItem]:
        """Load item metadata for vector ids within one namespace.

        Returns:
            Mapping of vector id to hydrated item.
        """
        if not vector_ids:
            return {}
        placeholders = ",".join("?" for _ in vector_ids)
        cursor.execute(
            f"""
            SELECT vector_id, id, document_id, chunk_index, content, created_at
            FROM items
            WHERE namespace = ? AND vector_id IN ({placeholders})
            """,  # noqa: S608
            (namespace, *vector_ids),
        )
        items: dict[int, IndexedItem] = {}
        for vector_id, item_id, document_id, chunk_index, content, created_at in (
            cursor.fetchall()
        ):
            metadata: dict[str, Any] = {
                "documentId": document_id,
                "chunkIndex": chunk_index,
                "timestamp": created_at,
            }
            items[int(vector_id)] = IndexedItem(
                id=item_id, text=content, metadata=metadata
            )
        return items

    def _vector_file_for(self, namespace: str, item_id: str) -> str | None:  # noqa: ARG002, PLR6301
        return None

    def _vector_count(self, namespace: str) -> int:
        raise NotImplementedError

    def _write_vectors(
        self,
        namespace: str,
        item_ids: list[str],
        vector_ids: list[int],
        matrix: np.ndarray,
    ) -> None:
        raise NotImplementedError

    def _search(
        self, namespace: str, query: np.ndarray, k: int
    ) -> list[tuple[int, float]]:
        raise NotImplementedError

    def _remove_vectors(
        self, namespace: str, rows: list[tuple[int, str | None]]
    ) -> None:
        raise NotImplementedError

    def _drop_namespace(self, namespace: str) -> None:
        raise NotImplementedError
