"""FAISS-backed vector storage with SQLite metadata."""

from __future__ import annotations

from pathlib import Path

import faiss
import numpy as np

from chatrag.config import config
from chatrag.vector_store.base import BaseSQLiteStore, contained_path

logger = config.get_logger(__name__)


class FaissVectorStore(BaseSQLiteStore):
    """One FAISS ``IndexIDMap`` per namespace, metadata in SQLite.

    Distances are squared L2 distances from ``IndexFlatL2``; for unit vectors
    they range from 0 (identical) to 4 (opposite).
    """

    backend = "faiss"

    def __init__(
        self,
        db_path: Path = Path("data/vector_store.db"),
        index_dir: Path = Path("data/faiss"),
    ) -> None:
        """Configure FAISS-backed vector store."""
        self.index_dir = Path(index_dir)
        self.index_dir.mkdir(exist_ok=True, parents=True)
        self._indexes: dict[str, faiss.IndexIDMap] = {}

        super().__init__(db_path)

    def index_path(self, namespace: str) -> Path:
        """Location of the namespace index file.

        Returns:
            ``<index_dir>/<namespace>.faiss``.

        Raises:
            ValueError: If the path would fall outside ``index_dir``.
        """
        return contained_path(self.index_dir, f"{namespace}.faiss")

    def _get_index(
        self, namespace: str, dimension: int | None = None
    ) -> faiss.IndexIDMap | None:
        """Return the namespace index, loading it from disk or creating it.

        A new index is only created when ``dimension`` is given.

        Returns:
            The index, or None if the namespace has none yet.
        """
        index = self._indexes.get(namespace)
        if index is not None:
            return index

        path = self.index_path(namespace)
        if path.exists():
            index = faiss.read_index(str(path))
            if not isinstance(index, (faiss.IndexIDMap, faiss.IndexIDMap2)):
                logger.warning(
                    "Loaded FAISS index is %s; wrapping with IndexIDMap to enable IDs",
                    type(index).__name__,
                )
                index = faiss.IndexIDMap(index)
            logger.info(
                "Loaded FAISS index %s with %d vectors", namespace, index.ntotal
            )
        elif dimension is not None:
            index = faiss.IndexIDMap(faiss.IndexFlatL2(dimension))
            logger.info(
                "Initialized FAISS IndexIDMap for %s with dimension %d",
                namespace,
                dimension,
            )
        else:
            return None

        self._indexes[namespace] = index
        return index

    def _persist(self, namespace: str) -> None:
        index = self._indexes.get(namespace)
        if index is None:
            return
        faiss.write_index(index, str(self.index_path(namespace)))

    def _vector_count(self, namespace: str) -> int:
        index = self._get_index(namespace)
        return 0 if index is None else int(index.ntotal)

    def _write_vectors(
        self,
        namespace: str,
        item_ids: list[str],  # noqa: ARG002
        vector_ids: list[int],
        matrix: np.ndarray,
    ) -> None:
        index = self._get_index(namespace, dimension=matrix.shape[1])
        if index is None:
            msg = f"FAISS index unavailable for {namespace}"
            raise RuntimeError(msg)
        if matrix.shape[1] != index.d:
            msg = (
                f"Embedding dimension {matrix.shape[1]} does not match "
                f"FAISS index dimension {index.d}"
            )
            raise ValueError(msg)

        ids_array = np.asarray(vector_ids, dtype="int64")
        index.add_with_ids(np.ascontiguousarray(matrix, dtype="float32"), ids_array)  # pyright: ignore[reportCallIssue]
        self._persist(namespace)
        logger.info("Added %d vectors to FAISS index %s", len(vector_ids), namespace)

    def _search(
        self, namespace: str, query: np.ndarray, k: int
    ) -> list[tuple[int, float]]:
        index = self._get_index(namespace)
        if index is None:
            return []
        if query.shape[0] != index.d:
            msg = (
                f"Query dimension {query.shape[0]} does not match "
                f"FAISS index dimension {index.d}"
            )
            raise ValueError(msg)

        distances, vector_ids = index.search(query.reshape(1, -1), k)  # pyright: ignore[reportCallIssue]
        return [
            (int(vector_id), float(distance))
            for distance, vector_id in zip(distances[0], vector_ids[0], strict=True)
            if int(vector_id) != -1  # faiss returns -1 for empty results
        ]

    def _remove_vectors(
        self, namespace: str, rows: list[tuple[int, str | None]]
    ) -> None:
        index = self._get_index(namespace)
        if index is None:
            return
        ids_array = np.asarray([vector_id for vector_id, _ in rows], dtype="int64")
        index.remove_ids(ids_array)
        self._persist(namespace)

    def _drop_namespace(self, namespace: str) -> None:
        self._indexes.pop(namespace, None)
        self.index_path(namespace).unlink(missing_ok=True)
