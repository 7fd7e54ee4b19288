"""SQLite-based vector storage with numpy file backend."""

from __future__ import annotations

import shutil
from pathlib import Path

import numpy as np

from chatrag.config import config
from chatrag.vector_store.base import BaseSQLiteStore, contained_path

logger = config.get_logger(__name__)


class SQLiteVectorStore(BaseSQLiteStore):
    """Vector storage using SQLite for metadata and numpy files for embeddings.

    Search is brute force over the namespace's vectors using squared L2
    distance, matching the FAISS backend's distance scale.
    """

    backend = "sqlite"

    def __init__(
        self,
        db_path: Path = Path("data/vector_store.db"),
        vectors_dir: Path = Path("data/vectors"),
    ) -> None:
        """Initialize the SQLiteVectorStore with database and vector directory paths.

        Args:
            db_path: Path to the SQLite database file.
            vectors_dir: Directory to store numpy vector files.
        """
        self.vectors_dir = Path(vectors_dir)
        self.vectors_dir.mkdir(exist_ok=True, parents=True)
        self._matrices: dict[str, tuple[np.ndarray, np.ndarray]] = {}

        super().__init__(db_path)

    def _vector_file_for(self, namespace: str, item_id: str) -> str:
        return f"{namespace}/{item_id}.npy"

    def _vector_path(self, vector_file: str) -> Path:
        return contained_path(self.vectors_dir, vector_file)

    def _vector_count(self, namespace: str) -> int:
        return self._row_count(namespace)

    def _write_vectors(
        self,
        namespace: str,
        item_ids: list[str],
        vector_ids: list[int],  # noqa: ARG002
        matrix: np.ndarray,
    ) -> None:
        contained_path(self.vectors_dir, namespace).mkdir(exist_ok=True, parents=True)
        for item_id, vector in zip(item_ids, matrix, strict=True):
            vector_file = self._vector_file_for(namespace, item_id)
            np.save(self._vector_path(vector_file), vector)
        self._matrices.pop(namespace, None)
        logger.info("Saved %d vector files for %s", len(item_ids), namespace)

    def _embeddings_matrix(self, namespace: str) -> tuple[np.ndarray, np.ndarray]:
        """Build (or reuse) the namespace's vector matrix from its files.

        Returns:
            Tuple of (vector ids, stacked embeddings).
        """
        cached = self._matrices.get(namespace)
        if cached is not None:
            return cached

        with self._connect() as cursor:
            cursor.execute(
                """
                SELECT vector_id, vector_file FROM items
                WHERE namespace = ? AND vector_file IS NOT NULL
                ORDER BY vector_id
                """,
                (namespace,),
            )
            rows = cursor.fetchall()

        vector_ids: list[int] = []
        embeddings_list: list[np.ndarray] = []
        for vector_id, vector_file in rows:
            vector_path = self._vector_path(vector_file)
            if not vector_path.exists():
                logger.warning("Vector file not found: %s", vector_path)
                continue
            vector_ids.append(int(vector_id))
            embeddings_list.append(np.load(vector_path))

        if embeddings_list:
            matrix = np.vstack(embeddings_list).astype("float32")
        else:
            matrix = np.empty((0, 0), dtype="float32")
        built = (np.asarray(vector_ids, dtype="int64"), matrix)
        self._matrices[namespace] = built
        logger.info(
            "Rebuilt embeddings matrix for %s with %d vectors",
            namespace,
            len(vector_ids),
        )
        return built

    @staticmethod
    def squared_l2(query_embedding: np.ndarray, embeddings: np.ndarray) -> np.ndarray:
        """Calculate squared Euclidean distance between query and embeddings.

        Returns:
            np.ndarray: One distance per row of ``embeddings``.
        """
        diff = embeddings - query_embedding
        return np.einsum("ij,ij->i", diff, diff)

    def _search(
        self, namespace: str, query: np.ndarray, k: int
    ) -> list[tuple[int, float]]:
        vector_ids, embeddings = self._embeddings_matrix(namespace)
        if len(vector_ids) == 0:
            return []
        if query.shape[0] != embeddings.shape[1]:
            msg = (
                f"Query dimension {query.shape[0]} does not match "
                f"stored dimension {embeddings.shape[1]}"
            )
            raise ValueError(msg)

        distances = self.squared_l2(query, embeddings)
        top_indices = np.argsort(distances, kind="stable")[:k]
        return [(int(vector_ids[idx]), float(distances[idx])) for idx in top_indices]

    def _remove_vectors(
        self, namespace: str, rows: list[tuple[int, str | None]]
    ) -> None:
        for _vector_id, vector_file in rows:
            if vector_file:
                self._vector_path(vector_file).unlink(missing_ok=True)
        self._matrices.pop(namespace, None)

    def _drop_namespace(self, namespace: str) -> None:
        self._matrices.pop(namespace, None)
        shutil.rmtree(contained_path(self.vectors_dir, namespace), ignore_errors=True)

