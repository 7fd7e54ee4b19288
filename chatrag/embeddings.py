"""Embedding services mapping text to fixed-dimension unit vectors."""

from __future__ import annotations

import hashlib
import math
from typing import Protocol

import numpy as np
from openai import OpenAI, OpenAIError

from .config import config
from .errors import EmbeddingFailure

logger = config.get_logger(__name__)

WORD_FEATURE_SCALE = 0.1
POSITION_FREQUENCY = 0.1


class Embedder(Protocol):
    """Contract shared by every embedding backend."""

    dimension: int

    def embed(self, texts: list[str]) -> list[np.ndarray]: ...

    def embed_query(self, text: str) -> np.ndarray: ...


def _normalize(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


class DeterministicEmbedder:
    """Hash-based stand-in for a trained embedding model.

    The same text always yields the same vector. A SHA-256 digest of the text
    seeds every dimension and the first ``max_words`` words each nudge one
    dimension, so texts sharing vocabulary drift closer together.
    """

    def __init__(
        self,
        dimension: int | None = None,
        max_words: int | None = None,
    ) -> None:
        """Initialize the embedder.

        Args:
            dimension: Vector dimension. If None, uses config.EMBEDDING_DIMENSION.
            max_words: Words contributing features. If None, uses
                config.EMBEDDING_MAX_WORDS.
        """
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.max_words = (
            max_words if max_words is not None else config.EMBEDDING_MAX_WORDS
        )
        self._position_weights = np.cos(
            np.arange(self.dimension) * POSITION_FREQUENCY
        )

    def embed_one(self, text: str) -> np.ndarray:
        """Embed a single text.

        Returns:
            Unit vector of ``self.dimension`` floats (zero vector left as is).
        """
        digest = np.frombuffer(hashlib.sha256(text.encode("utf-8")).digest(), np.uint8)
        repeats = math.ceil(self.dimension / digest.size)
        seed_bytes = np.tile(digest, repeats)[: self.dimension].astype(np.float64)
        vector = ((seed_bytes / 255.0) * 2 - 1) * self._position_weights

        for word in text.lower().split()[: self.max_words]:
            word_hash = hashlib.md5(word.encode("utf-8")).digest()  # noqa: S324
            feature_index = (word_hash[0] * 256 + word_hash[1]) % self.dimension
            vector[feature_index] += (word_hash[2] / 255.0 - 0.5) * WORD_FEATURE_SCALE

        return _normalize(vector)

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        """Embed a batch of texts; order of results matches ``texts``.

        Returns:
            One unit vector per input text.
        """
        embeddings = [self.embed_one(text) for text in texts]
        logger.info("Generated %d deterministic embeddings", len(embeddings))
        return embeddings

    def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query string.

        Returns:
            The query's unit vector.
        """
        return self.embed([text])[0]


class OpenAIEmbedder:
    """Handles OpenAI embeddings generation behind the embedder contract."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        dimension: int | None = None,
        batch_size: int = 100,
    ) -> None:
        """Initialize the embedder with OpenAI API key and model.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            dimension: Requested output dimension. If None, uses
                config.EMBEDDING_DIMENSION.
            batch_size: Number of texts sent per request.
        """
        api_key = api_key or config.get_openai_api_key()
        default_headers = config.get_api_headers()
        self.client = OpenAI(
            api_key=api_key,
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.EMBEDDING_MODEL
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.batch_size = batch_size

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        """Get embeddings for multiple texts in batches.

        Returns:
            list[np.ndarray]: Unit vectors for the input texts, in order.

        Raises:
            EmbeddingFailure: If the OpenAI API call fails.
        """
        embeddings: list[np.ndarray] = []

        for i in range(0, len(texts), self.batch_size):
            batch_texts = texts[i : i + self.batch_size]
            try:
                response = self.client.embeddings.create(
                    model=self.model,
                    input=batch_texts,
                    dimensions=self.dimension,
                )
            except OpenAIError as exc:
                logger.exception("Error generating batch embeddings")
                msg = f"Embedding request failed: {exc}"
                raise EmbeddingFailure(msg) from exc
            embeddings.extend(
                _normalize(np.asarray(data.embedding, dtype=np.float64))
                for data in response.data
            )
            logger.info("Generated embeddings for batch %d", i // self.batch_size + 1)

        return embeddings

    def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query string.

        Returns:
            The query's unit vector.
        """
        return self.embed([text])[0]


def get_embedder(
    backend: str | None = None,
    *,
    dimension: int | None = None,
    api_key: str | None = None,
) -> DeterministicEmbedder | OpenAIEmbedder:
    """Return a configured embedder.

    Raises:
        ValueError: If an unsupported backend is requested.
    """
    name = (backend or config.EMBEDDING_BACKEND).lower()
    if name == "deterministic":
        return DeterministicEmbedder(dimension=dimension)
    if name == "openai":
        return OpenAIEmbedder(api_key=api_key, dimension=dimension)
    msg = f"Unsupported embedding backend: {backend}"
    raise ValueError(msg)
