"""Configuration management for the chatrag application."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)

EMBEDDING_BACKENDS = {"deterministic", "openai"}
VECTOR_BACKENDS = {"faiss", "sqlite"}


class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI Configuration
    @classmethod
    def get_openai_api_key(cls) -> str:
        """Get OpenAI API key from environment variables.

        Returns:
            OpenAI API key from environment or empty string if not set.
        """
        return os.getenv("OPENAI_API_KEY", "")

    OPENAI_BASE_URL: str | None = os.getenv("OPENAI_BASE_URL")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()

    # Chunking Configuration
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "1000"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "100"))

    # Embedding Configuration
    EMBEDDING_BACKEND: str = os.getenv("EMBEDDING_BACKEND", "deterministic").lower()
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_DIMENSION: int = int(os.getenv("EMBEDDING_DIMENSION", "1536"))
    EMBEDDING_MAX_WORDS: int = int(os.getenv("EMBEDDING_MAX_WORDS", "100"))

    # Chat Model Configuration
    CHAT_MODEL: str = os.getenv("CHAT_MODEL", "gpt-4.1-nano-2025-04-14")
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "4096"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))

    # Vector Store Configuration
    VECTOR_BACKEND: str = os.getenv("VECTOR_BACKEND", "faiss").lower()
    VECTOR_STORE_DB_PATH: Path = Path(
        os.getenv("VECTOR_STORE_DB_PATH", "data/vector_store.db")
    )
    VECTOR_STORE_DIR: Path = Path(os.getenv("VECTOR_STORE_DIR", "data/vectors"))
    FAISS_INDEX_DIR: Path = Path(os.getenv("FAISS_INDEX_DIR", "data/faiss"))

    # Document Records Configuration
    RECORDS_DB_PATH: Path = Path(os.getenv("RECORDS_DB_PATH", "data/records.db"))
    UPLOAD_DIR: Path = Path(os.getenv("UPLOAD_DIR", "data/uploads"))
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))

    # Retrieval Configuration
    RAG_TOP_K: int = int(os.getenv("RAG_TOP_K", "3"))
    # Uncalibrated: chosen empirically against the deterministic embedder.
    RAG_MIN_RELEVANCE: float = float(os.getenv("RAG_MIN_RELEVANCE", "0.0005"))
    RAG_MAX_CONTEXT_TOKENS: int = int(os.getenv("RAG_MAX_CONTEXT_TOKENS", "3000"))

    # Conversation Configuration
    HISTORY_TURNS: int = int(os.getenv("HISTORY_TURNS", "10"))
    FALLBACK_TOKEN_DELAY: float = float(os.getenv("FALLBACK_TOKEN_DELAY", "0.05"))

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "chatrag/0.1")
    API_TEST_HEADER_NAME: str | None = os.getenv("API_TEST_HEADER_NAME")
    API_TEST_HEADER_VALUE: str | None = os.getenv("API_TEST_HEADER_VALUE")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values for consistency.

        A missing OpenAI API key is not an error: the chat falls back to the
        canned response when no generation backend is configured.

        Raises:
            ValueError: If a setting is out of range or names an unknown backend.
        """
        if cls.CHUNK_SIZE <= 0:
            msg = f"CHUNK_SIZE must be positive, got {cls.CHUNK_SIZE}"
            raise ValueError(msg)
        if not 0 <= cls.CHUNK_OVERLAP < cls.CHUNK_SIZE:
            msg = (
                f"CHUNK_OVERLAP must be between 0 and CHUNK_SIZE, "
                f"got {cls.CHUNK_OVERLAP}"
            )
            raise ValueError(msg)
        if cls.EMBEDDING_DIMENSION <= 0:
            msg = f"EMBEDDING_DIMENSION must be positive, got {cls.EMBEDDING_DIMENSION}"
            raise ValueError(msg)
        if cls.RAG_MAX_CONTEXT_TOKENS <= 0:
            msg = (
                f"RAG_MAX_CONTEXT_TOKENS must be positive, "
                f"got {cls.RAG_MAX_CONTEXT_TOKENS}"
            )
            raise ValueError(msg)
        if not 0.0 <= cls.RAG_MIN_RELEVANCE <= 1.0:
            msg = f"RAG_MIN_RELEVANCE must be within [0, 1], got {cls.RAG_MIN_RELEVANCE}"
            raise ValueError(msg)
        if cls.EMBEDDING_BACKEND not in EMBEDDING_BACKENDS:
            msg = f"Unsupported embedding backend: {cls.EMBEDDING_BACKEND}"
            raise ValueError(msg)
        if cls.VECTOR_BACKEND not in VECTOR_BACKENDS:
            msg = f"Unsupported vector store backend: {cls.VECTOR_BACKEND}"
            raise ValueError(msg)

    @classmethod
    def is_generation_configured(cls) -> bool:
        """Check whether a generation backend can be constructed.

        Returns:
            True if an OpenAI API key is available.
        """
        return bool(cls.get_openai_api_key())

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        logging.getLogger("openai").setLevel(
            getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        if cls.API_TEST_HEADER_NAME and cls.API_TEST_HEADER_VALUE:
            headers[cls.API_TEST_HEADER_NAME] = cls.API_TEST_HEADER_VALUE

        return headers


config = Config()
