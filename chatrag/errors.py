"""Exception taxonomy for ingestion, retrieval and generation."""


class ChatRAGError(Exception):
    """Base class for all chatrag errors."""


class UnsupportedFileType(ChatRAGError):
    """Upload rejected before any processing starts."""

    def __init__(self, message: str, *, extension: str = "") -> None:
        super().__init__(message)
        self.extension = extension


class UnsupportedFormat(ChatRAGError):
    """No extractor exists for the declared extension."""

    def __init__(self, message: str, *, extension: str = "") -> None:
        super().__init__(message)
        self.extension = extension


class ExtractionFailure(ChatRAGError):
    """The document bytes could not be turned into text."""

    def __init__(self, message: str, *, extension: str = "") -> None:
        super().__init__(message)
        self.extension = extension


class EmbeddingFailure(ChatRAGError):
    """The embedding backend could not produce vectors."""


class VectorStoreUnavailable(ChatRAGError):
    """The vector index could not be read or written."""


class GenerationFailure(ChatRAGError):
    """The text-generation backend failed before or during streaming."""


class DocumentNotFound(ChatRAGError):
    """No document record exists for the requested id."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id
