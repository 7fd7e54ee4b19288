"""Data models for the RAG application."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


@dataclass
class Document:
    """An uploaded document owned by a chatbot."""

    id: str
    chatbot_id: str
    filename: str
    file_type: str
    file_size: int
    file_path: str
    uploaded_at: str
    processed_at: str | None = None
    vector_ids: list[str] = field(default_factory=list)

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None


@dataclass(frozen=True)
class Chunk:
    """A bounded span of a document's extracted text."""

    text: str
    index: int
    document_id: str


@dataclass
class IndexedItem:
    """A chunk stored in a chatbot namespace of the vector index."""

    id: str
    text: str
    metadata: dict[str, Any]
    embedding: np.ndarray | None = None


@dataclass
class RetrievalResult:
    """A scored chunk returned for a single query."""

    content: str
    metadata: dict[str, Any]
    distance: float
    relevance_score: float


class RetrievalStatus(Enum):
    """Why a retrieval returned what it did."""

    OK = "ok"
    NO_RELEVANT = "no_relevant"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass
class RetrievalOutcome:
    """Retrieval results plus the status that produced them."""

    status: RetrievalStatus
    results: list[RetrievalResult] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.status is not RetrievalStatus.OK

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):  # noqa: ANN204
        return iter(self.results)


@dataclass
class ConversationTurn:
    """Represents a single message in a conversation."""

    role: str
    content: str
    timestamp: str = ""


@dataclass
class Chatbot:
    """The parts of a chatbot configuration record used when answering."""

    id: str
    name: str = ""
    system_prompt: str = "You are a helpful assistant."


@dataclass
class StreamEvent:
    """One frame of a streamed reply: ``content``, ``metadata`` or ``done``."""

    type: str
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Wire shape of the event.

        Returns:
            Dictionary with the event type and its payload fields.
        """
        payload: dict[str, Any] = {"type": self.type}
        if self.type == "content":
            payload["content"] = self.content
        elif self.type == "metadata":
            payload.update(self.metadata)
        return payload

    def to_sse(self) -> str:
        """Format the event as a server-sent-events frame.

        Returns:
            The ``data: ...`` line terminated by a blank line.
        """
        return f"data: {json.dumps(self.to_dict())}\n\n"
