"""SQLite persistence for document records and conversation history."""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from .config import config
from .models import ConversationTurn, Document

logger = config.get_logger(__name__)

DOCUMENT_COLUMNS = (
    "id, chatbot_id, filename, file_type, file_size, file_path, "
    "uploaded_at, processed_at, vector_ids"
)


def utc_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class SQLiteRepository:
    """Owns a SQLite file and opens a short-lived connection per operation."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Cursor]:
        conn = sqlite3.connect(str(self.db_path))
        try:
            with conn:
                yield conn.cursor()
        finally:
            conn.close()

    def _create_tables(self) -> None:
        raise NotImplementedError


class DocumentRepository(SQLiteRepository):
    """Document records: created on upload, updated by the processing pipeline."""

    def _create_tables(self) -> None:
        with self._connect() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    chatbot_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    file_type TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    file_path TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL,
                    processed_at TEXT,
                    vector_ids TEXT NOT NULL DEFAULT '[]'
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_chatbot "
                "ON documents(chatbot_id)"
            )

    @staticmethod
    def _from_row(row: tuple) -> Document:
        (
            document_id,
            chatbot_id,
            filename,
            file_type,
            file_size,
            file_path,
            uploaded_at,
            processed_at,
            vector_ids,
        ) = row
        return Document(
            id=document_id,
            chatbot_id=chatbot_id,
            filename=filename,
            file_type=file_type,
            file_size=int(file_size),
            file_path=file_path,
            uploaded_at=uploaded_at,
            processed_at=processed_at,
            vector_ids=json.loads(vector_ids or "[]"),
        )

    def create(  # noqa: PLR0913
        self,
        chatbot_id: str,
        filename: str,
        file_type: str,
        file_size: int,
        file_path: str,
        document_id: str | None = None,
    ) -> Document:
        """Insert a new, unprocessed document record.

        Returns:
            The stored document.
        """
        document = Document(
            id=document_id or str(uuid.uuid4()),
            chatbot_id=str(chatbot_id),
            filename=filename,
            file_type=file_type,
            file_size=file_size,
            file_path=file_path,
            uploaded_at=utc_now(),
        )
        with self._connect() as cursor:
            cursor.execute(
                f"INSERT INTO documents ({DOCUMENT_COLUMNS}) "  # noqa: S608
                "VALUES (?, ?, ?, ?, ?, ?, ?, NULL, '[]')",
                (
                    document.id,
                    document.chatbot_id,
                    document.filename,
                    document.file_type,
                    document.file_size,
                    document.file_path,
                    document.uploaded_at,
                ),
            )
        return document

    def get(self, document_id: str) -> Document | None:
        with self._connect() as cursor:
            cursor.execute(
                f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = ?",  # noqa: S608
                (document_id,),
            )
            row = cursor.fetchone()
        return None if row is None else self._from_row(row)

    def list_by_chatbot(self, chatbot_id: str) -> list[Document]:
        """All documents of a chatbot, newest first.

        Returns:
            Document records.
        """
        with self._connect() as cursor:
            cursor.execute(
                f"SELECT {DOCUMENT_COLUMNS} FROM documents "  # noqa: S608
                "WHERE chatbot_id = ? ORDER BY uploaded_at DESC, rowid DESC",
                (str(chatbot_id),),
            )
            return [self._from_row(row) for row in cursor.fetchall()]

    def count_by_chatbot(self, chatbot_id: str) -> int:
        with self._connect() as cursor:
            cursor.execute(
                "SELECT COUNT(*) FROM documents WHERE chatbot_id = ?",
                (str(chatbot_id),),
            )
            return int(cursor.fetchone()[0])

    def mark_processed(self, document_id: str, vector_ids: Sequence[str]) -> None:
        with self._connect() as cursor:
            cursor.execute(
                "UPDATE documents SET processed_at = ?, vector_ids = ? WHERE id = ?",
                (utc_now(), json.dumps(list(vector_ids)), document_id),
            )

    def reset_processing(self, document_id: str) -> None:
        with self._connect() as cursor:
            cursor.execute(
                "UPDATE documents SET processed_at = NULL, vector_ids = '[]' "
                "WHERE id = ?",
                (document_id,),
            )

    def delete(self, document_id: str) -> bool:
        with self._connect() as cursor:
            cursor.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            return cursor.rowcount > 0

    def delete_by_chatbot(self, chatbot_id: str) -> int:
        with self._connect() as cursor:
            cursor.execute(
                "DELETE FROM documents WHERE chatbot_id = ?", (str(chatbot_id),)
            )
            return cursor.rowcount


class ConversationStore(SQLiteRepository):
    """Append-only message history per conversation."""

    def _create_tables(self) -> None:
        with self._connect() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    conversation_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    tokens_used INTEGER,
                    timestamp TEXT NOT NULL
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
                "ON messages(conversation_id, seq)"
            )

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tokens_used: int | None = None,
    ) -> str:
        """Add one message to a conversation.

        Returns:
            The new message id.
        """
        message_id = str(uuid.uuid4())
        with self._connect() as cursor:
            cursor.execute(
                """
                INSERT INTO messages (
                    id, conversation_id, role, content, tokens_used, timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (message_id, conversation_id, role, content, tokens_used, utc_now()),
            )
        logger.info("Added %s message to conversation %s", role, conversation_id)
        return message_id

    def get_history(
        self, conversation_id: str, limit: int = 10
    ) -> list[ConversationTurn]:
        """The last ``limit`` messages of a conversation.

        Returns:
            Turns in chronological order.
        """
        if limit <= 0:
            return []
        with self._connect() as cursor:
            cursor.execute(
                """
                SELECT role, content, timestamp FROM messages
                WHERE conversation_id = ?
                ORDER BY seq DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            )
            rows = cursor.fetchall()
        return [
            ConversationTurn(role=role, content=content, timestamp=timestamp)
            for role, content, timestamp in reversed(rows)
        ]

    def clear(self, conversation_id: str) -> None:
        """Clear the conversation history."""
        with self._connect() as cursor:
            cursor.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (conversation_id,)
            )
        logger.info("Conversation history cleared for %s", conversation_id)
