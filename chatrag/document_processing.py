"""Document text extraction and text chunking functionality."""

from __future__ import annotations

import io
import math
import re
from collections.abc import Callable
from enum import Enum

import docx
import openpyxl
import pypdf
import xlrd

from .config import config
from .errors import ExtractionFailure, UnsupportedFormat
from .models import Chunk

logger = config.get_logger(__name__)

PARAGRAPH_BOUNDARY = re.compile(r"\n\s*\n")
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
CHARS_PER_TOKEN = 4
CHARS_PER_OVERLAP_WORD = 5

OverlapStrategy = Callable[[str, int], str]


class FileFormat(Enum):
    """Closed set of document formats the extractor understands."""

    PLAIN_TEXT = "plain_text"
    PDF = "pdf"
    WORD = "word"
    EXCEL = "excel"
    PRESENTATION = "presentation"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_extension(cls, extension: str) -> FileFormat:
        """Map a file extension (with or without the dot) to its format.

        Returns:
            The matching format, or ``UNSUPPORTED``.
        """
        return _EXTENSION_FORMATS.get(normalize_extension(extension), cls.UNSUPPORTED)


def normalize_extension(extension: str) -> str:
    """Lower-case an extension and make sure it starts with a dot.

    Returns:
        The normalized extension, or an empty string.
    """
    normalized = extension.strip().lower()
    if normalized and not normalized.startswith("."):
        normalized = f".{normalized}"
    return normalized


_EXTENSION_FORMATS = {
    ".txt": FileFormat.PLAIN_TEXT,
    ".pdf": FileFormat.PDF,
    ".docx": FileFormat.WORD,
    ".xlsx": FileFormat.EXCEL,
    ".xls": FileFormat.EXCEL,
    ".pptx": FileFormat.PRESENTATION,
}


class DocumentLoader:
    """Extracts plain text from in-memory document bytes."""

    @staticmethod
    def load_txt(data: bytes) -> str:
        """Decode a UTF-8 text file.

        Returns:
            The decoded text.
        """
        return data.decode("utf-8-sig")

    @staticmethod
    def load_pdf(data: bytes) -> str:
        """Load text content from a PDF file.

        Returns:
            The text of every page, separated by newlines.
        """
        reader = pypdf.PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n".join(pages)

    @staticmethod
    def load_docx(data: bytes) -> str:
        """Load paragraph and table text from a Word document.

        Returns:
            Paragraphs separated by blank lines, tables one row per line.
        """
        document = docx.Document(io.BytesIO(data))
        blocks = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            rows = ["\t".join(cell.text for cell in row.cells) for row in table.rows]
            blocks.append("\n".join(rows))
        return "\n\n".join(blocks)

    @staticmethod
    def load_xlsx(data: bytes) -> str:
        """Load every sheet of an Office Open XML workbook.

        Returns:
            Sheet texts, each introduced by a sheet-name separator.
        """
        workbook = openpyxl.load_workbook(
            io.BytesIO(data), read_only=True, data_only=True
        )
        try:
            text = ""
            for sheet in workbook.worksheets:
                rows = [
                    "\t".join("" if value is None else str(value) for value in row)
                    for row in sheet.iter_rows(values_only=True)
                ]
                text += _sheet_block(sheet.title, rows)
        finally:
            workbook.close()
        return text

    @staticmethod
    def load_xls(data: bytes) -> str:
        """Load every sheet of a legacy Excel workbook.

        Returns:
            Sheet texts, each introduced by a sheet-name separator.
        """
        workbook = xlrd.open_workbook(file_contents=data)
        text = ""
        for sheet in workbook.sheets():
            rows = [
                "\t".join(str(value) for value in sheet.row_values(row_idx))
                for row_idx in range(sheet.nrows)
            ]
            text += _sheet_block(sheet.name, rows)
        return text

    @staticmethod
    def load_pptx(data: bytes) -> str:  # noqa: ARG004
        """Presentation extraction is not implemented; yields no text.

        Returns:
            An empty string.
        """
        logger.warning("Presentation extraction not yet implemented")
        return ""

    @classmethod
    def extract_text(cls, data: bytes, extension: str) -> str:
        """Extract text based on the declared file extension.

        Args:
            data: Raw document bytes.
            extension: Declared extension such as ``.pdf``.

        Returns:
            The extracted plain text.

        Raises:
            UnsupportedFormat: If no extractor handles the extension.
            ExtractionFailure: If the extractor cannot read the bytes.
        """
        file_format = FileFormat.from_extension(extension)
        ext = normalize_extension(extension)
        if file_format is FileFormat.UNSUPPORTED:
            msg = f"Unsupported file type: {extension}"
            raise UnsupportedFormat(msg, extension=ext)

        if file_format is FileFormat.EXCEL:
            loader = cls.load_xls if ext == ".xls" else cls.load_xlsx
        else:
            loader = {
                FileFormat.PLAIN_TEXT: cls.load_txt,
                FileFormat.PDF: cls.load_pdf,
                FileFormat.WORD: cls.load_docx,
                FileFormat.PRESENTATION: cls.load_pptx,
            }[file_format]

        try:
            text = loader(data)
        except Exception as exc:  # noqa: BLE001
            msg = f"Could not extract text from {extension} document: {exc}"
            raise ExtractionFailure(msg, extension=ext) from exc

        logger.info("Extracted %d characters from %s document", len(text), ext)
        return text


def _sheet_block(name: str, rows: list[str]) -> str:
    sheet_text = "\n".join(row for row in rows if row.strip())
    return f"\n--- Sheet: {name} ---\n{sheet_text}"


def extract_text(data: bytes, extension: str) -> str:
    """Module-level shortcut for :meth:`DocumentLoader.extract_text`.

    Returns:
        The extracted plain text.
    """
    return DocumentLoader.extract_text(data, extension)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters.

    Returns:
        Estimated token count.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def word_overlap(previous: str, overlap_size: int) -> str:
    """Trailing words of the previous chunk, about ``overlap_size`` characters.

    Returns:
        The last ``overlap_size // 5`` words joined by spaces.
    """
    count = overlap_size // CHARS_PER_OVERLAP_WORD
    if count <= 0:
        return ""
    return " ".join(previous.split()[-count:])


def _fit_overlap(carry: str, paragraph: str, max_chunk_size: int) -> str:
    words = carry.split()
    while words and len(" ".join(words)) + 1 + len(paragraph) > max_chunk_size:
        words.pop(0)
    return " ".join(words)


def _split_oversized(paragraph: str, max_chunk_size: int) -> list[str]:
    """Split a paragraph on sentence ends, hard-cutting overlong sentences.

    Returns:
        Pieces of at most ``max_chunk_size`` characters, in order.
    """
    pieces: list[str] = []
    current = ""
    for sentence in SENTENCE_BOUNDARY.split(paragraph):
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= max_chunk_size:
            current = candidate
            continue
        if current:
            pieces.append(current)
        while len(sentence) > max_chunk_size:
            pieces.append(sentence[:max_chunk_size])
            sentence = sentence[max_chunk_size:]
        current = sentence
    if current:
        pieces.append(current)
    return pieces


def chunk_text(
    text: str,
    max_chunk_size: int,
    overlap_size: int,
    overlap: OverlapStrategy = word_overlap,
) -> list[str]:
    """Split text into bounded, overlapping windows.

    Paragraphs (blank-line separated) are packed into a buffer until the next
    one would not fit. The buffer is then flushed and the next one is seeded
    with the tail chosen by ``overlap``, trimmed so the seed and paragraph fit.
    Paragraphs longer than ``max_chunk_size`` are split on sentence ends and
    overlong sentences are cut at the character limit.

    Args:
        text: Input text.
        max_chunk_size: Maximum chunk length in characters.
        overlap_size: Overlap budget in characters handed to ``overlap``.
        overlap: Strategy that picks the carried-over tail of a chunk.

    Returns:
        Non-empty, whitespace-trimmed chunks in document order.

    Raises:
        ValueError: If the size arguments are out of range.
    """
    if max_chunk_size <= 0:
        msg = f"max_chunk_size must be positive, got {max_chunk_size}"
        raise ValueError(msg)
    if overlap_size < 0:
        msg = f"overlap_size must not be negative, got {overlap_size}"
        raise ValueError(msg)

    chunks: list[str] = []
    buffer = ""
    for raw_paragraph in PARAGRAPH_BOUNDARY.split(text):
        paragraph = raw_paragraph.strip()
        if not paragraph:
            continue

        if len(paragraph) > max_chunk_size:
            if buffer:
                chunks.append(buffer)
            *complete, buffer = _split_oversized(paragraph, max_chunk_size)
            chunks.extend(complete)
            continue

        if not buffer:
            buffer = paragraph
        elif len(buffer) + 2 + len(paragraph) <= max_chunk_size:
            buffer = f"{buffer}\n\n{paragraph}"
        else:
            chunks.append(buffer)
            carry = _fit_overlap(
                overlap(buffer, overlap_size), paragraph, max_chunk_size
            )
            buffer = f"{carry} {paragraph}" if carry else paragraph

    if buffer:
        chunks.append(buffer)

    return [chunk for chunk in (c.strip() for c in chunks) if chunk]


class TextChunker:
    """Handles paragraph-aware chunking with word overlap."""

    def __init__(
        self,
        chunk_size: int = 1000,
        overlap: int = 100,
        overlap_strategy: OverlapStrategy = word_overlap,
    ) -> None:
        """Initialize the TextChunker with chunk size and overlap.

        Args:
            chunk_size: Maximum characters per chunk.
            overlap: Overlap budget in characters between consecutive chunks.
            overlap_strategy: Picks the tail carried into the next chunk.
        """
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.overlap_strategy = overlap_strategy

    def chunk_text(self, text: str, document_id: str = "document") -> list[Chunk]:
        """Split text into positioned chunks for one document.

        Returns:
            A list of Chunk objects in document order.
        """
        pieces = chunk_text(text, self.chunk_size, self.overlap, self.overlap_strategy)
        chunks = [
            Chunk(text=piece, index=index, document_id=document_id)
            for index, piece in enumerate(pieces)
        ]
        logger.info("Text split into %d chunks", len(chunks))
        return chunks
