"""Command-line entry point for ingesting documents and chatting with them."""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from .config import config
from .context import build_context
from .errors import ChatRAGError
from .models import Chatbot

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger

    from .context import RAGContext


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        prog="chatrag",
        description="Ingest documents into a chatbot and ask it questions.",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for databases, indexes and uploads (default: config paths).",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Never call the generation service; always use the fallback reply.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser("ingest", help="Upload and process files.")
    ingest.add_argument("chatbot", help="Chatbot id owning the documents.")
    ingest.add_argument("files", nargs="+", type=Path, help="Files to ingest.")

    ask = commands.add_parser("ask", help="Ask a chatbot a question.")
    ask.add_argument("chatbot", help="Chatbot id to ask.")
    ask.add_argument("message", help="The question.")
    ask.add_argument(
        "--conversation",
        default=None,
        help="Conversation id to continue (default: a new conversation).",
    )
    ask.add_argument(
        "--system-prompt",
        default=Chatbot.system_prompt,
        help="System prompt for the chatbot.",
    )

    documents = commands.add_parser("documents", help="List a chatbot's documents.")
    documents.add_argument("chatbot", help="Chatbot id.")

    reprocess = commands.add_parser("reprocess", help="Re-run document processing.")
    reprocess.add_argument("document_id", help="Document id.")

    delete = commands.add_parser("delete", help="Delete a document.")
    delete.add_argument("document_id", help="Document id.")

    drop = commands.add_parser("drop", help="Delete a chatbot's index and documents.")
    drop.add_argument("chatbot", help="Chatbot id.")

    return parser.parse_args(argv)


async def ingest_files(context: RAGContext, chatbot_id: str, files: list[Path]) -> int:
    """Upload every file and wait for processing to finish."""  # noqa: DOC201
    service = context.document_service
    uploaded = []
    for path in files:
        data = await asyncio.to_thread(path.read_bytes)
        uploaded.append(await service.upload(chatbot_id, path.name, data))
    await service.wait_for_background()

    for document in uploaded:
        current = service.get(document.id)
        print(  # noqa: T201
            f"{current.id}\t{current.filename}\t{len(current.vector_ids)} chunks"
        )
    return 0


async def ask_question(
    context: RAGContext, chatbot: Chatbot, conversation_id: str, message: str
) -> int:
    """Stream a reply to stdout."""  # noqa: DOC201
    async for event in context.orchestrator.stream_reply(
        chatbot, conversation_id, message
    ):
        if event.type == "content":
            sys.stdout.write(event.content)
            sys.stdout.flush()
        elif event.type == "metadata":
            sys.stdout.write("\n")
            used = event.metadata.get("documentsUsed", 0)
            print(f"[{used} document chunk(s) used]")  # noqa: T201
    return 0


def list_documents(context: RAGContext, chatbot_id: str) -> int:
    """Print one line per document."""  # noqa: DOC201
    for document in context.document_service.list_documents(chatbot_id):
        status = "processed" if document.is_processed else "pending"
        print(  # noqa: T201
            f"{document.id}\t{document.filename}\t{document.file_size}\t"
            f"{status}\t{len(document.vector_ids)}"
        )
    return 0


async def run_command(args: argparse.Namespace, context: RAGContext) -> int:
    """Dispatch a parsed command."""  # noqa: DOC201
    service = context.document_service
    if args.command == "ingest":
        return await ingest_files(context, args.chatbot, args.files)
    if args.command == "ask":
        chatbot = Chatbot(id=args.chatbot, system_prompt=args.system_prompt)
        conversation_id = args.conversation or str(uuid.uuid4())
        return await ask_question(context, chatbot, conversation_id, args.message)
    if args.command == "documents":
        return list_documents(context, args.chatbot)
    if args.command == "reprocess":
        document = await service.reprocess(args.document_id)
        print(f"{document.id}\t{len(document.vector_ids)} chunks")  # noqa: T201
        return 0
    if args.command == "delete":
        await service.delete(args.document_id)
        return 0
    if args.command == "drop":
        deleted = await service.delete_chatbot(args.chatbot)
        print(f"Deleted {deleted} document(s)")  # noqa: T201
        return 0
    return 2


def run(args: argparse.Namespace, logger: Logger) -> int:
    """Build the context and run the command, mapping domain errors to exit codes."""  # noqa: DOC201
    try:
        context = build_context(data_dir=args.data_dir, use_generation=not args.offline)
        return asyncio.run(run_command(args, context))
    except KeyboardInterrupt:
        logger.info("chatrag stopped by user")
        return 0
    except (ChatRAGError, ValueError) as exc:
        logger.error("%s", exc)  # noqa: TRY400
        return 1
    except OSError:
        logger.exception("File operation failed")
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run one command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    return run(args, logger)


if __name__ == "__main__":
    sys.exit(main())
