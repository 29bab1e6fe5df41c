"""Command-line interface for Client Reports.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import structlog

from client_reports.config import Settings, get_settings
from client_reports.embeddings import EmbeddingPipeline
from client_reports.exceptions import ClientReportsError
from client_reports.gmail import GmailClient
from client_reports.models import Client, Message, TaskType
from client_reports.ollama import OllamaClient
from client_reports.retrieval import RetrievalOrchestrator
from client_reports.store import ClientRepository, MessageRepository
from client_reports.summaries import SummaryPipeline
from client_reports.tasks import TaskQueue

logger = structlog.get_logger()


def _add_db_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite database (default: settings db_path)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="client-reports", description="Client Reports")
    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Manage the local message store")
    db_sub = db_parser.add_subparsers(dest="db_command", required=True)
    init_parser = db_sub.add_parser("init", help="Create the database schema")
    _add_db_option(init_parser)

    clients_parser = subparsers.add_parser("clients", help="Manage client definitions")
    clients_sub = clients_parser.add_subparsers(dest="clients_command", required=True)
    add_parser = clients_sub.add_parser("add", help="Create or update a client")
    add_parser.add_argument("--id", required=True, help="Client ID")
    add_parser.add_argument("--name", default="", help="Display name")
    add_parser.add_argument("--domain", action="append", default=[], help="Client domain (repeatable)")
    add_parser.add_argument("--email", action="append", default=[], help="Client email (repeatable)")
    _add_db_option(add_parser)
    list_parser = clients_sub.add_parser("list", help="List clients")
    _add_db_option(list_parser)

    fetch_parser = subparsers.add_parser("fetch", help="Retrieve a client's messages")
    fetch_parser.add_argument("--client-id", required=True, help="Client ID")
    fetch_parser.add_argument("--start", required=True, help="Start date (YYYY-MM-DD)")
    fetch_parser.add_argument("--end", required=True, help="End date (YYYY-MM-DD)")
    fetch_parser.add_argument("--query", default=None, help="Keyword or semantic query")
    fetch_parser.add_argument("--semantic", action="store_true", help="Rank by embedding similarity")
    fetch_parser.add_argument("--limit", type=int, default=None, help="Max results")
    fetch_parser.add_argument("--no-provider", action="store_true", help="Use the local store only")
    fetch_parser.add_argument(
        "--no-enrich",
        action="store_true",
        help="Do not wait for background enrichment before exiting",
    )
    _add_db_option(fetch_parser)

    enrich_parser = subparsers.add_parser("enrich", help="Generate missing summaries and embeddings")
    enrich_parser.add_argument("--summaries", type=int, default=None, help="Max messages to summarize")
    enrich_parser.add_argument("--embeddings", type=int, default=None, help="Max messages to embed")
    _add_db_option(enrich_parser)

    search_parser = subparsers.add_parser("search", help="Semantic search over stored messages")
    search_parser.add_argument("query", help="Free-text query")
    search_parser.add_argument("--client-id", default=None, help="Restrict to a client")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results")
    _add_db_option(search_parser)

    return parser


@dataclass
class _Services:
    store: MessageRepository
    clients: ClientRepository
    ollama: OllamaClient
    embeddings: EmbeddingPipeline
    summaries: SummaryPipeline
    queue: TaskQueue
    orchestrator: RetrievalOrchestrator


def _open_store(settings: Settings, db: Path | None) -> tuple[MessageRepository, ClientRepository]:
    db_path = db or settings.db_path
    store = MessageRepository(db_path)
    store.initialize()
    return store, ClientRepository(db_path)


def _build_services(settings: Settings, db: Path | None, *, use_provider: bool = True) -> _Services:
    store, clients = _open_store(settings, db)
    ollama = OllamaClient(settings)
    embeddings = EmbeddingPipeline(store, ollama, settings)
    summaries = SummaryPipeline(store, ollama, settings)
    gmail = GmailClient(settings) if use_provider else None
    queue = TaskQueue(store, embeddings, summaries, mail_provider=gmail, settings=settings)
    orchestrator = RetrievalOrchestrator(
        store,
        embeddings=embeddings,
        mail_provider=gmail,
        task_queue=queue,
        clients=clients,
        settings=settings,
    )
    return _Services(store, clients, ollama, embeddings, summaries, queue, orchestrator)


def _format_message(message: Message) -> str:
    kind = message.match_kind.value if message.match_kind else "-"
    score = f"{message.similarity:.3f}" if message.similarity is not None else "-"
    return f"{message.date.isoformat()}\t{kind}\t{score}\t{message.sender}\t{message.subject}"


def _cmd_db_init(args: argparse.Namespace, settings: Settings) -> int:
    store, _ = _open_store(settings, args.db)
    print(f"Initialized {store.db_path} ({store.count()} messages)")
    return 0


def _cmd_clients_add(args: argparse.Namespace, settings: Settings) -> int:
    _, clients = _open_store(settings, args.db)
    client = Client(id=args.id, name=args.name, domains=args.domain, emails=args.email)
    clients.upsert_client(client)
    print(f"Saved client {client.id}: domains={client.domains} emails={client.emails}")
    return 0


def _cmd_clients_list(args: argparse.Namespace, settings: Settings) -> int:
    _, clients = _open_store(settings, args.db)
    for client in clients.list_clients():
        print(f"{client.id}\t{client.name}\t{','.join(client.domains)}\t{','.join(client.emails)}")
    return 0


async def _cmd_fetch(args: argparse.Namespace, settings: Settings) -> int:
    services = _build_services(settings, args.db, use_provider=not args.no_provider)
    try:
        result = await services.orchestrator.fetch_for_client(
            args.client_id,
            args.start,
            args.end,
            query=args.query,
            semantic=args.semantic,
            max_results=args.limit,
            use_provider=not args.no_provider,
        )
        for message in result.messages:
            print(_format_message(message))
        print(
            f"{len(result.messages)} messages; from_provider={result.from_provider} "
            f"semantic_used={result.semantic_used} task_id={result.task_id or '-'}"
        )

        # Queued enrichment would be lost when the process exits.
        if result.task_id and not args.no_enrich:
            await services.queue.run_until_idle()
            task = services.queue.get_task_status(result.task_id)
            if task is not None:
                print(f"Enrichment task {task.id}: {task.status.value}")
    finally:
        await services.ollama.aclose()
    return 0


async def _cmd_enrich(args: argparse.Namespace, settings: Settings) -> int:
    services = _build_services(settings, args.db, use_provider=False)
    try:
        task_ids = [
            services.queue.enqueue(TaskType.SUMMARIZE_EMAILS, {"limit": args.summaries}),
            services.queue.enqueue(TaskType.GENERATE_EMBEDDINGS, {"limit": args.embeddings}),
        ]
        await services.queue.run_until_idle()
        for task_id in task_ids:
            task = services.queue.get_task_status(task_id)
            if task is None:
                continue
            detail = task.result if task.error is None else task.error
            print(f"{task.type.value}\t{task.status.value}\t{detail}")
    finally:
        await services.ollama.aclose()
    return 0


async def _cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    from client_reports.embeddings import SimilarityOptions
    from client_reports.matching import MatchCriteria

    services = _build_services(settings, args.db, use_provider=False)
    try:
        criteria = MatchCriteria(user_email=settings.user_email)
        if args.client_id:
            client = services.clients.get_client(args.client_id)
            if client is None:
                print(f"Unknown client: {args.client_id}", file=sys.stderr)
                return 1
            criteria = MatchCriteria.build(client.domains, client.emails, settings.user_email)

        results = await services.embeddings.find_similar(
            args.query,
            SimilarityOptions(limit=args.limit, criteria=criteria),
        )
        for message in results:
            print(_format_message(message))
    finally:
        await services.ollama.aclose()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Client Reports CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
    )

    logger.info("client_reports_started", version="0.1.0", debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        if parsed.command == "db" and parsed.db_command == "init":
            return _cmd_db_init(parsed, settings)
        if parsed.command == "clients":
            if parsed.clients_command == "add":
                return _cmd_clients_add(parsed, settings)
            if parsed.clients_command == "list":
                return _cmd_clients_list(parsed, settings)
        if parsed.command == "fetch":
            return asyncio.run(_cmd_fetch(parsed, settings))
        if parsed.command == "enrich":
            return asyncio.run(_cmd_enrich(parsed, settings))
        if parsed.command == "search":
            return asyncio.run(_cmd_search(parsed, settings))
    except ClientReportsError as exc:
        logger.error("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
