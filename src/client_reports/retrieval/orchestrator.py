"""Hybrid retrieval of a client's correspondence.

The orchestrator combines three sources for one client and date range:

1. relevance matching against the local store;
2. optional semantic search over stored embeddings;
3. a best-effort fetch from the mail provider for messages not yet mirrored.

Provider-fetched messages are persisted (insert-if-absent), everything is
merged and ordered, and anything still lacking a summary or embedding is
handed to the task queue instead of being enriched inline.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from client_reports.config import Settings
from client_reports.embeddings.pipeline import EmbeddingPipeline, SimilarityOptions
from client_reports.exceptions import InvalidInputError, ProviderUnavailableError
from client_reports.matching.relevance import MatchCriteria, RelevanceMatcher
from client_reports.models import DateRange, Message, TaskType
from client_reports.providers import MailProvider
from client_reports.retrieval.merge import merge_messages, sort_newest_first
from client_reports.retrieval.sources import collect_provider_messages
from client_reports.store.repository import ClientRepository, MessageRepository

if TYPE_CHECKING:
    from client_reports.tasks.queue import TaskQueue

logger = structlog.get_logger()


@dataclass
class FetchParams:
    """Inputs for :meth:`RetrievalOrchestrator.fetch`.

    Values are checked by the orchestrator, not here, so that bad input is
    reported as :class:`InvalidInputError`.
    """

    start: datetime | date | str
    end: datetime | date | str
    domains: Sequence[str] = ()
    emails: Sequence[str] = ()
    query: str | None = None
    semantic: bool = False
    max_results: int | None = None
    client_id: str | None = None
    client_name: str = ""
    use_provider: bool = True


@dataclass
class FetchResult:
    """Messages for a client plus where they came from."""

    messages: list[Message] = field(default_factory=list)
    from_provider: bool = False
    semantic_used: bool = False
    task_id: str | None = None


class RetrievalOrchestrator:
    """Entry point used by report generation."""

    def __init__(
        self,
        store: MessageRepository,
        embeddings: EmbeddingPipeline | None = None,
        mail_provider: MailProvider | None = None,
        task_queue: TaskQueue | None = None,
        clients: ClientRepository | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Message store.
            embeddings: Pipeline for semantic search. Without one, semantic
                requests fall back to keyword matching.
            mail_provider: External mail source. Optional.
            task_queue: Queue for background enrichment. Without one, nothing
                is enqueued.
            clients: Client store used by :meth:`fetch_for_client`.
            settings: Application settings. If None, uses default settings.
        """
        from client_reports.config import get_settings

        self.settings = settings or get_settings()
        self.store = store
        self.embeddings = embeddings
        self.mail_provider = mail_provider
        self.task_queue = task_queue
        self.clients = clients
        self._matcher = RelevanceMatcher(store)

    async def fetch(self, params: FetchParams) -> FetchResult:
        """Retrieve the messages relevant to a client in a date range.

        Args:
            params: Client addresses, date range and retrieval options.

        Returns:
            Up to ``max_results`` messages, newest first unless semantic
            ranking was used, with provenance flags.

        Raises:
            InvalidInputError: Malformed date range or non-positive cap. No I/O
                has happened when this is raised.
        """

        date_range, limit = self._validate(params)
        criteria = MatchCriteria.build(params.domains, params.emails, self.settings.user_email)
        query = (params.query or "").strip() or None
        want_semantic = bool(params.semantic and query and self.embeddings is not None)

        logger.info(
            "fetch_started",
            client_id=params.client_id,
            domains=list(criteria.domains),
            emails=list(criteria.emails),
            start=date_range.start.isoformat(),
            end=date_range.end.isoformat(),
            semantic=want_semantic,
            limit=limit,
        )

        # The matcher result is the fallback when semantic search finds nothing.
        if want_semantic:
            assert self.embeddings is not None and query is not None
            semantic_results, matched = await asyncio.gather(
                self.embeddings.find_similar(
                    query,
                    SimilarityOptions(limit=limit, date_range=date_range, criteria=criteria),
                ),
                self._matcher.find(criteria, date_range, limit=limit),
            )
        else:
            semantic_results = []
            matched = await self._matcher.find(criteria, date_range, keyword=query, limit=limit)

        semantic_used = bool(semantic_results)
        base = semantic_results if semantic_used else matched
        if want_semantic and not semantic_used:
            logger.info("semantic_search_empty", fallback="relevance")

        fetched: list[Message] = []
        inserted: list[str] = []
        from_provider = False
        if params.use_provider and self.mail_provider is not None:
            fetched = await self._fetch_from_provider(criteria, date_range, limit)
            if fetched:
                inserted = await asyncio.to_thread(self.store.insert_if_absent, fetched)
                from_provider = True
                logger.info("provider_messages_persisted", fetched=len(fetched), inserted=len(inserted))

        merged = merge_messages(base, fetched)
        if not semantic_used:
            merged = sort_newest_first(merged)
        messages = merged[:limit]

        task_id = self._enqueue_enrichment(
            params, criteria, date_range, messages, has_new=bool(inserted)
        )

        logger.info(
            "fetch_completed",
            client_id=params.client_id,
            returned=len(messages),
            from_provider=from_provider,
            semantic_used=semantic_used,
            task_id=task_id,
        )
        return FetchResult(
            messages=messages,
            from_provider=from_provider,
            semantic_used=semantic_used,
            task_id=task_id,
        )

    async def fetch_for_client(
        self,
        client_id: str,
        start: datetime | date | str,
        end: datetime | date | str,
        *,
        query: str | None = None,
        semantic: bool = False,
        max_results: int | None = None,
        use_provider: bool = True,
    ) -> FetchResult:
        """Fetch using a stored client's domains and emails.

        Raises:
            InvalidInputError: No client store is configured or the client
                does not exist.
        """

        if self.clients is None:
            raise InvalidInputError("No client store configured")
        client = await asyncio.to_thread(self.clients.get_client, client_id)
        if client is None:
            raise InvalidInputError(f"Unknown client: {client_id}")

        return await self.fetch(
            FetchParams(
                start=start,
                end=end,
                domains=client.domains,
                emails=client.emails,
                query=query,
                semantic=semantic,
                max_results=max_results,
                client_id=client.id,
                client_name=client.name,
                use_provider=use_provider,
            )
        )

    def _validate(self, params: FetchParams) -> tuple[DateRange, int]:
        try:
            date_range = DateRange(start=params.start, end=params.end)
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid date range: {exc}") from exc

        limit = params.max_results if params.max_results is not None else self.settings.default_max_results
        if limit <= 0:
            raise InvalidInputError(f"max_results must be positive, got {limit}")
        return date_range, limit

    async def _fetch_from_provider(
        self,
        criteria: MatchCriteria,
        date_range: DateRange,
        limit: int,
    ) -> list[Message]:
        assert self.mail_provider is not None
        try:
            return await collect_provider_messages(
                self.mail_provider,
                criteria,
                date_range,
                page_size=self.settings.gmail_page_size,
                max_results=limit,
                timeout=self.settings.mail_timeout,
            )
        except ProviderUnavailableError as exc:
            logger.warning("mail_provider_unavailable", error=str(exc), fallback="store")
            return []
        except Exception:  # noqa: BLE001
            logger.exception("mail_provider_failed", fallback="store")
            return []

    def _enqueue_enrichment(
        self,
        params: FetchParams,
        criteria: MatchCriteria,
        date_range: DateRange,
        messages: list[Message],
        *,
        has_new: bool = False,
    ) -> str | None:
        if self.task_queue is None:
            return None
        # Newly stored messages may have been cut by the cap but still need enrichment.
        if not has_new and not any(m.needs_enrichment for m in messages):
            return None

        if params.client_id:
            return self.task_queue.enqueue(
                TaskType.PROCESS_CLIENT_EMAILS,
                {
                    "client_id": params.client_id,
                    "client_name": params.client_name,
                    "domains": list(criteria.domains),
                    "emails": list(criteria.emails),
                    "start": date_range.start,
                    "end": date_range.end,
                },
            )
        return self.task_queue.enqueue(
            TaskType.PROCESS_NEW_EMAILS,
            {"limit": self.settings.new_emails_task_limit},
        )
