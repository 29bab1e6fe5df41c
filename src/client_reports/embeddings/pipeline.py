"""Embedding generation and cosine-similarity search.

Unprocessed messages are found through the ``processed_for_vector`` flag, so
a message whose embedding failed is simply picked up again on the next run.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from client_reports.config import Settings
from client_reports.matching.relevance import MatchCriteria, RelevanceMatcher, classify_message
from client_reports.models import DateRange, EnrichmentResult, Message
from client_reports.providers import EmbeddingProvider
from client_reports.store.query import Predicate, all_of
from client_reports.store.repository import MessageRepository
from client_reports.utils import truncate

logger = structlog.get_logger()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 for empty vectors, vectors of different length, or when
    either vector has zero norm.
    """

    if not a or not b or len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    value = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Clamp floating-point drift just outside [-1, 1].
    return max(-1.0, min(1.0, value))


def build_embedding_text(message: Message, max_chars: int = 6000) -> str:
    """Text embedded for a message: subject, summary and body.

    The result is capped at ``max_chars`` with a truncation marker appended.
    """

    content = "\n".join(
        [
            f"Subject: {message.subject}",
            f"Summary: {message.summary or ''}",
            f"Body: {message.body}",
        ]
    )
    return truncate(content, max_chars)


@dataclass(frozen=True)
class SimilarityOptions:
    """Filters for :meth:`EmbeddingPipeline.find_similar`."""

    limit: int = 10
    date_range: DateRange | None = None
    criteria: MatchCriteria = MatchCriteria()


class EmbeddingPipeline:
    """Compute, persist and search message embeddings."""

    def __init__(
        self,
        store: MessageRepository,
        provider: EmbeddingProvider,
        settings: Settings | None = None,
    ) -> None:
        from client_reports.config import get_settings

        self.settings = settings or get_settings()
        self._store = store
        self._provider = provider
        self._matcher = RelevanceMatcher(store)

    async def generate_embeddings(self, limit: int | None = None) -> EnrichmentResult:
        """Embed up to ``limit`` messages that have no embedding yet.

        Args:
            limit: Max messages to select. Defaults to the configured task limit.

        Returns:
            Counts of candidates, successes and failures.
        """

        limit = limit or self.settings.embedding_task_limit
        pending = await asyncio.to_thread(self._store.unprocessed_for_vector, limit)
        logger.info("embedding_candidates_found", count=len(pending), limit=limit)
        return await self.embed_messages(pending)

    async def embed_messages(self, messages: Sequence[Message]) -> EnrichmentResult:
        """Embed the given messages in batches.

        Messages that already carry an embedding are skipped. A failure on one
        message is logged and leaves it unprocessed; the batch carries on.
        """

        todo = [m for m in messages if not m.processed_for_vector]
        result = EnrichmentResult(candidates=len(todo))
        if not todo:
            return result

        batch_size = max(1, self.settings.embedding_batch_size)
        total_batches = math.ceil(len(todo) / batch_size)
        for index in range(0, len(todo), batch_size):
            batch = todo[index : index + batch_size]
            outcomes = await asyncio.gather(*(self._embed_one(m) for m in batch))
            succeeded = sum(1 for ok in outcomes if ok)
            result.processed += succeeded
            result.failed += len(batch) - succeeded
            logger.info(
                "embedding_batch_completed",
                batch=index // batch_size + 1,
                total_batches=total_batches,
                processed=succeeded,
                failed=len(batch) - succeeded,
            )

            if index + batch_size < len(todo) and self.settings.embedding_batch_delay_seconds > 0:
                await asyncio.sleep(self.settings.embedding_batch_delay_seconds)

        logger.info("embedding_run_completed", processed=result.processed, failed=result.failed)
        return result

    async def _embed_one(self, message: Message) -> bool:
        text = build_embedding_text(message, self.settings.embedding_max_chars)
        try:
            vector = await asyncio.wait_for(
                self._provider.embed(text),
                timeout=self.settings.ollama_timeout,
            )
            expected = self.settings.embedding_dimension
            if expected is not None and len(vector) != expected:
                raise ValueError(
                    f"Embedding size mismatch: got {len(vector)}, expected {expected}"
                )
            await asyncio.to_thread(self._store.update_embedding, message.id, vector)
        except Exception as exc:  # noqa: BLE001
            logger.warning("embedding_message_failed", message_id=message.id, error=str(exc))
            return False

        message.embedding = vector
        message.processed_for_vector = True
        return True

    async def find_similar(
        self,
        query: str,
        options: SimilarityOptions | None = None,
    ) -> list[Message]:
        """Return stored messages most similar to ``query``.

        Candidates are messages with an embedding that also pass the same
        address and date filters as relevance matching. A failing
        provider yields an empty list; callers fall back to keyword matching.

        Args:
            query: Free-text query.
            options: Result cap and filters.

        Returns:
            Up to ``options.limit`` messages by descending similarity, each
            with ``similarity`` set.
        """

        options = options or SimilarityOptions()
        if not query or not query.strip():
            return []

        try:
            query_vector = await asyncio.wait_for(
                self._provider.embed(query),
                timeout=self.settings.ollama_timeout,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "similarity_query_embedding_failed",
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )
            return []

        candidates = await asyncio.to_thread(self._candidates, options)
        scored: list[Message] = []
        for message in candidates:
            assert message.embedding is not None
            if len(message.embedding) != len(query_vector):
                continue
            message.similarity = cosine_similarity(query_vector, message.embedding)
            message.match_kind = classify_message(message, options.criteria)
            scored.append(message)

        scored.sort(key=lambda m: (-(m.similarity or 0.0), m.id))
        top = scored[: options.limit]
        logger.info(
            "similarity_search_completed",
            candidates=len(candidates),
            returned=len(top),
            limit=options.limit,
        )
        return top

    def _candidates(self, options: SimilarityOptions) -> list[Message]:
        predicate = all_of(
            Predicate("embedding IS NOT NULL"),
            self._matcher.build_predicate(options.criteria, options.date_range),
        )
        return self._store.query(predicate)
