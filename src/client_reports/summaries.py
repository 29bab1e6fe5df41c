"""Message summarization.

Messages with a null or empty summary are summarized one at a time, with a
short pause between provider calls.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from client_reports.config import Settings
from client_reports.models import EnrichmentResult, Message
from client_reports.providers import SummaryProvider
from client_reports.store.repository import MessageRepository

logger = structlog.get_logger()

EMPTY_BODY_SUMMARY = "No content to summarize"


class SummaryPipeline:
    """Generate and persist message summaries."""

    def __init__(
        self,
        store: MessageRepository,
        provider: SummaryProvider,
        settings: Settings | None = None,
    ) -> None:
        from client_reports.config import get_settings

        self.settings = settings or get_settings()
        self._store = store
        self._provider = provider

    async def process_pending(self, limit: int | None = None) -> EnrichmentResult:
        """Summarize up to ``limit`` stored messages that lack a summary."""

        limit = limit or self.settings.summary_task_limit
        pending = await asyncio.to_thread(self._store.missing_summary, limit)
        logger.info("summary_candidates_found", count=len(pending), limit=limit)
        return await self.summarize_messages(pending)

    async def summarize_messages(self, messages: Sequence[Message]) -> EnrichmentResult:
        """Summarize the given messages, skipping ones that already have a summary."""

        todo = [m for m in messages if not m.summary]
        result = EnrichmentResult(candidates=len(todo))

        for position, message in enumerate(todo):
            if await self._summarize_one(message):
                result.processed += 1
            else:
                result.failed += 1

            if position + 1 < len(todo) and self.settings.summary_delay_seconds > 0:
                await asyncio.sleep(self.settings.summary_delay_seconds)

        if todo:
            logger.info("summary_run_completed", processed=result.processed, failed=result.failed)
        return result

    async def _summarize_one(self, message: Message) -> bool:
        try:
            if not message.body.strip():
                summary = EMPTY_BODY_SUMMARY
            else:
                summary = await asyncio.wait_for(
                    self._provider.summarize(message),
                    timeout=self.settings.ollama_timeout,
                )
            if not summary:
                raise ValueError("Summary provider returned an empty summary")
            await asyncio.to_thread(self._store.update_summary, message.id, summary)
        except Exception as exc:  # noqa: BLE001
            logger.warning("summary_message_failed", message_id=message.id, error=str(exc))
            return False

        message.summary = summary
        return True
