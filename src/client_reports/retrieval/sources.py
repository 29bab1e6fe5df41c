"""Collect messages from the mail provider."""

from __future__ import annotations

import asyncio

import structlog

from client_reports.exceptions import ProviderUnavailableError
from client_reports.matching.relevance import MatchCriteria, classify_message, message_matches
from client_reports.models import AddressFilter, DateRange, Message
from client_reports.providers import MailProvider

logger = structlog.get_logger()


async def collect_provider_messages(
    provider: MailProvider,
    criteria: MatchCriteria,
    date_range: DateRange,
    *,
    page_size: int,
    max_results: int | None,
    timeout: float,
) -> list[Message]:
    """Page through the provider and keep messages that really match.

    Provider search is fuzzier than the local rules, so each message is
    re-checked against the date range and the client addresses.

    Raises:
        ProviderUnavailableError: On provider failure or when the whole fetch
            exceeds ``timeout`` seconds.
    """

    address_filter = AddressFilter(domains=list(criteria.domains), emails=list(criteria.emails))

    async def _collect() -> list[Message]:
        collected: list[Message] = []
        seen = 0
        async for page in provider.fetch_messages(address_filter, date_range, page_size):
            seen += len(page)
            for message in page:
                if not date_range.contains(message.date):
                    continue
                if not message_matches(message, criteria):
                    continue
                message.match_kind = classify_message(message, criteria)
                collected.append(message)
            if max_results is not None and len(collected) >= max_results:
                break

        logger.info("provider_fetch_completed", seen=seen, matched=len(collected))
        return collected if max_results is None else collected[:max_results]

    try:
        return await asyncio.wait_for(_collect(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ProviderUnavailableError(f"Mail provider timed out after {timeout}s") from exc
