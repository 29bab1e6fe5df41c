"""Interfaces of the external collaborators.

The Gmail and Ollama clients implement these; tests substitute fakes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from client_reports.models import AddressFilter, DateRange, Message


@runtime_checkable
class MailProvider(Protocol):
    """Source of messages that may not be mirrored locally yet."""

    def fetch_messages(
        self,
        address_filter: AddressFilter,
        date_range: DateRange,
        page_size: int,
    ) -> AsyncIterator[list[Message]]:
        """Yield pages of messages matching the filter and date range."""
        ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""
        ...


@runtime_checkable
class SummaryProvider(Protocol):
    async def summarize(self, message: Message) -> str:
        """Return a short summary of ``message``."""
        ...
