"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from client_reports.config import Settings
from client_reports.exceptions import GmailAPIError, OllamaConnectionError
from client_reports.models import AddressFilter, DateRange, Message
from client_reports.store import ClientRepository, MessageRepository


class FakeEmbeddingProvider:
    """Embeds text as keyword counts so similarity is predictable."""

    vocabulary = ("invoice", "meeting", "contract", "launch")

    def __init__(self, fail_on: str | None = None, unavailable: bool = False) -> None:
        self.fail_on = fail_on
        self.unavailable = unavailable
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.unavailable:
            raise OllamaConnectionError("embedding provider is down")
        if self.fail_on is not None and self.fail_on in text:
            raise RuntimeError(f"cannot embed text containing {self.fail_on!r}")
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.vocabulary] + [0.1]


class FakeSummaryProvider:
    def __init__(self, fail_ids: set[str] | None = None) -> None:
        self.fail_ids = fail_ids or set()
        self.calls: list[str] = []

    async def summarize(self, message: Message) -> str:
        self.calls.append(message.id)
        if message.id in self.fail_ids:
            raise RuntimeError("summary model crashed")
        return f"Summary of {message.subject}"


class FakeMailProvider:
    """Serves pre-built pages, or fails when told to."""

    def __init__(self, pages: list[list[Message]] | None = None, error: Exception | None = None) -> None:
        self.pages = pages or []
        self.error = error
        self.calls: list[tuple[AddressFilter, DateRange, int]] = []

    async def fetch_messages(
        self,
        address_filter: AddressFilter,
        date_range: DateRange,
        page_size: int,
    ) -> AsyncIterator[list[Message]]:
        self.calls.append((address_filter, date_range, page_size))
        if self.error is not None:
            raise self.error
        for page in self.pages:
            yield [m.model_copy(deep=True) for m in page]


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with no artificial delays and a temporary database."""
    return Settings(
        db_path=tmp_path / "client_reports.sqlite3",
        user_email="me@mycorp.com",
        embedding_batch_delay_seconds=0,
        summary_delay_seconds=0,
        client_batch_delay_seconds=0,
        mail_timeout=5,
        ollama_timeout=5,
        log_level="DEBUG",
    )


@pytest.fixture
def store(settings: Settings) -> MessageRepository:
    repo = MessageRepository(settings.db_path)
    repo.initialize()
    return repo


@pytest.fixture
def clients(store: MessageRepository) -> ClientRepository:
    return ClientRepository(store.db_path)


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """Build a message with sensible defaults."""

    def factory(message_id: str, **overrides: Any) -> Message:
        values: dict[str, Any] = {
            "id": message_id,
            "subject": f"Subject {message_id}",
            "sender": "alice@acme.com",
            "recipient": "me@mycorp.com",
            "cc": [],
            "bcc": [],
            "date": datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc),
            "body": f"Body of {message_id}",
        }
        values.update(overrides)
        return Message(**values)

    return factory


@pytest.fixture
def embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def summarizer() -> FakeSummaryProvider:
    return FakeSummaryProvider()


@pytest.fixture
def failing_mail_provider() -> FakeMailProvider:
    return FakeMailProvider(error=GmailAPIError("quota exceeded"))


@pytest.fixture
def sample_email_data() -> dict:
    """Provide a Gmail API message in ``full`` format."""
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "Quarterly numbers attached",
        "internalDate": "1736942400000",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": "Q4 report"},
                {"name": "From", "value": "Alice Smith <Alice@Acme.com>"},
                {"name": "To", "value": "me@mycorp.com, Bob <bob@acme.com>"},
                {"name": "Cc", "value": "carol@partner.org"},
                {"name": "Date", "value": "Wed, 15 Jan 2025 12:00:00 +0000"},
            ],
            "parts": [
                {
                    "mimeType": "text/plain",
                    # "Hello from Acme" base64url without padding
                    "body": {"data": "SGVsbG8gZnJvbSBBY21l"},
                },
                {
                    "mimeType": "text/html",
                    "body": {"data": "PGI-SGVsbG88L2I-"},
                },
            ],
        },
    }


@pytest.fixture
def make_embedder() -> type[FakeEmbeddingProvider]:
    return FakeEmbeddingProvider


@pytest.fixture
def make_summarizer() -> type[FakeSummaryProvider]:
    return FakeSummaryProvider


@pytest.fixture
def make_mail_provider() -> type[FakeMailProvider]:
    return FakeMailProvider
