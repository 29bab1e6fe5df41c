"""Unit tests for data models."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from client_reports.models import (
    Client,
    DateRange,
    Message,
    ProcessClientEmailsParams,
    TaskStatus,
    task_params_adapter,
)


class TestMessage:
    """Test suite for Message model."""

    def test_addresses_are_normalized(self) -> None:
        message = Message(
            id="m1",
            sender="Alice <Alice@Acme.com>",
            recipient="ME@MyCorp.com",
            cc=["Bob <bob@Acme.com>", ""],
            date=datetime(2025, 1, 1, 9, 0),
        )

        assert message.sender == "alice@acme.com"
        assert message.recipient == "me@mycorp.com"
        assert message.cc == ["bob@acme.com"]
        assert message.bcc is None
        assert message.recipients == ["me@mycorp.com", "bob@acme.com"]

    def test_naive_date_is_treated_as_utc(self) -> None:
        message = Message(id="m1", date=datetime(2025, 1, 1, 9, 0))

        assert message.date.tzinfo is not None
        assert message.date.utcoffset() == timedelta(0)

    def test_processed_flag_follows_embedding(self) -> None:
        plain = Message(id="m1", date=datetime(2025, 1, 1), processed_for_vector=True)
        embedded = Message(id="m2", date=datetime(2025, 1, 1), embedding=[0.1, 0.2])

        assert plain.processed_for_vector is False
        assert embedded.processed_for_vector is True
        assert plain.needs_enrichment is True

    def test_retrieval_annotations_are_not_serialized(self) -> None:
        message = Message(id="m1", date=datetime(2025, 1, 1), similarity=0.9)

        assert "similarity" not in message.model_dump()
        assert "match_kind" not in message.model_dump()


class TestClient:
    """Test suite for Client model."""

    def test_domains_and_emails_are_normalized(self) -> None:
        client = Client(id="c1", name="Acme", domains=["@Acme", "acme.com"], emails=["Bob <BOB@acme.com>"])

        assert client.domains == ["acme.com"]
        assert client.emails == ["bob@acme.com"]


class TestDateRange:
    """Test suite for DateRange model."""

    def test_dates_expand_to_whole_days(self) -> None:
        rng = DateRange(start=date(2025, 1, 1), end="2025-01-31")

        assert rng.start == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert rng.end.date() == date(2025, 1, 31)
        assert rng.contains(datetime(2025, 1, 31, 23, 59, 59, tzinfo=timezone.utc))
        assert not rng.contains(datetime(2025, 2, 1, tzinfo=timezone.utc))

    def test_start_after_end_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DateRange(start="2025-02-01", end="2025-01-01")

    def test_same_day_range_is_allowed(self) -> None:
        rng = DateRange(start="2025-01-01", end="2025-01-01")

        assert rng.contains(datetime(2025, 1, 1, 12, tzinfo=timezone.utc))


class TestTaskParams:
    """Test suite for task parameter validation."""

    def test_discriminated_by_type(self) -> None:
        params = task_params_adapter.validate_python(
            {
                "type": "process_client_emails",
                "client_id": "c1",
                "start": "2025-01-01T00:00:00Z",
                "end": "2025-01-31T23:59:59Z",
            }
        )

        assert isinstance(params, ProcessClientEmailsParams)
        assert params.domains == []

    def test_non_positive_limit_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            task_params_adapter.validate_python({"type": "generate_embeddings", "limit": 0})

    def test_terminal_statuses(self) -> None:
        assert TaskStatus.COMPLETED.is_terminal
        assert TaskStatus.FAILED.is_terminal
        assert not TaskStatus.PENDING.is_terminal
        assert not TaskStatus.PROCESSING.is_terminal
