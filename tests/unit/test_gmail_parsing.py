"""Unit tests for Gmail message parsing helpers."""

from datetime import datetime, timezone

from client_reports.gmail.parsing import extract_plain_text, gmail_to_message


def test_gmail_to_message_parses_basic_fields(sample_email_data) -> None:
    message = gmail_to_message(sample_email_data)

    assert message is not None
    assert message.id == "msg123456"
    assert message.subject == "Q4 report"
    assert message.sender == "alice@acme.com"
    assert message.recipient == "me@mycorp.com"
    assert message.cc == ["bob@acme.com", "carol@partner.org"]
    assert message.bcc == []
    assert message.date == datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert message.body == "Hello from Acme"
    assert message.labels == ["INBOX", "UNREAD"]


def test_date_header_is_used_without_internal_date(sample_email_data) -> None:
    del sample_email_data["internalDate"]
    sample_email_data["payload"]["headers"][-1]["value"] = "Thu, 16 Jan 2025 09:30:00 +0100"

    message = gmail_to_message(sample_email_data)

    assert message.date == datetime(2025, 1, 16, 8, 30, tzinfo=timezone.utc)


def test_message_without_date_is_skipped(sample_email_data) -> None:
    del sample_email_data["internalDate"]
    sample_email_data["payload"]["headers"] = [
        h for h in sample_email_data["payload"]["headers"] if h["name"] != "Date"
    ]

    assert gmail_to_message(sample_email_data) is None


def test_snippet_is_used_when_there_is_no_plain_text_part(sample_email_data) -> None:
    sample_email_data["payload"]["parts"] = [sample_email_data["payload"]["parts"][1]]

    assert extract_plain_text(sample_email_data) == "Quarterly numbers attached"


def test_nested_parts_are_searched() -> None:
    raw = {
        "payload": {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [{"mimeType": "text/plain", "body": {"data": "SGk"}}],
                }
            ],
        }
    }

    assert extract_plain_text(raw) == "Hi"
