"""Unit tests for the command-line interface."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from client_reports.cli import main
from client_reports.config import get_settings
from client_reports.models import Message
from client_reports.store import ClientRepository, MessageRepository


@pytest.fixture
def db_path(tmp_path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "cli.sqlite3"
    monkeypatch.setenv("CLIENT_REPORTS_DB_PATH", str(path))
    monkeypatch.setenv("CLIENT_REPORTS_LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    yield path
    get_settings.cache_clear()


def test_db_init_creates_schema(db_path, capsys) -> None:
    assert main(["db", "init"]) == 0

    assert db_path.exists()
    assert "0 messages" in capsys.readouterr().out


def test_clients_add_normalizes_addresses(db_path, capsys) -> None:
    code = main(["clients", "add", "--id", "acme", "--name", "Acme", "--domain", "@ACME", "--email", "Bob <bob@acme.com>"])

    assert code == 0
    client = ClientRepository(db_path).get_client("acme")
    assert client is not None
    assert client.domains == ["acme.com"]
    assert client.emails == ["bob@acme.com"]

    assert main(["clients", "list"]) == 0
    assert "acme\tAcme\tacme.com\tbob@acme.com" in capsys.readouterr().out


def test_fetch_prints_store_results(db_path, capsys) -> None:
    main(["clients", "add", "--id", "acme", "--domain", "acme.com"])
    store = MessageRepository(db_path)
    store.insert_if_absent(
        [
            Message(
                id="m1",
                subject="Kickoff",
                sender="alice@acme.com",
                recipient="me@mycorp.com",
                date=datetime(2025, 1, 10, tzinfo=timezone.utc),
                body="See you Monday",
            )
        ]
    )
    capsys.readouterr()

    code = main(
        [
            "fetch",
            "--client-id",
            "acme",
            "--start",
            "2025-01-01",
            "--end",
            "2025-01-31",
            "--no-provider",
            "--no-enrich",
        ]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "alice@acme.com\tKickoff" in out
    assert "1 messages; from_provider=False semantic_used=False" in out


def test_fetch_with_bad_range_reports_error(db_path, capsys) -> None:
    main(["clients", "add", "--id", "acme", "--domain", "acme.com"])

    code = main(["fetch", "--client-id", "acme", "--start", "2025-02-01", "--end", "2025-01-01", "--no-provider"])

    assert code == 1
    assert "Error:" in capsys.readouterr().err


def test_fetch_unknown_client_reports_error(db_path, capsys) -> None:
    code = main(["fetch", "--client-id", "ghost", "--start", "2025-01-01", "--end", "2025-01-31", "--no-provider"])

    assert code == 1
    assert "Unknown client" in capsys.readouterr().err
