"""Unit tests for the SQLite message and client store."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

from client_reports.models import Client
from client_reports.store import ClientRepository, MessageRepository, Predicate
from client_reports.store.query import TRUE, all_of, any_of, contains_ci


def test_initialize_is_idempotent(store: MessageRepository) -> None:
    store.initialize()

    assert store.count() == 0
    assert store.supports_cc_bcc()


def test_insert_if_absent_skips_existing_ids(store: MessageRepository, make_message) -> None:
    first = store.insert_if_absent([make_message("m1"), make_message("m2")])
    second = store.insert_if_absent([make_message("m2", subject="changed"), make_message("m3")])

    assert first == ["m1", "m2"]
    assert second == ["m3"]
    assert store.count() == 3
    (m2,) = store.get_many(["m2"])
    assert m2.subject == "Subject m2"


def test_round_trip_keeps_addresses_and_dates(store: MessageRepository, make_message) -> None:
    original = make_message(
        "m1",
        cc=["Bob <Bob@Acme.com>"],
        bcc=["audit@acme.com"],
        labels=["INBOX"],
        date=datetime(2025, 1, 15, 8, 30, 15, tzinfo=timezone.utc),
    )
    store.insert_if_absent([original])

    (loaded,) = store.get_many(["m1"])

    assert loaded.cc == ["bob@acme.com"]
    assert loaded.bcc == ["audit@acme.com"]
    assert loaded.labels == ["INBOX"]
    assert loaded.date == original.date
    assert loaded.processed_for_vector is False


def test_existing_ids_handles_large_batches(store: MessageRepository, make_message) -> None:
    store.insert_if_absent([make_message(f"m{i}") for i in range(250)])

    found = store.existing_ids([f"m{i}" for i in range(0, 300, 2)])

    assert len(found) == 125
    assert "m248" in found
    assert "m250" not in found


def test_update_embedding_sets_processed_flag(store: MessageRepository, make_message) -> None:
    store.insert_if_absent([make_message("m1"), make_message("m2")])

    store.update_embedding("m1", [0.5, 0.25])

    (m1,) = store.get_many(["m1"])
    assert m1.embedding == [0.5, 0.25]
    assert m1.processed_for_vector is True
    assert [m.id for m in store.unprocessed_for_vector(10)] == ["m2"]


def test_missing_summary_includes_empty_strings(store: MessageRepository, make_message) -> None:
    store.insert_if_absent([make_message("m1"), make_message("m2", summary=""), make_message("m3")])
    store.update_summary("m3", "done")

    assert sorted(m.id for m in store.missing_summary(10)) == ["m1", "m2"]


def test_query_orders_newest_first_and_limits(store: MessageRepository, make_message) -> None:
    store.insert_if_absent(
        [
            make_message("old", date=datetime(2025, 1, 1, tzinfo=timezone.utc)),
            make_message("new", date=datetime(2025, 1, 20, tzinfo=timezone.utc)),
            make_message("mid", date=datetime(2025, 1, 10, tzinfo=timezone.utc)),
        ]
    )

    assert [m.id for m in store.query()] == ["new", "mid", "old"]
    assert [m.id for m in store.query(limit=2, newest_first=False)] == ["old", "mid"]


def test_keyword_values_are_bound_not_interpolated(store: MessageRepository, make_message) -> None:
    store.insert_if_absent(
        [
            make_message("m1", subject="50% off"),
            make_message("m2", subject="It's done"),
            make_message("m3", subject="Nothing"),
        ]
    )

    assert [m.id for m in store.query(contains_ci("subject", "50%"))] == ["m1"]
    assert [m.id for m in store.query(contains_ci("subject", "it's"))] == ["m2"]
    assert store.count() == 3


def test_predicate_combinators() -> None:
    a = Predicate("x = ?", (1,))
    b = Predicate("y = ?", (2,))

    assert all_of(TRUE, a) is a
    assert (a & b).sql == "(x = ? AND y = ?)"
    assert (a | b).params == (1, 2)
    assert any_of().sql == "1 = 0"


def test_legacy_table_without_cc_bcc(tmp_path, make_message) -> None:
    db_path = tmp_path / "legacy.sqlite3"
    conn = sqlite3.connect(db_path)
    conn.execute(
        """
        CREATE TABLE messages (
            id TEXT PRIMARY KEY,
            subject TEXT NOT NULL DEFAULT '',
            sender TEXT NOT NULL DEFAULT '',
            recipient TEXT NOT NULL DEFAULT '',
            date_ms INTEGER NOT NULL,
            date_iso TEXT NOT NULL,
            body TEXT NOT NULL DEFAULT '',
            summary TEXT,
            labels TEXT,
            embedding TEXT,
            processed_for_vector INTEGER NOT NULL DEFAULT 0,
            created_at_iso TEXT,
            updated_at_iso TEXT
        )
        """
    )
    conn.commit()
    conn.close()

    repo = MessageRepository(db_path)
    repo.initialize()

    assert not repo.supports_cc_bcc()
    repo.insert_if_absent([make_message("m1", cc=["bob@acme.com"])])
    (loaded,) = repo.query()
    assert loaded.id == "m1"
    assert loaded.cc is None


def test_client_repository_upsert_and_get(clients: ClientRepository) -> None:
    clients.upsert_client(Client(id="c1", name="Acme", domains=["ACME"], emails=[]))
    clients.upsert_client(Client(id="c1", name="Acme Corp", domains=["acme.com"], emails=["x@sub.org"]))
    clients.upsert_client(Client(id="c2", name="Beta", domains=["beta.io"]))

    client = clients.get_client("c1")

    assert client is not None
    assert client.name == "Acme Corp"
    assert client.domains == ["acme.com"]
    assert client.emails == ["x@sub.org"]
    assert clients.get_client("missing") is None
    assert [c.id for c in clients.list_clients()] == ["c1", "c2"]
