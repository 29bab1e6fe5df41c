"""SQLite-backed store for messages and clients.

Messages are inserted when first observed and enriched later (summary,
embedding). Nothing here deletes messages. Every dynamic value reaches SQLite
as a bound parameter.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from client_reports.models import Client, Message
from client_reports.store.query import TRUE, Predicate

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

_ID_CHUNK = 100

_BASE_COLUMNS = (
    "id",
    "subject",
    "sender",
    "recipient",
    "date_ms",
    "date_iso",
    "body",
    "summary",
    "labels",
    "embedding",
    "processed_for_vector",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class _SQLiteRepository:
    def __init__(self, db_path: Path) -> None:
        """Create a repository.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()


class MessageRepository(_SQLiteRepository):
    """Repository for storing, enriching and querying messages."""

    def initialize(self) -> None:
        """Create missing tables.

        An existing ``messages`` table is left untouched, so installations
        created before cc/bcc were tracked keep working without them.
        """

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is not None and current_version != _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

            self._create_schema_v1(conn)
            if current_version is None:
                self._set_schema_version(conn, _SCHEMA_VERSION)
                logger.info("message_store_schema_created", version=_SCHEMA_VERSION)
            conn.commit()

    def has_columns(self, *names: str) -> bool:
        """Report whether the ``messages`` table has every named column."""

        with self._connect() as conn:
            rows = conn.execute("PRAGMA table_info(messages)").fetchall()
        present = {row["name"] for row in rows}
        return all(name in present for name in names)

    def supports_cc_bcc(self) -> bool:
        return self.has_columns("cc", "bcc")

    def query(
        self,
        predicate: Predicate = TRUE,
        *,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[Message]:
        """Return messages matching a predicate ordered by date.

        Args:
            predicate: Parameterized WHERE fragment.
            limit: Max rows.
            newest_first: Sort by date descending (ascending otherwise).

        Returns:
            Matching messages.
        """

        with_cc_bcc = self.supports_cc_bcc()
        columns = ", ".join(_BASE_COLUMNS + (("cc", "bcc") if with_cc_bcc else ()))
        direction = "DESC" if newest_first else "ASC"
        sql = (
            f"SELECT {columns} FROM messages WHERE {predicate.sql} "
            f"ORDER BY date_ms {direction}, id ASC"
        )
        params: tuple[Any, ...] = predicate.params
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (limit,)

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [self._row_to_message(row, with_cc_bcc) for row in rows]

    def get_many(self, ids: Iterable[str]) -> list[Message]:
        result: list[Message] = []
        for chunk in _chunks(list(ids), _ID_CHUNK):
            placeholders = ", ".join("?" for _ in chunk)
            result.extend(self.query(Predicate(f"id IN ({placeholders})", tuple(chunk))))
        return result

    def existing_ids(self, ids: Iterable[str]) -> set[str]:
        """Return the subset of ``ids`` already stored."""

        found: set[str] = set()
        with self._connect() as conn:
            for chunk in _chunks(list(ids), _ID_CHUNK):
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT id FROM messages WHERE id IN ({placeholders})",
                    tuple(chunk),
                ).fetchall()
                found.update(row["id"] for row in rows)
        return found

    def insert_if_absent(self, messages: Iterable[Message]) -> list[str]:
        """Insert messages whose id is not stored yet.

        Returns:
            IDs that were actually inserted.
        """

        batch = list(messages)
        if not batch:
            return []

        with_cc_bcc = self.supports_cc_bcc()
        columns = _BASE_COLUMNS + (("cc", "bcc") if with_cc_bcc else ()) + (
            "created_at_iso",
            "updated_at_iso",
        )
        sql = (
            f"INSERT OR IGNORE INTO messages ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)})"
        )

        now_iso = _now_iso()
        inserted: list[str] = []
        with self._connect() as conn:
            for message in batch:
                row = self._message_to_row(message, with_cc_bcc)
                row["created_at_iso"] = now_iso
                row["updated_at_iso"] = now_iso
                cursor = conn.execute(sql, row)
                if cursor.rowcount == 1:
                    inserted.append(message.id)
            conn.commit()

        if inserted:
            logger.info(
                "messages_inserted",
                inserted=len(inserted),
                skipped_existing=len(batch) - len(inserted),
            )
        return inserted

    def update_summary(self, message_id: str, summary: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE messages SET summary = ?, updated_at_iso = ? WHERE id = ?",
                (summary, _now_iso(), message_id),
            )
            conn.commit()

    def update_embedding(self, message_id: str, vector: list[float]) -> None:
        """Store an embedding and mark the message processed in one statement."""

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE messages
                SET embedding = ?, processed_for_vector = 1, updated_at_iso = ?
                WHERE id = ?
                """,
                (json.dumps(vector), _now_iso(), message_id),
            )
            conn.commit()

    def unprocessed_for_vector(self, limit: int) -> list[Message]:
        return self.query(
            Predicate("(processed_for_vector = 0 OR embedding IS NULL)"),
            limit=limit,
        )

    def missing_summary(self, limit: int) -> list[Message]:
        return self.query(Predicate("(summary IS NULL OR summary = '')"), limit=limit)

    def count(self, predicate: Predicate = TRUE) -> int:
        with self._connect() as conn:
            (total,) = conn.execute(
                f"SELECT COUNT(*) FROM messages WHERE {predicate.sql}",
                predicate.params,
            ).fetchone()
        return int(total or 0)

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                subject TEXT NOT NULL DEFAULT '',
                sender TEXT NOT NULL DEFAULT '',
                recipient TEXT NOT NULL DEFAULT '',
                cc TEXT,
                bcc TEXT,
                date_ms INTEGER NOT NULL,
                date_iso TEXT NOT NULL,
                body TEXT NOT NULL DEFAULT '',
                summary TEXT,
                labels TEXT,
                embedding TEXT,
                processed_for_vector INTEGER NOT NULL DEFAULT 0,
                created_at_iso TEXT,
                updated_at_iso TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_messages_date_ms
                ON messages(date_ms);

            CREATE INDEX IF NOT EXISTS idx_messages_sender
                ON messages(sender);

            CREATE INDEX IF NOT EXISTS idx_messages_processed_for_vector
                ON messages(processed_for_vector);

            CREATE TABLE IF NOT EXISTS clients (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                domains TEXT NOT NULL DEFAULT '[]',
                emails TEXT NOT NULL DEFAULT '[]',
                updated_at_iso TEXT
            );
            """
        )

    def _message_to_row(self, message: Message, with_cc_bcc: bool) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": message.id,
            "subject": message.subject,
            "sender": message.sender,
            "recipient": message.recipient,
            "date_ms": to_epoch_ms(message.date),
            "date_iso": message.date.isoformat(),
            "body": message.body,
            "summary": message.summary,
            "labels": json.dumps(message.labels) if message.labels is not None else None,
            "embedding": json.dumps(message.embedding) if message.embedding is not None else None,
            "processed_for_vector": 1 if message.processed_for_vector else 0,
        }
        if with_cc_bcc:
            row["cc"] = json.dumps(message.cc or [])
            row["bcc"] = json.dumps(message.bcc or [])
        return row

    def _row_to_message(self, row: sqlite3.Row, with_cc_bcc: bool) -> Message:
        cc = bcc = None
        if with_cc_bcc:
            cc = json.loads(row["cc"]) if row["cc"] else None
            bcc = json.loads(row["bcc"]) if row["bcc"] else None

        return Message(
            id=row["id"],
            subject=row["subject"] or "",
            sender=row["sender"] or "",
            recipient=row["recipient"] or "",
            cc=cc,
            bcc=bcc,
            date=datetime.fromtimestamp(row["date_ms"] / 1000, tz=timezone.utc),
            body=row["body"] or "",
            summary=row["summary"],
            labels=json.loads(row["labels"]) if row["labels"] else None,
            embedding=json.loads(row["embedding"]) if row["embedding"] else None,
        )


class ClientRepository(_SQLiteRepository):
    """Read access to client definitions (plus the writes used for seeding).

    Shares the database file with :class:`MessageRepository`, which owns the
    schema.
    """

    def get_client(self, client_id: str) -> Client | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, domains, emails FROM clients WHERE id = ?",
                (client_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_client(row)

    def list_clients(self) -> list[Client]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, domains, emails FROM clients ORDER BY name, id"
            ).fetchall()
        return [self._row_to_client(row) for row in rows]

    def upsert_client(self, client: Client) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO clients (id, name, domains, emails, updated_at_iso)
                VALUES (:id, :name, :domains, :emails, :updated_at_iso)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    domains=excluded.domains,
                    emails=excluded.emails,
                    updated_at_iso=excluded.updated_at_iso
                """,
                {
                    "id": client.id,
                    "name": client.name,
                    "domains": json.dumps(client.domains),
                    "emails": json.dumps(client.emails),
                    "updated_at_iso": _now_iso(),
                },
            )
            conn.commit()

    def _row_to_client(self, row: sqlite3.Row) -> Client:
        return Client(
            id=row["id"],
            name=row["name"] or "",
            domains=json.loads(row["domains"] or "[]"),
            emails=json.loads(row["emails"] or "[]"),
        )


def _chunks(items: list[str], size: int) -> Iterator[list[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]
