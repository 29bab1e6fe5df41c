"""Message, client and date-range models.

Addresses are normalized on construction so that every comparison downstream
works on bare, lower-cased forms.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from client_reports.addresses import expand_domains, normalize_email, normalize_emails


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MatchKind(str, Enum):
    """How a message relates the local user to a client."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"
    MULTI_PARTY = "multi_party"
    DIRECT = "direct"


class Message(BaseModel):
    """A single piece of correspondence."""

    id: str = Field(description="Provider-assigned unique message ID")
    subject: str = Field(default="", description="Subject line")
    sender: str = Field(default="", description="Sender address")
    recipient: str = Field(default="", description="Primary recipient address")
    cc: list[str] | None = Field(default=None, description="Cc addresses; None on legacy rows")
    bcc: list[str] | None = Field(default=None, description="Bcc addresses; None on legacy rows")
    date: datetime = Field(description="Message timestamp (UTC)")
    body: str = Field(default="", description="Plain-text body")
    summary: str | None = Field(default=None, description="Generated summary")
    labels: list[str] | None = Field(default=None, description="Provider labels")
    embedding: list[float] | None = Field(default=None, description="Embedding vector")
    processed_for_vector: bool = Field(
        default=False,
        description="True exactly when an embedding is stored",
    )

    # Set by retrieval; never persisted.
    match_kind: MatchKind | None = Field(default=None, exclude=True)
    similarity: float | None = Field(default=None, exclude=True)

    @field_validator("sender", "recipient", mode="before")
    @classmethod
    def _normalize_address(cls, v: Any) -> str:
        return normalize_email(v) if isinstance(v, str) else ""

    @field_validator("cc", "bcc", mode="before")
    @classmethod
    def _normalize_address_list(cls, v: Any) -> list[str] | None:
        if v is None:
            return None
        return [addr for addr in (normalize_email(x) for x in v) if addr]

    @field_validator("date")
    @classmethod
    def _date_to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def _sync_vector_flag(self) -> "Message":
        self.processed_for_vector = self.embedding is not None
        return self

    @property
    def recipients(self) -> list[str]:
        """Every address in a recipient role (to, cc, bcc)."""

        addrs = [self.recipient] if self.recipient else []
        addrs.extend(self.cc or [])
        addrs.extend(self.bcc or [])
        return addrs

    @property
    def addresses(self) -> list[str]:
        """Every address on the message, sender first."""

        return ([self.sender] if self.sender else []) + self.recipients

    @property
    def needs_enrichment(self) -> bool:
        return not self.summary or not self.processed_for_vector


class Client(BaseModel):
    """A correspondence counterparty."""

    id: str = Field(description="Client ID")
    name: str = Field(default="", description="Display name")
    domains: list[str] = Field(default_factory=list, description="Normalized domains")
    emails: list[str] = Field(default_factory=list, description="Normalized email addresses")

    @field_validator("domains", mode="before")
    @classmethod
    def _normalize_domains(cls, v: Any) -> list[str]:
        return expand_domains(v or [])

    @field_validator("emails", mode="before")
    @classmethod
    def _normalize_emails(cls, v: Any) -> list[str]:
        return normalize_emails(v or [])


def _coerce_day(value: Any, *, end_of_day: bool) -> Any:
    if isinstance(value, str) and len(value) == 10:
        value = date.fromisoformat(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        moment = time.max if end_of_day else time.min
        return datetime.combine(value, moment, tzinfo=timezone.utc)
    return value


class DateRange(BaseModel):
    """An inclusive ``[start, end]`` interval.

    Plain dates expand to whole UTC days.
    """

    start: datetime
    end: datetime

    @field_validator("start", mode="before")
    @classmethod
    def _start_of_day(cls, v: Any) -> Any:
        return _coerce_day(v, end_of_day=False)

    @field_validator("end", mode="before")
    @classmethod
    def _end_of_day(cls, v: Any) -> Any:
        return _coerce_day(v, end_of_day=True)

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError(f"start {self.start.isoformat()} is after end {self.end.isoformat()}")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end


class AddressFilter(BaseModel):
    """Client addresses handed to a mail provider search."""

    domains: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.domains and not self.emails
