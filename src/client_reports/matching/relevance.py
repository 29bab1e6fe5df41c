"""Decide which stored messages belong to a client.

Rules, applied to every address role (from, to, cc, bcc):

- an address whose domain equals a client domain, or is a subdomain of it;
- an address equal to a configured client email.

When the local user's address is known, matches are also classified as
outbound (user -> client), inbound (client -> user), or multi-party (user and
client are both only recipients). Multi-party messages are kept; they are
only lower-confidence.

The same rules exist twice: as parameterized SQL for the store, and as
:func:`message_matches` for messages that arrive from a mail provider.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from client_reports.addresses import (
    address_matches_domain,
    expand_domains,
    normalize_email,
    normalize_emails,
)
from client_reports.models import DateRange, MatchKind, Message
from client_reports.store.query import (
    FALSE,
    TRUE,
    Predicate,
    all_of,
    any_of,
    contains_ci,
    escape_like,
)
from client_reports.store.repository import MessageRepository, to_epoch_ms

logger = structlog.get_logger()


@dataclass(frozen=True)
class MatchCriteria:
    """Normalized client addresses plus the local user's own address."""

    domains: tuple[str, ...] = ()
    emails: tuple[str, ...] = ()
    user_email: str | None = None

    @classmethod
    def build(
        cls,
        domains: Iterable[str] = (),
        emails: Iterable[str] = (),
        user_email: str | None = None,
    ) -> MatchCriteria:
        """Normalize inputs and derive domains from emails."""

        email_list = normalize_emails(emails)
        return cls(
            domains=tuple(expand_domains(domains, email_list)),
            emails=tuple(email_list),
            user_email=normalize_email(user_email) or None,
        )

    @property
    def is_empty(self) -> bool:
        return not self.domains and not self.emails

    def is_client_address(self, address: str | None) -> bool:
        addr = normalize_email(address)
        if not addr:
            return False
        if addr in self.emails:
            return True
        return any(address_matches_domain(addr, d) for d in self.domains)


def date_range_predicate(date_range: DateRange) -> Predicate:
    return Predicate(
        "date_ms BETWEEN ? AND ?",
        (to_epoch_ms(date_range.start), to_epoch_ms(date_range.end)),
    )


def keyword_predicate(keyword: str | None) -> Predicate:
    if keyword is None or not keyword.strip():
        return TRUE
    needle = keyword.strip()
    return any_of(contains_ci("subject", needle), contains_ci("body", needle))


def _domain_sql(expr: str) -> str:
    domain = f"lower(substr({expr}, instr({expr}, '@') + 1))"
    return f"(instr({expr}, '@') > 0 AND ({domain} = ? OR {domain} LIKE ? ESCAPE '\\'))"


def _domain_params(domain: str) -> tuple[str, str]:
    return (domain, f"%.{escape_like(domain)}")


def _in_list(column: str, condition: str, params: tuple[str, ...]) -> Predicate:
    return Predicate(
        f"EXISTS (SELECT 1 FROM json_each({column}) WHERE {condition})",
        params,
    )


def address_predicate(criteria: MatchCriteria, *, with_cc_bcc: bool) -> Predicate:
    """Build the address part of the relevance filter.

    Args:
        criteria: Normalized client addresses.
        with_cc_bcc: Whether the store has cc/bcc columns.

    Returns:
        A predicate true for messages with a client address in any role.
        Empty criteria match everything.
    """

    if criteria.is_empty:
        return TRUE

    clauses: list[Predicate] = []
    for domain in criteria.domains:
        params = _domain_params(domain)
        clauses.append(Predicate(_domain_sql("sender"), params))
        clauses.append(Predicate(_domain_sql("recipient"), params))
        if with_cc_bcc:
            clauses.append(_in_list("cc", _domain_sql("value"), params))
            clauses.append(_in_list("bcc", _domain_sql("value"), params))

    for email in criteria.emails:
        clauses.append(Predicate("lower(sender) = ?", (email,)))
        clauses.append(Predicate("lower(recipient) = ?", (email,)))
        if with_cc_bcc:
            clauses.append(_in_list("cc", "lower(value) = ?", (email,)))
            clauses.append(_in_list("bcc", "lower(value) = ?", (email,)))

    return any_of(*clauses) if clauses else FALSE


def message_matches(message: Message, criteria: MatchCriteria) -> bool:
    """In-memory equivalent of :func:`address_predicate`."""

    if criteria.is_empty:
        return True
    return any(criteria.is_client_address(addr) for addr in message.addresses)


def classify_message(message: Message, criteria: MatchCriteria) -> MatchKind | None:
    """Classify how a matching message relates the user to the client.

    Returns:
        The match kind, or None when no client address appears.
    """

    client_sender = criteria.is_client_address(message.sender)
    client_recipient = any(criteria.is_client_address(a) for a in message.recipients)
    if not client_sender and not client_recipient:
        return None

    user = criteria.user_email
    if user:
        user_is_sender = message.sender == user
        user_is_recipient = user in message.recipients
        if user_is_sender and client_recipient:
            return MatchKind.OUTBOUND
        if user_is_recipient and client_sender:
            return MatchKind.INBOUND
        if user_is_recipient and client_recipient and not user_is_sender and not client_sender:
            return MatchKind.MULTI_PARTY

    return MatchKind.DIRECT


class RelevanceMatcher:
    """Run relevance queries against the message store."""

    def __init__(self, store: MessageRepository) -> None:
        self._store = store

    def build_predicate(
        self,
        criteria: MatchCriteria,
        date_range: DateRange | None = None,
        *,
        keyword: str | None = None,
        with_cc_bcc: bool | None = None,
    ) -> Predicate:
        """Combine address, date and keyword filters into one predicate."""

        if with_cc_bcc is None:
            with_cc_bcc = self._store.supports_cc_bcc()
        return all_of(
            date_range_predicate(date_range) if date_range is not None else TRUE,
            address_predicate(criteria, with_cc_bcc=with_cc_bcc),
            keyword_predicate(keyword),
        )

    def find_sync(
        self,
        criteria: MatchCriteria,
        date_range: DateRange,
        *,
        keyword: str | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        with_cc_bcc = self._store.supports_cc_bcc()
        if not with_cc_bcc:
            logger.warning("relevance_cc_bcc_unavailable", db_path=str(self._store.db_path))

        predicate = self.build_predicate(
            criteria, date_range, keyword=keyword, with_cc_bcc=with_cc_bcc
        )
        messages = self._store.query(predicate, limit=limit)
        for message in messages:
            message.match_kind = classify_message(message, criteria)

        logger.info(
            "relevance_query_completed",
            domains=list(criteria.domains),
            emails=list(criteria.emails),
            keyword=keyword,
            matched=len(messages),
        )
        return messages

    async def find(
        self,
        criteria: MatchCriteria,
        date_range: DateRange,
        *,
        keyword: str | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Return relevant stored messages, newest first.

        Args:
            criteria: Normalized client addresses.
            date_range: Inclusive date range.
            keyword: Optional case-insensitive substring for subject or body.
            limit: Optional row cap.

        Returns:
            Matching messages with ``match_kind`` set.
        """

        return await asyncio.to_thread(
            self.find_sync, criteria, date_range, keyword=keyword, limit=limit
        )
