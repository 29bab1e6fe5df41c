"""Canonical forms for domains and email addresses.

Every domain is normalized before it is stored and before it is compared, so
case and ``@``-prefix variance never cause a missed match.
"""

from __future__ import annotations

from collections.abc import Iterable
from email.utils import parseaddr


def normalize_domain(domain: str) -> str:
    """Canonicalize a client domain.

    Strips a leading ``@``, appends ``.com`` to bare names other than
    ``localhost`` and lower-cases the result. The empty string becomes
    ``".com"``; callers filter blank input before it gets here.

    Args:
        domain: Raw domain as typed by a user.

    Returns:
        The normalized domain.
    """

    normalized = domain[1:] if domain.startswith("@") else domain

    if "." not in normalized and normalized != "localhost":
        normalized = f"{normalized}.com"

    return normalized.lower()


def normalize_email(value: str | None) -> str:
    """Return the bare, lower-cased address from a raw header value.

    ``"Bob <Bob@Acme.com>"`` becomes ``"bob@acme.com"``. Values that do not
    parse as an address are stripped and lower-cased as they are.
    """

    if not value:
        return ""
    _, addr = parseaddr(value)
    return (addr or value).strip().lower()


def domain_of(address: str | None) -> str | None:
    """Return the domain part of an address, or None when there is no ``@``."""

    addr = normalize_email(address)
    if "@" not in addr:
        return None
    domain = addr.rsplit("@", 1)[1]
    return domain or None


def is_same_or_subdomain(domain: str, parent: str) -> bool:
    """Whether ``domain`` equals ``parent`` or is one of its subdomains."""

    return domain == parent or domain.endswith(f".{parent}")


def address_matches_domain(address: str | None, domain: str) -> bool:
    found = domain_of(address)
    return found is not None and is_same_or_subdomain(found, domain)


def expand_domains(domains: Iterable[str], emails: Iterable[str] = ()) -> list[str]:
    """Normalize client domains and derive extra ones from client emails.

    A client configured as ``["acme.com"]`` plus ``["bob@otherco.com"]``
    matches all of ``otherco.com`` too. An email whose domain is already
    covered by a configured domain (same or subdomain) adds nothing.

    Args:
        domains: Raw configured domains; blank entries are ignored.
        emails: Raw configured email addresses.

    Returns:
        Normalized domains in first-seen order, without duplicates.
    """

    result: list[str] = []
    for raw in domains:
        if not raw or not raw.strip():
            continue
        domain = normalize_domain(raw.strip())
        if domain not in result:
            result.append(domain)

    for email in emails:
        derived = domain_of(email)
        if derived is None:
            continue
        if any(is_same_or_subdomain(derived, existing) for existing in result):
            continue
        result.append(derived)

    return result


def normalize_emails(emails: Iterable[str]) -> list[str]:
    result: list[str] = []
    for raw in emails:
        addr = normalize_email(raw)
        if addr and addr not in result:
            result.append(addr)
    return result
