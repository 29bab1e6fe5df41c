"""Helpers for parsing Gmail API messages into internal models."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterator
from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any

from client_reports.models import Message


def _header_map(message: dict[str, Any]) -> dict[str, str]:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            # Gmail can include duplicates; keep the first.
            result.setdefault(name.lower(), value)
    return result


def _parse_address_list(value: str | None) -> list[str]:
    if not value:
        return []
    # getaddresses returns list[(name, addr)]
    return [addr for _, addr in getaddresses([value]) if addr]


def _parse_date(message: dict[str, Any], headers: dict[str, str]) -> datetime | None:
    internal_date = message.get("internalDate")
    if internal_date is not None:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass

    raw = headers.get("date")
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw)
    except (TypeError, ValueError, OverflowError):
        return None


def _walk_parts(part: dict[str, Any]) -> Iterator[dict[str, Any]]:
    yield part
    for child in part.get("parts") or []:
        yield from _walk_parts(child)


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def extract_plain_text(message: dict[str, Any]) -> str:
    """Return the first ``text/plain`` body, or the snippet when there is none."""

    payload = message.get("payload") or {}
    for part in _walk_parts(payload):
        if part.get("mimeType") != "text/plain":
            continue
        data = (part.get("body") or {}).get("data")
        if data:
            text = _decode_body(data)
            if text:
                return text
    return str(message.get("snippet") or "")


def gmail_to_message(message: dict[str, Any]) -> Message | None:
    """Convert a Gmail API message (format=full) to a :class:`Message`.

    Args:
        message: Gmail API message dict.

    Returns:
        The parsed message, or None when it has no id or no usable date.
    """

    message_id = str(message.get("id") or "")
    headers = _header_map(message)
    date = _parse_date(message, headers)
    if not message_id or date is None:
        return None

    from_addrs = _parse_address_list(headers.get("from"))
    to_addrs = _parse_address_list(headers.get("to"))

    label_ids = message.get("labelIds") or []
    if not isinstance(label_ids, list):
        label_ids = []

    # Only the first "to" address is the primary recipient; the rest count as cc.
    return Message(
        id=message_id,
        subject=headers.get("subject") or "",
        sender=from_addrs[0] if from_addrs else "",
        recipient=to_addrs[0] if to_addrs else "",
        cc=to_addrs[1:] + _parse_address_list(headers.get("cc")),
        bcc=_parse_address_list(headers.get("bcc")),
        date=date,
        body=extract_plain_text(message),
        labels=[str(x) for x in label_ids if isinstance(x, str)],
    )
