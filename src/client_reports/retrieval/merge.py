"""Combine message collections from several sources."""

from __future__ import annotations

from collections.abc import Iterable

from client_reports.models import Message


def merge_messages(*collections: Iterable[Message]) -> list[Message]:
    """Concatenate collections, keeping the first message seen for each id.

    Order is preserved, so earlier collections win ties.
    """

    seen: set[str] = set()
    merged: list[Message] = []
    for collection in collections:
        for message in collection:
            if message.id in seen:
                continue
            seen.add(message.id)
            merged.append(message)
    return merged


def sort_newest_first(messages: Iterable[Message]) -> list[Message]:
    # id breaks ties so equal timestamps sort deterministically
    ordered = sorted(messages, key=lambda m: m.id)
    return sorted(ordered, key=lambda m: m.date, reverse=True)
