"""Hybrid retrieval for client reports."""

from .merge import merge_messages, sort_newest_first
from .orchestrator import FetchParams, FetchResult, RetrievalOrchestrator
from .sources import collect_provider_messages

__all__ = [
    "FetchParams",
    "FetchResult",
    "RetrievalOrchestrator",
    "collect_provider_messages",
    "merge_messages",
    "sort_newest_first",
]
