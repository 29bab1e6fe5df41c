"""Gmail-backed mail provider."""

from .client import GmailClient, build_search_query
from .parsing import gmail_to_message

__all__ = ["GmailClient", "build_search_query", "gmail_to_message"]
