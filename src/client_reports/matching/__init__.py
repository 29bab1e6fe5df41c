"""Client relevance matching."""

from .relevance import MatchCriteria, RelevanceMatcher, classify_message, message_matches

__all__ = ["MatchCriteria", "RelevanceMatcher", "classify_message", "message_matches"]
