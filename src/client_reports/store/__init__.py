"""Local message and client store.

This package holds the SQLite repositories and the parameterized predicate
builder used to query them.
"""

from .query import Predicate, all_of, any_of
from .repository import ClientRepository, MessageRepository

__all__ = ["ClientRepository", "MessageRepository", "Predicate", "all_of", "any_of"]
