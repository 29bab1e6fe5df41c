"""Client Reports - correspondence retrieval for client reporting.

This package gathers a user's correspondence with configured clients from a
local store and a mail provider, decides which messages belong to which
client, and enriches them with summaries and embeddings in the background.
"""

__version__ = "0.1.0"

from client_reports.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
