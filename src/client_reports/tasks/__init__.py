"""Background enrichment tasks."""

from .queue import TaskQueue

__all__ = ["TaskQueue"]
