"""Ollama-backed embedding and summary provider."""

from .client import OllamaClient

__all__ = ["OllamaClient"]
