"""Ollama client implementation.

This module provides the embedding and summary provider backed by a local
Ollama server.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from client_reports.config import Settings
from client_reports.exceptions import OllamaConnectionError, OllamaInferenceError
from client_reports.models import Message
from client_reports.utils import truncate

logger = structlog.get_logger()


def build_summary_prompt(message: Message, max_body_chars: int) -> str:
    body = truncate(message.body, max_body_chars)

    return (
        "Summarize this email concisely:\n\n"
        f"From: {message.sender}\n"
        f"To: {message.recipient}\n"
        f"Date: {message.date.isoformat()}\n"
        f"Subject: {message.subject}\n\n"
        f"{body}\n\n"
        "Focus on the main point, any action items or requests, and key information. "
        "The summary should be 1-2 sentences. Be factual and objective."
    )


def _as_vector(values: list[Any], path: str) -> list[float]:
    try:
        return [float(x) for x in values]
    except (TypeError, ValueError) as exc:
        raise OllamaInferenceError(f"Ollama returned a non-numeric embedding from {path}") from exc


class OllamaClient:
    """Ollama client for embeddings and summaries.

    The underlying ``httpx.AsyncClient`` is created lazily; pass one in to
    share a connection pool or to inject a mock transport.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize Ollama client.

        Args:
            settings: Application settings. If None, uses default settings.
            http_client: Optional preconfigured HTTP client.
        """
        from client_reports.config import get_settings

        self.settings = settings or get_settings()
        self._http = http_client
        logger.info(
            "ollama_client_initialized",
            host=self.settings.ollama_host,
            model=self.settings.ollama_model,
            embedding_model=self.settings.ollama_embedding_model,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.settings.ollama_host.rstrip("/"),
                timeout=float(self.settings.ollama_timeout),
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def embed(self, text: str, model: Optional[str] = None) -> list[float]:
        """Embed text using Ollama.

        Tries ``/api/embed`` first and falls back to the older
        ``/api/embeddings`` endpoint when the server answers 404.

        Args:
            text: Text to embed.
            model: Embedding model. If None, uses default from settings.

        Returns:
            The embedding vector.

        Raises:
            OllamaConnectionError: If unable to connect to Ollama.
            OllamaInferenceError: If the request fails or the response is unusable.
        """
        model = model or self.settings.ollama_embedding_model
        logger.debug("embedding_text", model=model, text_length=len(text))

        response = await self._post("/api/embed", {"model": model, "input": text}, allow_404=True)
        if response is not None:
            embeddings = response.get("embeddings")
            if isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], list):
                return _as_vector(embeddings[0], "/api/embed")
            raise OllamaInferenceError("Ollama embed response missing 'embeddings'")

        legacy = await self._post("/api/embeddings", {"model": model, "prompt": text})
        assert legacy is not None
        embedding = legacy.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise OllamaInferenceError("Ollama embeddings response missing 'embedding'")
        return _as_vector(embedding, "/api/embeddings")

    async def summarize(self, message: Message, model: Optional[str] = None) -> str:
        """Summarize a message using Ollama.

        Args:
            message: The message to summarize.
            model: Model name to use. If None, uses default from settings.

        Returns:
            The summary text.

        Raises:
            OllamaConnectionError: If unable to connect to Ollama.
            OllamaInferenceError: If inference fails.
        """
        model = model or self.settings.ollama_model
        prompt = build_summary_prompt(message, self.settings.summary_max_body_chars)
        logger.debug("summarizing_message", model=model, message_id=message.id)

        response = await self._post(
            "/api/generate",
            {
                "model": model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": 0.3, "num_predict": 150},
            },
        )
        assert response is not None
        text = response.get("response")
        if not isinstance(text, str) or not text.strip():
            raise OllamaInferenceError("Ollama generate response missing 'response'")
        return text.strip()

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        allow_404: bool = False,
    ) -> dict[str, Any] | None:
        try:
            resp = await self.http.post(path, json=payload)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning("ollama_unreachable", path=path, error=str(exc))
            raise OllamaConnectionError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise OllamaConnectionError(str(exc)) from exc

        if allow_404 and resp.status_code == 404:
            return None

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "ollama_request_failed",
                path=path,
                status_code=exc.response.status_code,
            )
            raise OllamaInferenceError(
                f"Ollama request to {path} failed with status {exc.response.status_code}"
            ) from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise OllamaInferenceError(f"Ollama returned invalid JSON from {path}") from exc
        if not isinstance(data, dict):
            raise OllamaInferenceError(f"Ollama returned an unexpected payload from {path}")
        return data
