"""Unit tests for Ollama client."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from client_reports.exceptions import OllamaConnectionError, OllamaInferenceError, ProviderUnavailableError
from client_reports.models import Message
from client_reports.ollama import OllamaClient
from client_reports.ollama.client import build_summary_prompt


def _client(settings, handler) -> OllamaClient:
    http = httpx.AsyncClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))
    return OllamaClient(settings, http_client=http)


def _message(body: str = "Please send the signed contract.") -> Message:
    return Message(
        id="m1",
        subject="Contract",
        sender="alice@acme.com",
        recipient="me@mycorp.com",
        date=datetime(2025, 1, 15, tzinfo=timezone.utc),
        body=body,
    )


class TestOllamaClient:
    """Test suite for OllamaClient class."""

    def test_ollama_client_initialization(self, settings) -> None:
        """Test that Ollama client is properly initialized."""
        client = OllamaClient(settings)

        assert client.settings is settings
        assert str(client.http.base_url).rstrip("/") == settings.ollama_host

    @pytest.mark.asyncio
    async def test_embed_uses_embed_endpoint(self, settings) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append({"path": request.url.path, **json.loads(request.content)})
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]})

        client = _client(settings, handler)

        vector = await client.embed("hello")

        assert vector == [0.1, 0.2, 0.3]
        assert seen == [{"path": "/api/embed", "model": settings.ollama_embedding_model, "input": "hello"}]

    @pytest.mark.asyncio
    async def test_embed_falls_back_to_legacy_endpoint(self, settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/embed":
                return httpx.Response(404, json={"error": "not found"})
            assert json.loads(request.content)["prompt"] == "hello"
            return httpx.Response(200, json={"embedding": [1, 2]})

        client = _client(settings, handler)

        assert await client.embed("hello") == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_summarize_returns_response_text(self, settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            assert request.url.path == "/api/generate"
            assert payload["stream"] is False
            assert "signed contract" in payload["prompt"]
            return httpx.Response(200, json={"response": "  Alice asks for the contract.  "})

        client = _client(settings, handler)

        assert await client.summarize(_message()) == "Alice asks for the contract."

    @pytest.mark.asyncio
    async def test_server_error_raises_inference_error(self, settings) -> None:
        client = _client(settings, lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(OllamaInferenceError):
            await client.summarize(_message())

    @pytest.mark.asyncio
    async def test_non_numeric_embedding_raises_inference_error(self, settings) -> None:
        client = _client(
            settings, lambda request: httpx.Response(200, json={"embeddings": [[0.1, None, "x"]]})
        )

        with pytest.raises(OllamaInferenceError):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_connection_failure_is_provider_unavailable(self, settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(settings, handler)

        with pytest.raises(OllamaConnectionError) as excinfo:
            await client.embed("hello")
        assert isinstance(excinfo.value, ProviderUnavailableError)


def test_summary_prompt_truncates_long_bodies() -> None:
    prompt = build_summary_prompt(_message(body="y" * 5000), max_body_chars=4000)

    assert "y" * 4000 + "... [truncated]" in prompt
    assert "y" * 4001 not in prompt
