"""
Tests for the embedding client against a local aiohttp endpoint.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from prism_mcp.config import ServerSettings
from prism_mcp.embeddings import (
    EmbeddingClient,
    deserialize_embedding,
    parse_embedding_response,
    serialize_embedding,
)
from prism_mcp.errors import ConfigurationError, InvalidArgumentError, UpstreamError


class FakeEndpoint:
    """Records requests; routes select the behaviour under test."""

    def __init__(self) -> None:
        self.requests: list[tuple[dict[str, str], Any]] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/embeddings", self.ok)
        app.router.add_post("/error", self.error)
        app.router.add_post("/malformed", self.malformed)
        app.router.add_post("/not-json", self.not_json)
        app.router.add_post("/slow", self.slow)
        return app

    async def _record(self, request: web.Request) -> None:
        self.requests.append((dict(request.headers), await request.json()))

    async def ok(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.json_response({"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    async def error(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.Response(status=500, text="upstream exploded")

    async def malformed(self, request: web.Request) -> web.Response:
        await self._record(request)
        return web.json_response({"data": []})

    async def not_json(self, request: web.Request) -> web.Response:
        return web.Response(text="<html>nope</html>")

    async def slow(self, request: web.Request) -> web.Response:
        await asyncio.sleep(1)
        return web.json_response({"data": [{"embedding": [1.0]}]})


@pytest.fixture()
async def endpoint() -> AsyncIterator[tuple[FakeEndpoint, TestServer]]:
    fake = FakeEndpoint()
    async with TestServer(fake.app()) as srv:
        yield fake, srv


class TestEmbeddingClient:
    async def test_embed_returns_vector(self, endpoint: tuple[FakeEndpoint, TestServer]) -> None:
        fake, srv = endpoint
        client = EmbeddingClient(str(srv.make_url("/embeddings")), "secret", model="test-model")
        try:
            vector = await client.embed("validate form input")
        finally:
            await client.close()

        assert vector == [0.1, 0.2, 0.3]
        headers, body = fake.requests[0]
        assert body == {"model": "test-model", "input": "validate form input"}
        assert headers["Authorization"] == "Bearer secret"

    async def test_non_200_raises_upstream_error(
        self, endpoint: tuple[FakeEndpoint, TestServer]
    ) -> None:
        _, srv = endpoint
        client = EmbeddingClient(str(srv.make_url("/error")), "secret")
        try:
            with pytest.raises(UpstreamError, match="500"):
                await client.embed("query")
        finally:
            await client.close()

    async def test_malformed_payload(self, endpoint: tuple[FakeEndpoint, TestServer]) -> None:
        _, srv = endpoint
        client = EmbeddingClient(str(srv.make_url("/malformed")), "secret")
        try:
            with pytest.raises(UpstreamError, match="Malformed"):
                await client.embed("query")
        finally:
            await client.close()

    async def test_non_json_body(self, endpoint: tuple[FakeEndpoint, TestServer]) -> None:
        _, srv = endpoint
        client = EmbeddingClient(str(srv.make_url("/not-json")), "secret")
        try:
            with pytest.raises(UpstreamError):
                await client.embed("query")
        finally:
            await client.close()

    async def test_timeout(self, endpoint: tuple[FakeEndpoint, TestServer]) -> None:
        _, srv = endpoint
        client = EmbeddingClient(str(srv.make_url("/slow")), "secret", timeout=0.2)
        try:
            with pytest.raises(UpstreamError):
                await client.embed("query")
        finally:
            await client.close()

    async def test_connection_refused(self, unused_tcp_port: int) -> None:
        client = EmbeddingClient(f"http://127.0.0.1:{unused_tcp_port}/embeddings", "secret")
        try:
            with pytest.raises(UpstreamError):
                await client.embed("query")
        finally:
            await client.close()

    async def test_empty_query_rejected(self) -> None:
        client = EmbeddingClient("http://localhost/embeddings", "secret")
        with pytest.raises(InvalidArgumentError):
            await client.embed("   ")

    def test_missing_configuration(self) -> None:
        with pytest.raises(ConfigurationError):
            EmbeddingClient(None, "secret")
        with pytest.raises(ConfigurationError):
            EmbeddingClient("http://localhost/embeddings", "")

    def test_from_settings_without_endpoint(self, tmp_path: Any) -> None:
        settings = ServerSettings(rules_cache=tmp_path / "rules.json")
        with pytest.raises(ConfigurationError):
            EmbeddingClient.from_settings(settings)

    def test_azure_host_uses_api_key_header(self) -> None:
        client = EmbeddingClient(
            "https://example.openai.azure.com/openai/deployments/emb/embeddings", "k"
        )
        headers = client._headers()
        assert headers["api-key"] == "k"
        assert "Authorization" not in headers


class TestParseEmbeddingResponse:
    def test_valid(self) -> None:
        assert parse_embedding_response({"data": [{"embedding": [1, 2.5]}]}) == [1.0, 2.5]

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"data": []},
            {"data": [{}]},
            {"data": [{"embedding": []}]},
            {"data": [{"embedding": ["a", "b"]}]},
            {"data": [{"embedding": [True, 1.0]}]},
            None,
        ],
    )
    def test_malformed(self, payload: Any) -> None:
        with pytest.raises(UpstreamError):
            parse_embedding_response(payload)


class TestSerialization:
    def test_blob_is_float64(self) -> None:
        blob = serialize_embedding([0.5, -1.25, 3.0])
        assert len(blob) == 24
        assert deserialize_embedding(blob) == [0.5, -1.25, 3.0]

    def test_corrupt_blob(self) -> None:
        with pytest.raises(ValueError):
            deserialize_embedding(b"\x00" * 7)
