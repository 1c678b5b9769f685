"""
Embedding client for the Prism rule server.

Wraps an OpenAI-compatible embeddings endpoint (OpenAI or Azure OpenAI):
``POST {model, input}`` -> ``{data: [{embedding: [...]}]}``.  A single
failed call raises ``UpstreamError`` immediately; there are no retries.

Also provides binary (de)serialisation helpers for the SQLite store.
"""

from __future__ import annotations

import asyncio
import logging
import struct
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlparse

import aiohttp

from prism_mcp.errors import ConfigurationError, InvalidArgumentError, UpstreamError

if TYPE_CHECKING:
    from prism_mcp.config import ServerSettings

_logger = logging.getLogger("prism.embeddings")

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_TIMEOUT = 10.0
NOT_CONFIGURED = (
    "Embedding endpoint not configured. Set PRISM_EMBEDDING_ENDPOINT and "
    "PRISM_EMBEDDING_API_KEY (or AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY)."
)


class Embedder(Protocol):
    """Anything that can turn a query into a vector."""

    async def embed(self, query: str) -> list[float]: ...


# ─── Client ─────────────────────────────────────────────────────────────────


class EmbeddingClient:
    """
    Async client for a remote embedding endpoint.

    Constructed explicitly and handed to the tools that need it. The HTTP
    session is created lazily and must be released with ``close()``.
    """

    def __init__(
        self,
        endpoint: str | None,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not endpoint or not api_key:
            raise ConfigurationError(NOT_CONFIGURED)
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout
        self._api_key = api_key
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def from_settings(cls, settings: ServerSettings) -> EmbeddingClient:
        return cls(
            endpoint=settings.embedding_endpoint,
            api_key=settings.embedding_api_key,
            model=settings.embedding_model,
            timeout=settings.embedding_timeout,
        )

    def _headers(self) -> dict[str, str]:
        host = urlparse(self.endpoint).hostname or ""
        if host.endswith(".openai.azure.com"):
            return {"api-key": self._api_key, "Content-Type": "application/json"}
        return {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self._headers(),
            )
        return self._session

    async def embed(self, query: str) -> list[float]:
        """Generate the embedding vector for *query*."""
        if not query or not query.strip():
            raise InvalidArgumentError("Query must be a non-empty string")

        session = await self._get_session()
        payload = {"model": self.model, "input": query}

        try:
            async with session.post(self.endpoint, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise UpstreamError(
                        f"Embedding endpoint returned {resp.status}: {body[:200]}"
                    )
                result = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            _logger.error("Query embedding generation failed: %s", e)
            raise UpstreamError(f"Failed to generate query embedding: {e}") from e

        return parse_embedding_response(result)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def parse_embedding_response(result: Any) -> list[float]:
    """Extract ``data[0].embedding`` from an embeddings response."""
    try:
        vector = result["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as e:
        raise UpstreamError("Malformed embedding response: missing data[0].embedding") from e

    if not isinstance(vector, list) or not vector:
        raise UpstreamError("Malformed embedding response: empty embedding")
    if any(isinstance(x, bool) or not isinstance(x, (int, float)) for x in vector):
        raise UpstreamError("Malformed embedding response: non-numeric values")

    return [float(x) for x in vector]


# ─── Serialisation ───────────────────────────────────────────────────────────


def serialize_embedding(embedding: list[float]) -> bytes:
    """Pack a float list into little-endian float64 bytes."""
    return struct.pack(f"<{len(embedding)}d", *embedding)


def deserialize_embedding(data: bytes) -> list[float]:
    """Unpack bytes produced by ``serialize_embedding`` back to a float list."""
    if len(data) % 8:
        raise ValueError(f"Embedding blob length {len(data)} is not a multiple of 8")
    return list(struct.unpack(f"<{len(data) // 8}d", data))
