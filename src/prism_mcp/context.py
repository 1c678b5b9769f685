"""Dependencies handed to every tool call."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from prism_mcp.embeddings import Embedder
from prism_mcp.errors import ConfigurationError
from prism_mcp.repository import RuleRepository

_logger = logging.getLogger("prism.context")


@dataclass
class ToolContext:
    """Repository and (optional) embedder shared by all sessions of a server."""

    repository: RuleRepository
    embedder: Embedder | None = None
    # Why the embedder is missing, reported on first use by the search tools
    embedder_error: str | None = None

    def require_embedder(self) -> Embedder:
        if self.embedder is None:
            raise ConfigurationError(
                self.embedder_error
                or "Semantic search is not configured. Set PRISM_EMBEDDING_ENDPOINT "
                "and PRISM_EMBEDDING_API_KEY."
            )
        return self.embedder

    async def aclose(self) -> None:
        close = getattr(self.embedder, "close", None)
        if close is not None:
            await close()
        await self.repository.close()
        _logger.debug("Tool context closed")
