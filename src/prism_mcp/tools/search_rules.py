"""
prism.search_rules — Semantic search across rule content.

Embeds the query, ranks every embedded rule by cosine similarity and
returns the top-k with a short snippet of each.

Rules without an embedding never appear in results.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from prism_mcp.context import ToolContext
from prism_mcp.mcp_base import MCPResult, MCPTool
from prism_mcp.similarity import extract_snippet, top_k

_logger = logging.getLogger("prism.tools.search_rules")

# ─── Params / Result ─────────────────────────────────────────────────────────


class Params(BaseModel):
    """Parameters for search_rules."""

    query: str = Field(description="Natural-language description of what you are looking for")
    k: int = Field(default=5, ge=0, le=50, description="Maximum number of results")


class RuleMatch(BaseModel):
    """A single search hit."""

    slug: str
    category: str
    name: str
    similarity: float
    snippet: str


# ─── Tool ─────────────────────────────────────────────────────────────────────


class SearchRules(MCPTool[Params]):
    """Rank rules by semantic similarity to a query."""

    name = "search_rules"
    description = (
        "Semantic search over architectural rules. Returns the most relevant rules "
        "with a similarity score and a short snippet."
    )

    async def execute(self, params: Params, ctx: ToolContext) -> MCPResult:
        rules = await ctx.repository.list_all()
        # Nothing to rank: answer without touching the embedding endpoint
        if params.k == 0 or not any(r.embedding for r in rules):
            return MCPResult.json([])

        query_vector = await ctx.require_embedder().embed(params.query)

        ranked = top_k(query_vector, rules, params.k)
        _logger.debug("search_rules: %d of %d rules ranked", len(ranked), len(rules))

        return MCPResult.json(
            [
                RuleMatch(
                    slug=r.item.slug,
                    category=r.item.category,
                    name=r.item.title,
                    similarity=round(r.similarity, 6),
                    snippet=extract_snippet(r.item.content),
                )
                for r in ranked
            ]
        )
