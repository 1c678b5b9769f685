"""
prism.search_video_transcripts — Semantic search across transcript chunks.

Same ranking as search_rules, over the store's transcript segments.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from prism_mcp.context import ToolContext
from prism_mcp.mcp_base import MCPResult, MCPTool
from prism_mcp.similarity import extract_snippet, top_k


class Params(BaseModel):
    """Parameters for search_video_transcripts."""

    query: str = Field(description="What to look for in the video transcripts")
    k: int = Field(default=5, ge=0, le=50, description="Maximum number of results")


class TranscriptMatch(BaseModel):
    video_id: str
    video_title: str
    start: float | None
    end: float | None
    similarity: float
    snippet: str


class SearchVideoTranscripts(MCPTool[Params]):
    """Rank transcript segments by semantic similarity to a query."""

    name = "search_video_transcripts"
    description = (
        "Semantic search over video transcripts. Returns matching segments with "
        "their video, timestamps and a short snippet."
    )

    async def execute(self, params: Params, ctx: ToolContext) -> MCPResult:
        chunks = await ctx.repository.list_transcript_chunks()
        if params.k == 0 or not any(c.embedding for c in chunks):
            return MCPResult.json([])

        query_vector = await ctx.require_embedder().embed(params.query)

        return MCPResult.json(
            [
                TranscriptMatch(
                    video_id=r.item.video_id,
                    video_title=r.item.video_title,
                    start=r.item.start,
                    end=r.item.end,
                    similarity=round(r.similarity, 6),
                    snippet=extract_snippet(r.item.text),
                )
                for r in top_k(query_vector, chunks, params.k)
            ]
        )
