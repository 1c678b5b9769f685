"""
prism.get_architectural_rules — List rules, optionally by category or tag.

Returns a JSON array of ``{slug, category}`` in priority order.  An unknown
category yields ``[]``, not an error.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from prism_mcp.context import ToolContext
from prism_mcp.mcp_base import MCPResult, MCPTool

# ─── Params / Result ─────────────────────────────────────────────────────────


class Params(BaseModel):
    """Parameters for get_architectural_rules."""

    category: str | None = Field(
        default=None,
        description="Only return rules in this category (e.g. 'security', 'architecture')",
    )
    tag: str | None = Field(default=None, description="Only return rules carrying this tag")


class RuleSummary(BaseModel):
    slug: str
    category: str


# ─── Tool ─────────────────────────────────────────────────────────────────────


class GetArchitecturalRules(MCPTool[Params]):
    """List the available architectural rules."""

    name = "get_architectural_rules"
    description = (
        "List architectural rules (slug and category). Filter by category or tag, "
        "then fetch a rule's full text with get_rule_content."
    )

    async def execute(self, params: Params, ctx: ToolContext) -> MCPResult:
        repo = ctx.repository
        if params.category:
            rules = await repo.get_by_category(params.category)
        else:
            rules = await repo.list_all()

        if params.tag:
            rules = [r for r in rules if params.tag in r.tags]

        return MCPResult.json([RuleSummary(slug=r.slug, category=r.category) for r in rules])
