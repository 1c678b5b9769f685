"""
prism.get_rule_content — Return one rule's full text by slug.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from prism_mcp.context import ToolContext
from prism_mcp.mcp_base import MCPResult, MCPTool


class Params(BaseModel):
    """Parameters for get_rule_content."""

    slug: str = Field(description="Slug of the rule, as listed by get_architectural_rules")


class GetRuleContent(MCPTool[Params]):
    """Fetch a rule's content verbatim."""

    name = "get_rule_content"
    description = "Get the full content of an architectural rule by its slug."

    async def execute(self, params: Params, ctx: ToolContext) -> MCPResult:
        rule = await ctx.repository.get_by_slug(params.slug)
        if rule is None:
            return MCPResult.error(f"Rule not found: {params.slug}")
        return MCPResult(text=rule.content)
