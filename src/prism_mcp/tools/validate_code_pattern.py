"""
prism.validate_code_pattern — Check a snippet against the project's code rules.

Purely pattern-based; see ``prism_mcp.validation`` for the rule table.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from prism_mcp.context import ToolContext
from prism_mcp.mcp_base import MCPResult, MCPTool
from prism_mcp.validation import check_code


class Params(BaseModel):
    """Parameters for validate_code_pattern."""

    code: str = Field(description="The code snippet to validate")
    context: str | None = Field(
        default=None,
        description="Where the code lives (e.g. 'server action', 'component')",
    )


class ValidateCodePattern(MCPTool[Params]):
    """Report rule violations found in a code snippet."""

    name = "validate_code_pattern"
    description = (
        "Validate a code snippet against architectural rules: cross-app imports, "
        "inline styles, server actions without Zod validation and .env usage."
    )

    async def execute(self, params: Params, ctx: ToolContext) -> MCPResult:
        if not params.code.strip():
            return MCPResult.error("No code provided")

        violations = check_code(params.code)
        heading = "## Code Validation Report"
        if params.context:
            heading += f" ({params.context})"

        if not violations:
            return MCPResult(text=f"{heading}\n\nNo violations found. Code follows architectural rules.")

        body = "\n\n".join(v.to_markdown() for v in violations)
        return MCPResult(text=f"{heading}\n\n{body}")
