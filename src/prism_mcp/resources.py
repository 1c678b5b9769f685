"""
Rule resources: every rule addressable as ``prism://rules/{slug}``.

Only exposed when the server is started with resources enabled.
"""

from __future__ import annotations

from typing import Any

from prism_mcp.errors import MCPError
from prism_mcp.json_rpc import ErrorCodes
from prism_mcp.repository import RuleRepository
from prism_mcp.rule_types import RuleDocument

RULE_URI_PREFIX = "prism://rules/"
MIME_TYPE = "text/markdown"


def rule_uri(rule: RuleDocument) -> str:
    return f"{RULE_URI_PREFIX}{rule.slug}"


def render_rule_markdown(rule: RuleDocument) -> str:
    """Format a rule as a standalone markdown document."""
    tags = ", ".join(rule.tags) if rule.tags else "none"
    return (
        f"# {rule.title}\n\n"
        f"**Category:** {rule.category}  \n"
        f"**Priority:** {rule.priority}  \n"
        f"**Tags:** {tags}\n\n"
        "---\n\n"
        f"{rule.content}\n"
    )


async def list_rule_resources(repository: RuleRepository) -> list[dict[str, Any]]:
    rules = await repository.list_all()
    return [
        {
            "uri": rule_uri(rule),
            "name": rule.title,
            "mimeType": MIME_TYPE,
            "description": f"[{rule.category}] Tags: {', '.join(rule.tags)}",
        }
        for rule in rules
    ]


async def read_rule_resource(repository: RuleRepository, uri: str) -> dict[str, Any]:
    """Return the ``resources/read`` payload for *uri*."""
    if not uri.startswith(RULE_URI_PREFIX):
        raise MCPError(ErrorCodes.RESOURCE_NOT_FOUND, f"Resource not found: {uri}")

    slug = uri[len(RULE_URI_PREFIX):]
    rule = await repository.get_by_slug(slug)
    if rule is None:
        raise MCPError(ErrorCodes.RESOURCE_NOT_FOUND, f"Resource not found: {uri}")

    return {"contents": [{"uri": uri, "mimeType": MIME_TYPE, "text": render_rule_markdown(rule)}]}
