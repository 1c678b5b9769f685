"""Tools registered by the Prism rule server."""

from __future__ import annotations

from prism_mcp.mcp_base import MCPTool
from prism_mcp.tools.get_architectural_rules import GetArchitecturalRules
from prism_mcp.tools.get_rule_content import GetRuleContent
from prism_mcp.tools.search_rules import SearchRules
from prism_mcp.tools.search_video_transcripts import SearchVideoTranscripts
from prism_mcp.tools.validate_code_pattern import ValidateCodePattern

__all__ = [
    "GetArchitecturalRules",
    "GetRuleContent",
    "SearchRules",
    "SearchVideoTranscripts",
    "ValidateCodePattern",
    "default_tools",
]


def default_tools() -> list[MCPTool]:
    """One instance of every tool, in tools/list order."""
    return [
        GetArchitecturalRules(),
        GetRuleContent(),
        SearchRules(),
        SearchVideoTranscripts(),
        ValidateCodePattern(),
    ]
