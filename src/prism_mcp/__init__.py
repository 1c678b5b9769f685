"""
Prism — an MCP server that serves architectural rules to AI assistants.

Rules come from the ``prism sync`` JSON cache or a SQLite store and are
exposed as MCP tools: list, fetch by slug and semantic search.
"""

__version__ = "1.0.0"
