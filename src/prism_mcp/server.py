"""
Prism MCP Server — Entry Point

Builds the repository, embedding client and tool registry from
``ServerSettings`` and starts the JSON-RPC listener.

Tools (5):
  get_architectural_rules  — list rules by category / tag
  get_rule_content         — full text of one rule
  search_rules             — semantic search over rules
  search_video_transcripts — semantic search over transcript chunks
  validate_code_pattern    — pattern checks on a code snippet
"""

from __future__ import annotations

import logging
import sys

from prism_mcp import __version__
from prism_mcp.config import ServerSettings
from prism_mcp.context import ToolContext
from prism_mcp.embeddings import NOT_CONFIGURED, EmbeddingClient
from prism_mcp.errors import ConfigurationError
from prism_mcp.mcp_base import MCPServer
from prism_mcp.repository import open_repository
from prism_mcp.tools import default_tools

SERVER_NAME = "prism-mcp-server"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

INSTRUCTIONS = (
    "Prism serves the project's architectural rules. Call get_architectural_rules "
    "to see what exists, get_rule_content for the full text, or search_rules to "
    "find the rules relevant to a task."
)

_logger = logging.getLogger("prism.server")


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr; stdout is reserved for protocol frames."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("prism")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False


def build_server(settings: ServerSettings) -> MCPServer:
    """Wire settings into a ready-to-run server."""
    repository = open_repository(
        db_path=settings.db_path,
        rules_cache=settings.rules_cache,
        timeout=settings.repository_timeout,
    )

    embedder = None
    embedder_error = None
    if settings.embedding_configured:
        embedder = EmbeddingClient.from_settings(settings)
    else:
        # Listing and reading rules still works without embeddings
        embedder_error = NOT_CONFIGURED
        _logger.warning("Semantic search disabled: %s", embedder_error)

    _logger.info(
        "Rule store: %s (%s)",
        repository.backend,
        settings.db_path if settings.db_path is not None else settings.rules_cache,
    )

    return MCPServer(
        name=SERVER_NAME,
        version=__version__,
        tools=default_tools(),
        context=ToolContext(repository=repository, embedder=embedder, embedder_error=embedder_error),
        enable_resources=settings.enable_resources,
        instructions=INSTRUCTIONS,
    )


def run(settings: ServerSettings) -> None:
    server = build_server(settings)
    _logger.info("Starting %s %s over %s", SERVER_NAME, __version__, settings.transport)
    try:
        server.start(settings.transport, settings.host, settings.port)
    except KeyboardInterrupt:
        pass
    finally:
        _logger.info("Server stopped")


def main() -> int:
    try:
        settings = ServerSettings.from_env()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    configure_logging(settings.log_level)
    run(settings)
    return 0


if __name__ == "__main__":
    sys.exit(main())
