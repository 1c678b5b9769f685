"""
Error taxonomy for the Prism MCP server.

Tool handlers are the boundary: anything derived from ``PrismError`` that
escapes a tool is turned into an ``isError`` tool result by the session,
never into a protocol fault. ``ProtocolError`` and ``TransportFault`` belong
to the session layer itself.
"""

from __future__ import annotations


class PrismError(Exception):
    """Base class for all Prism server errors."""


class ConfigurationError(PrismError):
    """Required endpoint, credential or setting is missing or invalid."""


class UpstreamError(PrismError):
    """The embedding endpoint failed or returned a malformed payload."""


class RepositoryError(PrismError):
    """The rule store could not be reached or returned unusable data."""


class DimensionMismatchError(PrismError, ValueError):
    """Two vectors of different lengths were compared."""

    def __init__(self, len_a: int, len_b: int) -> None:
        super().__init__(f"Vectors must have equal length (got {len_a} and {len_b})")
        self.len_a = len_a
        self.len_b = len_b


class InvalidArgumentError(PrismError, ValueError):
    """A caller passed an argument outside the accepted domain."""


class ProtocolError(PrismError):
    """A frame or request could not be interpreted. Carries a JSON-RPC code."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code


class TransportFault(PrismError):
    """The underlying stream is closed or unusable."""


class MCPError(Exception):
    """Structured error carrying a JSON-RPC error code."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
