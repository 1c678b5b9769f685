"""
JSON-RPC 2.0 Message Utilities

Low-level message handling for the MCP session. Used by mcp_base.py;
tool implementations never import this directly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from prism_mcp.errors import ProtocolError

JSONRPC_VERSION = "2.0"

RequestId = str | int


class ErrorCodes:
    """Standard JSON-RPC / MCP error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    # MCP server-defined range
    SERVER_NOT_INITIALIZED = -32002
    RESOURCE_NOT_FOUND = -32002


@dataclass
class JsonRpcMessage:
    """A parsed inbound JSON-RPC request or notification."""

    method: str
    id: RequestId | None = None
    params: dict[str, Any] | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


def success_response(request_id: RequestId | None, result: Any) -> dict[str, Any]:
    """Create a JSON-RPC success response."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    """Create a JSON-RPC error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def decode_frame(frame: bytes | str) -> Any:
    """Decode one frame into a JSON value. Raises ProtocolError(PARSE_ERROR)."""
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(ErrorCodes.PARSE_ERROR, f"Invalid UTF-8: {e}") from e
    try:
        return json.loads(frame)
    except json.JSONDecodeError as e:
        raise ProtocolError(ErrorCodes.PARSE_ERROR, "Invalid JSON") from e


def parse_message(payload: Any) -> JsonRpcMessage:
    """
    Validate a decoded payload as a JSON-RPC 2.0 request or notification.

    Raises ProtocolError(INVALID_REQUEST) for batches, non-objects, a wrong
    version tag, a missing method, a bad id type or non-object params.
    """
    if isinstance(payload, list):
        raise ProtocolError(ErrorCodes.INVALID_REQUEST, "Batch requests are not supported")
    if not isinstance(payload, dict):
        raise ProtocolError(ErrorCodes.INVALID_REQUEST, "Request must be a JSON object")
    if payload.get("jsonrpc") != JSONRPC_VERSION:
        raise ProtocolError(ErrorCodes.INVALID_REQUEST, 'Field "jsonrpc" must be "2.0"')

    method = payload.get("method")
    if not isinstance(method, str) or not method:
        raise ProtocolError(ErrorCodes.INVALID_REQUEST, 'Field "method" must be a string')

    request_id = payload.get("id")
    # bool is an int subclass; JSON true/false is not a valid id
    if request_id is not None and (
        isinstance(request_id, bool) or not isinstance(request_id, (str, int))
    ):
        raise ProtocolError(ErrorCodes.INVALID_REQUEST, 'Field "id" must be a string or integer')

    params = payload.get("params")
    if params is not None and not isinstance(params, dict):
        raise ProtocolError(ErrorCodes.INVALID_REQUEST, 'Field "params" must be an object')

    return JsonRpcMessage(method=method, id=request_id, params=params)


def extract_id(payload: Any) -> RequestId | None:
    """Best-effort id recovery from a payload that failed validation."""
    if isinstance(payload, dict):
        request_id = payload.get("id")
        if isinstance(request_id, (str, int)) and not isinstance(request_id, bool):
            return request_id
    return None
