"""
MCP Server Base Classes

Foundation of the Prism rule server: tool registration, JSON-RPC 2.0
dispatch and the per-connection session state machine.

    CONNECTING --initialize--> NEGOTIATED --notifications/initialized--> READY
    any state  --EOF / transport fault-->  CLOSED

Usage:
    server = MCPServer(
        name="prism-mcp-server",
        version="1.0.0",
        tools=[GetArchitecturalRules(), GetRuleContent()],
        context=ToolContext(repository=repo),
    )
    server.start()
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from prism_mcp import resources
from prism_mcp.context import ToolContext
from prism_mcp.errors import MCPError, PrismError, ProtocolError, TransportFault
from prism_mcp.json_rpc import (
    ErrorCodes,
    JsonRpcMessage,
    RequestId,
    decode_frame,
    error_response,
    extract_id,
    parse_message,
    success_response,
)
from prism_mcp.transport import STREAM_LIMIT, StdioTransport, StreamTransport, Transport

__all__ = [
    "ErrorCodes",
    "MCPError",
    "MCPResult",
    "MCPServer",
    "MCPTool",
    "Session",
    "SessionState",
    "SUPPORTED_PROTOCOL_VERSIONS",
]

_logger = logging.getLogger("prism.session")

SUPPORTED_PROTOCOL_VERSIONS: tuple[str, ...] = ("2025-06-18", "2025-03-26", "2024-11-05")

TParams = TypeVar("TParams", bound=BaseModel)

# ─── Result Type ─────────────────────────────────────────────────────────────


@dataclass
class MCPResult:
    """Result returned by a tool execution: one text block, maybe an error."""

    text: str
    is_error: bool = False

    @classmethod
    def json(cls, data: Any) -> MCPResult:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        elif isinstance(data, list):
            data = [d.model_dump() if isinstance(d, BaseModel) else d for d in data]
        return cls(text=json.dumps(data, indent=2))

    @classmethod
    def error(cls, message: str) -> MCPResult:
        return cls(text=message, is_error=True)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            d["isError"] = True
        return d


# ─── Tool Base Class ─────────────────────────────────────────────────────────


class MCPTool(ABC, Generic[TParams]):
    """
    Abstract base class for MCP tools.

    Every tool defines:
    - name: as advertised in tools/list
    - description: for the LLM
    - Params type: pydantic BaseModel, doubles as the JSON input schema
    - execute(): the implementation; returns an MCPResult
    """

    name: str = ""
    description: str = ""

    @abstractmethod
    async def execute(self, params: TParams, ctx: ToolContext) -> MCPResult:
        """Execute the tool with validated parameters."""
        ...

    def get_params_model(self) -> type[BaseModel]:
        """Get the Pydantic model class for params validation."""
        for base in type(self).__orig_bases__:  # type: ignore[attr-defined]
            if hasattr(base, "__args__") and len(base.__args__) >= 1:
                return base.__args__[0]
        raise TypeError(f"Tool {self.name} must specify Generic params type")

    def get_input_schema(self) -> dict[str, Any]:
        """Generate JSON Schema from the Pydantic params model."""
        schema = self.get_params_model().model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def to_definition(self) -> dict[str, Any]:
        """The tools/list entry for this tool."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.get_input_schema(),
        }


def _summarize_validation(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "arguments"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


# ─── MCP Server ──────────────────────────────────────────────────────────────


class MCPServer:
    """
    Registry of tools plus the shared dependencies they run against.

    The registry is frozen at construction.  Every connection gets its own
    ``Session``; the server itself holds no per-request mutable state, so
    sessions can run concurrently.
    """

    def __init__(
        self,
        name: str,
        version: str,
        tools: list[MCPTool[Any]],
        context: ToolContext,
        *,
        enable_resources: bool = False,
        instructions: str | None = None,
    ) -> None:
        self.name = name
        self.version = version
        self.context = context
        self.enable_resources = enable_resources
        self.instructions = instructions

        registry: dict[str, MCPTool[Any]] = {}
        for tool in tools:
            if tool.name in registry:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            registry[tool.name] = tool
        self.tools = MappingProxyType(registry)
        self._definitions = [tool.to_definition() for tool in registry.values()]

    # ── Protocol surface ──

    def capabilities(self) -> dict[str, Any]:
        caps: dict[str, Any] = {"tools": {}}
        if self.enable_resources:
            caps["resources"] = {}
        return caps

    def list_tools(self) -> list[dict[str, Any]]:
        return list(self._definitions)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> MCPResult:
        """
        Run one tool call.  Never raises for tool-level failures: unknown
        tools, bad arguments and handler errors all become error results.
        """
        tool = self.tools.get(name)
        if tool is None:
            return MCPResult.error(f"Unknown tool: {name}")

        try:
            params = tool.get_params_model().model_validate(arguments)
        except ValidationError as e:
            return MCPResult.error(f"Invalid arguments for {name}: {_summarize_validation(e)}")

        try:
            return await tool.execute(params, self.context)
        except (PrismError, MCPError) as e:
            _logger.warning("Tool %s failed: %s", name, e)
            return MCPResult.error(str(e))
        except Exception as e:
            _logger.exception("Unexpected error in tool %s", name)
            return MCPResult.error(f"Internal error in {name}: {e!s}")

    # ── Running ──

    def start(self, transport: str = "stdio", host: str = "127.0.0.1", port: int = 3100) -> None:
        """Serve until stdin closes (stdio) or the process is interrupted (tcp)."""
        if transport == "tcp":
            asyncio.run(self.serve_tcp(host, port))
        else:
            asyncio.run(self.serve_stdio())

    async def serve_stdio(self) -> None:
        transport = await StdioTransport.open()
        try:
            await Session(self, transport).run()
        finally:
            await self.context.aclose()

    async def serve_tcp(self, host: str, port: int) -> None:
        """Accept connections and run one independent session per client."""

        async def _on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            peer = writer.get_extra_info("peername")
            _logger.info("Client connected: %s", peer)
            await Session(self, StreamTransport(reader, writer)).run()
            _logger.info("Client disconnected: %s", peer)

        listener = await asyncio.start_server(_on_connect, host, port, limit=STREAM_LIMIT)
        addresses = ", ".join(str(s.getsockname()) for s in listener.sockets)
        _logger.info("Listening on %s", addresses)
        try:
            async with listener:
                await listener.serve_forever()
        finally:
            await self.context.aclose()


# ─── Session ─────────────────────────────────────────────────────────────────


class SessionState(Enum):
    CONNECTING = "connecting"
    NEGOTIATED = "negotiated"
    READY = "ready"
    CLOSED = "closed"


_EOF = object()


class Session:
    """
    One client connection.

    Requests are answered in arrival order.  A background reader keeps
    consuming the stream while a request runs, so end-of-stream and
    ``notifications/cancelled`` can abort it; an aborted request gets no
    response.
    """

    def __init__(self, server: MCPServer, transport: Transport) -> None:
        self.server = server
        self.transport = transport
        self.state = SessionState.CONNECTING
        self.protocol_version: str | None = None
        self.client_info: dict[str, Any] | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._eof = asyncio.Event()
        self._inflight: dict[RequestId, asyncio.Task[dict[str, Any] | None]] = {}

    def _transition(self, new_state: SessionState) -> None:
        if self.state is not new_state:
            _logger.debug("Session %s -> %s", self.state.value, new_state.value)
            self.state = new_state

    # ── Main loop ──

    async def run(self) -> None:
        """Serve requests until the transport closes."""
        reader = asyncio.create_task(self._read_loop())
        try:
            while True:
                item = await self._queue.get()
                if item is _EOF:
                    break
                if isinstance(item, ProtocolError):
                    await self._send(error_response(None, item.code, str(item)))
                    continue
                if not await self._process(item):
                    break
        except TransportFault as e:
            _logger.warning("Transport fault, closing session: %s", e)
        finally:
            self._transition(SessionState.CLOSED)
            reader.cancel()
            for task in self._inflight.values():
                task.cancel()
            self._inflight.clear()
            await self.transport.close()

    async def _read_loop(self) -> None:
        """Pull frames off the transport into the queue; handle cancellations."""
        try:
            while True:
                try:
                    frame = await self.transport.read_message()
                except ProtocolError as e:
                    _logger.warning("Malformed frame: %s", e)
                    await self._queue.put(e)
                    continue
                if frame is None:
                    break
                try:
                    payload = decode_frame(frame)
                except ProtocolError as e:
                    _logger.warning("Malformed frame: %s", e)
                    await self._queue.put(e)
                    continue
                if isinstance(payload, dict) and payload.get("method") == "notifications/cancelled":
                    self._cancel_request(payload.get("params"))
                    continue
                await self._queue.put(payload)
        except TransportFault as e:
            _logger.warning("Transport fault while reading: %s", e)
        finally:
            self._eof.set()
            await self._queue.put(_EOF)

    def _cancel_request(self, params: Any) -> None:
        request_id = params.get("requestId") if isinstance(params, dict) else None
        task = self._inflight.get(request_id) if request_id is not None else None
        if task is not None and not task.done():
            _logger.info("Cancelling request %r: %s", request_id, params.get("reason", ""))
            task.cancel()

    async def _process(self, payload: Any) -> bool:
        """Handle one decoded frame. Returns False once the session must close."""
        try:
            message = parse_message(payload)
        except ProtocolError as e:
            await self._send(error_response(extract_id(payload), e.code, str(e)))
            return True

        task = asyncio.create_task(self.handle_message(message))
        if message.id is not None:
            self._inflight[message.id] = task

        try:
            if self._eof.is_set():
                # Frame was fully received before the stream ended; finish it
                await asyncio.wait({task})
            else:
                eof_wait = asyncio.create_task(self._eof.wait())
                done, _ = await asyncio.wait({task, eof_wait}, return_when=asyncio.FIRST_COMPLETED)
                eof_wait.cancel()
                if task not in done:
                    _logger.info("Transport closed during %s; abandoning request", message.method)
                    task.cancel()
                    await asyncio.wait({task})
                    return False
        finally:
            if message.id is not None:
                self._inflight.pop(message.id, None)

        if task.cancelled():
            return True
        response = task.result()
        if response is not None:
            await self._send(response)
        return True

    async def _send(self, message: dict[str, Any]) -> None:
        if self.state is SessionState.CLOSED:
            return
        await self.transport.write_message(message)

    # ── Dispatch ──

    async def handle_message(self, message: JsonRpcMessage) -> dict[str, Any] | None:
        """Dispatch one request or notification; return the response, if any."""
        if self.state is SessionState.CLOSED:
            return None

        if message.is_notification:
            self._handle_notification(message)
            return None

        try:
            result = await self._dispatch(message)
            return success_response(message.id, result)
        except (ProtocolError, MCPError) as e:
            return error_response(message.id, e.code, str(e))
        except PrismError as e:
            _logger.warning("%s failed: %s", message.method, e)
            return error_response(message.id, ErrorCodes.INTERNAL_ERROR, str(e))
        except Exception as e:
            _logger.exception("Unhandled error in %s", message.method)
            return error_response(message.id, ErrorCodes.INTERNAL_ERROR, f"Internal error: {e!s}")

    def _handle_notification(self, message: JsonRpcMessage) -> None:
        if message.method == "notifications/initialized":
            if self.state is SessionState.NEGOTIATED:
                self._transition(SessionState.READY)
            return
        _logger.debug("Ignoring notification %s", message.method)

    async def _dispatch(self, message: JsonRpcMessage) -> Any:
        method = message.method
        params = message.params or {}

        if method == "ping":
            return {}
        if method == "initialize":
            return self._initialize(params)

        if self.state is SessionState.CONNECTING:
            raise ProtocolError(ErrorCodes.SERVER_NOT_INITIALIZED, "Server not initialized")
        if self.state is SessionState.NEGOTIATED:
            # Some clients never send notifications/initialized
            self._transition(SessionState.READY)

        if method == "tools/list":
            return {"tools": self.server.list_tools()}
        if method == "tools/call":
            return await self._tools_call(params)
        if self.server.enable_resources:
            if method == "resources/list":
                return {"resources": await resources.list_rule_resources(self.server.context.repository)}
            if method == "resources/read":
                uri = params.get("uri")
                if not isinstance(uri, str):
                    raise ProtocolError(ErrorCodes.INVALID_PARAMS, 'Parameter "uri" must be a string')
                return await resources.read_rule_resource(self.server.context.repository, uri)

        raise ProtocolError(ErrorCodes.METHOD_NOT_FOUND, f"Method not found: {method}")

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.state is not SessionState.CONNECTING:
            raise ProtocolError(ErrorCodes.INVALID_REQUEST, "Session already initialized")

        requested = params.get("protocolVersion")
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            self.protocol_version = requested
        else:
            self.protocol_version = SUPPORTED_PROTOCOL_VERSIONS[0]
        client_info = params.get("clientInfo")
        self.client_info = client_info if isinstance(client_info, dict) else None
        _logger.info(
            "Client %s negotiated protocol %s",
            (self.client_info or {}).get("name", "unknown"),
            self.protocol_version,
        )
        self._transition(SessionState.NEGOTIATED)

        result: dict[str, Any] = {
            "protocolVersion": self.protocol_version,
            "capabilities": self.server.capabilities(),
            "serverInfo": {"name": self.server.name, "version": self.server.version},
        }
        if self.server.instructions:
            result["instructions"] = self.server.instructions
        return result

    async def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str):
            raise ProtocolError(ErrorCodes.INVALID_PARAMS, 'Parameter "name" must be a string')
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ProtocolError(ErrorCodes.INVALID_PARAMS, 'Parameter "arguments" must be an object')

        result = await self.server.call_tool(name, arguments)
        return result.to_dict()
