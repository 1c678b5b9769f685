"""
Shared fixtures for Prism server tests.

Provides sample rules and transcripts, a JSON rules cache and a SQLite
store holding them, a fake embedder, and an in-memory transport for
driving sessions without real stdio.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from prism_mcp import db
from prism_mcp.context import ToolContext
from prism_mcp.mcp_base import MCPServer, Session
from prism_mcp.repository import JsonFileRuleRepository, RuleRepository
from prism_mcp.rule_types import RuleDocument, TranscriptChunk
from prism_mcp.tools import default_tools
from prism_mcp.transport import Framing, Transport

# ─── Sample data ─────────────────────────────────────────────────────────────

ZOD_CONTENT = (
    "All server actions must validate their input with Zod before touching the "
    "database. Parse FormData into a plain object, then call schema.safeParse and "
    "return field errors to the client when validation fails."
)

SAMPLE_RULES: list[dict[str, Any]] = [
    {
        "_id": "r1",
        "slug": "zod-validation",
        "category": "security",
        "name": "Zod Validation",
        "content": ZOD_CONTENT,
        "tags": ["validation", "server-actions"],
        "priority": 10,
        "embedding": [1.0, 0.0, 0.0],
    },
    {
        "_id": "r2",
        "slug": "monorepo-boundaries",
        "category": "architecture",
        "name": "Monorepo Boundaries",
        "content": "Apps never import from other apps. Share code through packages.",
        "tags": ["imports"],
        "priority": 20,
        "embedding": [0.0, 1.0, 0.0],
    },
    {
        "_id": "r3",
        "slug": "tailwind-only",
        "category": "styling",
        "content": "Use Tailwind utility classes. No inline styles.",
        "tags": ["css"],
        "priority": 30,
        "embedding": [0.7, 0.7, 0.0],
    },
    {
        "_id": "r4",
        "slug": "folder-structure",
        "category": "architecture",
        "name": "Folder Structure",
        "content": "Feature folders live under src/features.",
        "priority": 40,
    },
    {
        "_id": "r5",
        "slug": "retired-rule",
        "category": "security",
        "content": "This rule is no longer enforced.",
        "priority": 1,
        "isActive": False,
        "embedding": [1.0, 0.0, 0.0],
    },
]

SAMPLE_TRANSCRIPTS: list[dict[str, Any]] = [
    {
        "_id": "c1",
        "videoId": "vid-1",
        "videoTitle": "Server Actions Deep Dive",
        "start": 0.0,
        "end": 30.5,
        "text": "In this segment we validate form input with Zod inside a server action.",
        "embedding": [1.0, 0.0, 0.0],
    },
    {
        "_id": "c2",
        "videoId": "vid-2",
        "start": 12.0,
        "end": 40.0,
        "text": "Keep each app isolated and move shared code into packages.",
        "embedding": [0.0, 1.0, 0.0],
    },
]

QUERY_VECTORS: dict[str, list[float]] = {
    "validate form input": [1.0, 0.0, 0.0],
    "import boundaries": [0.0, 1.0, 0.0],
}


class FakeEmbedder:
    """Embedder returning canned vectors; records every query."""

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
    ) -> None:
        self.vectors = QUERY_VECTORS if vectors is None else vectors
        self.default = default or [0.0, 0.0, 1.0]
        self.calls: list[str] = []
        self.closed = False

    async def embed(self, query: str) -> list[float]:
        self.calls.append(query)
        return self.vectors.get(query, self.default)

    async def close(self) -> None:
        self.closed = True


# ─── In-memory transport ─────────────────────────────────────────────────────


class MemoryTransport(Transport):
    """Transport fed from a queue; written messages are collected in ``sent``."""

    def __init__(self) -> None:
        self.incoming: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._written = asyncio.Event()

    def feed(self, message: dict[str, Any] | list[Any]) -> None:
        self.incoming.put_nowait(json.dumps(message).encode())

    def feed_raw(self, data: bytes) -> None:
        self.incoming.put_nowait(data)

    def end(self) -> None:
        self.incoming.put_nowait(None)

    async def _read(self) -> tuple[bytes, Framing] | None:
        frame = await self.incoming.get()
        if frame is None:
            return None
        return frame, "line"

    async def _write(self, data: bytes) -> None:
        self.sent.append(json.loads(data))
        self._written.set()

    async def wait_for(self, count: int, timeout: float = 2.0) -> None:
        """Block until at least *count* messages were written."""

        async def _wait() -> None:
            while len(self.sent) < count:
                self._written.clear()
                await self._written.wait()

        await asyncio.wait_for(_wait(), timeout)

    async def close(self) -> None:
        self.closed = True


def request(request_id: int | str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        msg["params"] = params
    return msg


def notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        msg["params"] = params
    return msg


def handshake() -> list[dict[str, Any]]:
    return [
        request(0, "initialize", {"protocolVersion": "2024-11-05", "clientInfo": {"name": "pytest"}}),
        notification("notifications/initialized"),
    ]


async def run_session(server: MCPServer, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Feed *messages* then EOF; return everything the server wrote."""
    transport = MemoryTransport()
    for message in messages:
        transport.feed(message)
    transport.end()
    await Session(server, transport).run()
    return transport.sent


def by_id(responses: list[dict[str, Any]]) -> dict[Any, dict[str, Any]]:
    return {r["id"]: r for r in responses}


# ─── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture()
def rules_cache(tmp_path: Path) -> Path:
    """A JSON snapshot with the sample rules and transcripts."""
    path = tmp_path / "rules" / "rules.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"rules": SAMPLE_RULES, "transcripts": SAMPLE_TRANSCRIPTS}))
    return path


@pytest.fixture()
def rules_db(tmp_path: Path) -> Path:
    """A SQLite rule store seeded with the sample rules and transcripts."""
    path = tmp_path / "rules.db"
    conn = db.connect(path)
    for raw in SAMPLE_RULES:
        db.upsert_rule(conn, RuleDocument.model_validate(raw))
    for raw in SAMPLE_TRANSCRIPTS:
        db.upsert_transcript_chunk(conn, TranscriptChunk.model_validate(raw))
    conn.commit()
    conn.close()
    return path


@pytest.fixture()
def repository(rules_cache: Path) -> RuleRepository:
    return JsonFileRuleRepository(rules_cache)


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def ctx(repository: RuleRepository, embedder: FakeEmbedder) -> ToolContext:
    return ToolContext(repository=repository, embedder=embedder)


@pytest.fixture()
def server(ctx: ToolContext) -> MCPServer:
    return MCPServer(name="prism-test", version="0.0.1", tools=default_tools(), context=ctx)


@pytest.fixture()
def resource_server(ctx: ToolContext) -> MCPServer:
    return MCPServer(
        name="prism-test",
        version="0.0.1",
        tools=default_tools(),
        context=ctx,
        enable_resources=True,
    )


@pytest.fixture()
def prism_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Point PRISM_HOME at a temp dir and clear variables that leak from the host."""
    for name in (
        "PRISM_RULES_CACHE",
        "PRISM_DB_PATH",
        "PRISM_EMBEDDING_ENDPOINT",
        "PRISM_EMBEDDING_API_KEY",
        "PRISM_EMBEDDING_MODEL",
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_EMBEDDING_DEPLOYMENT",
        "PRISM_API_URL",
        "PRISM_TOKEN",
        "PRISM_TRANSPORT",
        "PRISM_PORT",
        "PRISM_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "prism-home"
    monkeypatch.setenv("PRISM_HOME", str(home))
    return {"PRISM_HOME": str(home)}
