"""
Read-only rule repositories.

Two interchangeable backends sit behind ``RuleRepository``:

- ``JsonFileRuleRepository`` reads the snapshot written by ``prism sync``
  (``~/.prism/rules/rules.json``) and serves it fully offline.
- ``SqliteRuleRepository`` reads the live store managed by ``prism_mcp.db``.

Raw documents are validated at this boundary; everything above it works
with ``RuleDocument`` / ``TranscriptChunk``.  Store failures surface as
``RepositoryError``.

``list_all`` has no pagination: every active rule is loaded for ranking,
which bounds the practical corpus size to what fits in memory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from prism_mcp import db
from prism_mcp.errors import RepositoryError
from prism_mcp.rule_types import RuleDocument, TranscriptChunk

_logger = logging.getLogger("prism.repository")


# ─── Boundary validation ────────────────────────────────────────────────────


def coerce_rule(raw: Any) -> RuleDocument | None:
    """Validate one raw store document; return None (and log) if unusable."""
    try:
        return RuleDocument.model_validate(raw)
    except ValidationError as e:
        slug = raw.get("slug") if isinstance(raw, dict) else None
        _logger.warning("Skipping malformed rule %r: %s", slug, e.errors()[0]["msg"])
        return None


def coerce_chunk(raw: Any) -> TranscriptChunk | None:
    """Validate one raw transcript chunk; return None (and log) if unusable."""
    try:
        return TranscriptChunk.model_validate(raw)
    except ValidationError as e:
        _logger.warning("Skipping malformed transcript chunk: %s", e.errors()[0]["msg"])
        return None


def _sorted_active(rules: Iterable[RuleDocument]) -> list[RuleDocument]:
    active = [r for r in rules if r.is_active]
    active.sort(key=lambda r: (r.priority, r.slug))
    return active


def _dedupe_slugs(rules: list[RuleDocument]) -> list[RuleDocument]:
    seen: set[str] = set()
    out: list[RuleDocument] = []
    for rule in rules:
        if rule.slug in seen:
            _logger.warning("Duplicate rule slug %r; keeping the first occurrence", rule.slug)
            continue
        seen.add(rule.slug)
        out.append(rule)
    return out


# ─── Interface ──────────────────────────────────────────────────────────────


class RuleRepository(ABC):
    """Read-only access to rule documents and transcript chunks."""

    backend: str = ""

    @abstractmethod
    async def list_all(self) -> list[RuleDocument]:
        """Every active rule, ordered by priority then slug."""

    async def get_by_category(self, category: str) -> list[RuleDocument]:
        return [r for r in await self.list_all() if r.category == category]

    async def get_by_slug(self, slug: str) -> RuleDocument | None:
        for rule in await self.list_all():
            if rule.slug == slug:
                return rule
        return None

    @abstractmethod
    async def list_transcript_chunks(self) -> list[TranscriptChunk]:
        """Every transcript chunk in the store."""

    async def close(self) -> None:
        """Release backend resources."""


# ─── JSON snapshot backend ──────────────────────────────────────────────────


class JsonFileRuleRepository(RuleRepository):
    """
    Rules from a JSON snapshot file.

    Accepts either a top-level list of rules or an object with ``rules``
    and optional ``transcripts`` lists.  The file is read once, on first
    access.  A missing file is treated as an empty repository.
    """

    backend = "json"

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._rules: list[RuleDocument] | None = None
        self._chunks: list[TranscriptChunk] = []

    def _read(self) -> tuple[list[RuleDocument], list[TranscriptChunk]]:
        if not self.path.exists():
            _logger.warning("No cached rules at %s. Run `prism sync` first.", self.path)
            return [], []

        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            raise RepositoryError(f"Failed to read rules cache {self.path}: {e}") from e

        if isinstance(payload, list):
            raw_rules, raw_chunks = payload, []
        elif isinstance(payload, dict):
            raw_rules = payload.get("rules", [])
            raw_chunks = payload.get("transcripts", [])
        else:
            raise RepositoryError(f"Rules cache {self.path} must contain a list or an object")

        if not isinstance(raw_rules, list) or not isinstance(raw_chunks, list):
            raise RepositoryError(f"Rules cache {self.path} has a malformed layout")

        # Inactive copies must not shadow an active rule with the same slug
        active = [r for r in (coerce_rule(raw) for raw in raw_rules) if r is not None and r.is_active]
        rules = _sorted_active(_dedupe_slugs(active))
        chunks = [c for c in (coerce_chunk(raw) for raw in raw_chunks) if c is not None]
        _logger.info("Loaded %d rules from %s", len(rules), self.path)
        return rules, chunks

    async def _load(self) -> list[RuleDocument]:
        if self._rules is None:
            self._rules, self._chunks = await asyncio.to_thread(self._read)
        return self._rules

    async def list_all(self) -> list[RuleDocument]:
        return list(await self._load())

    async def list_transcript_chunks(self) -> list[TranscriptChunk]:
        await self._load()
        return list(self._chunks)


# ─── SQLite backend ─────────────────────────────────────────────────────────


class SqliteRuleRepository(RuleRepository):
    """
    Rules from the live SQLite store.

    Each call opens its own connection in a worker thread, so concurrent
    sessions never share a connection.
    """

    backend = "sqlite"

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        try:
            conn = db.connect_readonly(self.db_path)
        except sqlite3.Error as e:
            raise RepositoryError(f"Cannot open rule store {self.db_path}: {e}") from e
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(f"Rule store query failed: {e}") from e
        finally:
            conn.close()

    def _rules(self, where: str = "", params: tuple[Any, ...] = ()) -> list[RuleDocument]:
        rows = self._query(
            f"SELECT * FROM rules WHERE is_active = 1 {where} ORDER BY priority, slug",
            params,
        )
        rules: list[RuleDocument] = []
        for row in rows:
            try:
                raw = db.rule_row_to_dict(row)
            except ValueError as e:
                _logger.warning("Skipping rule %r with corrupt fields: %s", row["slug"], e)
                continue
            rule = coerce_rule(raw)
            if rule is not None:
                rules.append(rule)
        return rules

    async def list_all(self) -> list[RuleDocument]:
        return await asyncio.to_thread(self._rules)

    async def get_by_category(self, category: str) -> list[RuleDocument]:
        return await asyncio.to_thread(self._rules, "AND category = ?", (category,))

    async def get_by_slug(self, slug: str) -> RuleDocument | None:
        found = await asyncio.to_thread(self._rules, "AND slug = ?", (slug,))
        return found[0] if found else None

    def _chunks(self) -> list[TranscriptChunk]:
        rows = self._query("SELECT * FROM transcript_chunks ORDER BY video_id, start_time, id")
        chunks: list[TranscriptChunk] = []
        for row in rows:
            try:
                raw = db.chunk_row_to_dict(row)
            except ValueError as e:
                _logger.warning("Skipping transcript chunk %r: %s", row["id"], e)
                continue
            chunk = coerce_chunk(raw)
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    async def list_transcript_chunks(self) -> list[TranscriptChunk]:
        return await asyncio.to_thread(self._chunks)


# ─── Timeouts ───────────────────────────────────────────────────────────────


class TimeoutRuleRepository(RuleRepository):
    """Wraps another repository and bounds every call with a timeout."""

    def __init__(self, inner: RuleRepository, timeout: float) -> None:
        self.inner = inner
        self.timeout = timeout
        self.backend = inner.backend

    async def _bounded(self, coro: Any) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RepositoryError(
                f"Rule store ({self.backend}) did not answer within {self.timeout:g}s"
            ) from e

    async def list_all(self) -> list[RuleDocument]:
        return await self._bounded(self.inner.list_all())

    async def get_by_category(self, category: str) -> list[RuleDocument]:
        return await self._bounded(self.inner.get_by_category(category))

    async def get_by_slug(self, slug: str) -> RuleDocument | None:
        return await self._bounded(self.inner.get_by_slug(slug))

    async def list_transcript_chunks(self) -> list[TranscriptChunk]:
        return await self._bounded(self.inner.list_transcript_chunks())

    async def close(self) -> None:
        await self.inner.close()


def open_repository(
    *, db_path: str | Path | None, rules_cache: str | Path, timeout: float | None = None
) -> RuleRepository:
    """Pick the SQLite store when *db_path* is set, else the JSON snapshot."""
    repo: RuleRepository
    if db_path is not None:
        repo = SqliteRuleRepository(db_path)
    else:
        repo = JsonFileRuleRepository(rules_cache)
    if timeout is not None:
        repo = TimeoutRuleRepository(repo, timeout)
    return repo
