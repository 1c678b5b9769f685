"""
Rule store database — SQLite schema and connection management.

Holds the ``rules`` and ``transcript_chunks`` tables read by the live
repository backend, plus the upsert helpers used by ``prism import`` and
by seeding scripts.  WAL mode is enabled so imports do not block readers.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from prism_mcp.embeddings import deserialize_embedding, serialize_embedding
from prism_mcp.rule_types import RuleDocument, TranscriptChunk


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open the rule store at *db_path* for writing, creating it if needed."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    init_schema(conn)
    return conn


def connect_readonly(db_path: str | Path) -> sqlite3.Connection:
    """
    Open an existing rule store without write access.

    No schema is created and the journal mode is left alone; a missing
    file raises ``sqlite3.OperationalError``.
    """
    path = Path(db_path).resolve()
    if not path.exists():
        raise sqlite3.OperationalError(f"Database file not found: {path}")

    conn = sqlite3.connect(f"{path.as_uri()}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    return conn


# ─── Schema ──────────────────────────────────────────────────────────────────


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't already exist."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS rules (
            id          TEXT    PRIMARY KEY,
            slug        TEXT    NOT NULL UNIQUE,
            category    TEXT    NOT NULL,
            name        TEXT,
            content     TEXT    NOT NULL,
            tags        TEXT    NOT NULL DEFAULT '[]',
            priority    INTEGER NOT NULL DEFAULT 100,
            is_active   INTEGER NOT NULL DEFAULT 1,
            embedding   BLOB
        );

        CREATE TABLE IF NOT EXISTS transcript_chunks (
            id           TEXT    PRIMARY KEY,
            video_id     TEXT    NOT NULL DEFAULT '',
            video_title  TEXT    NOT NULL DEFAULT 'Untitled Video',
            start_time   REAL,
            end_time     REAL,
            text         TEXT    NOT NULL,
            embedding    BLOB
        );

        CREATE INDEX IF NOT EXISTS idx_rules_category ON rules(category);
        CREATE INDEX IF NOT EXISTS idx_chunks_video_id ON transcript_chunks(video_id);
        """
    )
    conn.commit()


# ─── Writes ──────────────────────────────────────────────────────────────────


def upsert_rule(conn: sqlite3.Connection, rule: RuleDocument) -> None:
    """Insert or replace a rule, keyed by slug."""
    conn.execute(
        """
        INSERT INTO rules (id, slug, category, name, content, tags, priority, is_active, embedding)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(slug) DO UPDATE SET
            id = excluded.id,
            category = excluded.category,
            name = excluded.name,
            content = excluded.content,
            tags = excluded.tags,
            priority = excluded.priority,
            is_active = excluded.is_active,
            embedding = excluded.embedding
        """,
        (
            rule.id,
            rule.slug,
            rule.category,
            rule.name,
            rule.content,
            json.dumps(rule.tags),
            rule.priority,
            int(rule.is_active),
            serialize_embedding(rule.embedding) if rule.embedding else None,
        ),
    )


def upsert_transcript_chunk(conn: sqlite3.Connection, chunk: TranscriptChunk) -> None:
    """Insert or replace a transcript chunk, keyed by id."""
    conn.execute(
        """
        INSERT OR REPLACE INTO transcript_chunks
            (id, video_id, video_title, start_time, end_time, text, embedding)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            chunk.id,
            chunk.video_id,
            chunk.video_title,
            chunk.start,
            chunk.end,
            chunk.text,
            serialize_embedding(chunk.embedding) if chunk.embedding else None,
        ),
    )


# ─── Row conversion ──────────────────────────────────────────────────────────


def rule_row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    """Turn a ``rules`` row into a raw document dict."""
    return {
        "id": row["id"],
        "slug": row["slug"],
        "category": row["category"],
        "name": row["name"],
        "content": row["content"],
        "tags": json.loads(row["tags"] or "[]"),
        "priority": row["priority"],
        "is_active": bool(row["is_active"]),
        "embedding": deserialize_embedding(row["embedding"]) if row["embedding"] else None,
    }


def chunk_row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    """Turn a ``transcript_chunks`` row into a raw document dict."""
    return {
        "id": row["id"],
        "video_id": row["video_id"],
        "video_title": row["video_title"],
        "start": row["start_time"],
        "end": row["end_time"],
        "text": row["text"],
        "embedding": deserialize_embedding(row["embedding"]) if row["embedding"] else None,
    }
