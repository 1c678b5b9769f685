"""Prism CLI — main entry point.

Commands:
  serve     Run the MCP server (stdio by default)
  sync      Download rules from Prism Cloud into the local cache
  rules     List cached rules
  login     Store an API token
  import    Load a rules snapshot into a SQLite rule store
  connect   Run the server as a supervised child process
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sqlite3
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiohttp

from prism_mcp import __version__
from prism_mcp.config import (
    CLIConfig,
    ServerSettings,
    load_cli_config,
    save_cli_config,
)
from prism_mcp.errors import ConfigurationError, PrismError, RepositoryError, UpstreamError

SYNC_TIMEOUT = 30.0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="prism",
        description="Prism — architectural rules for AI coding assistants",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    # serve / connect share the server options
    serve_parser = subparsers.add_parser("serve", help="Run the MCP server")
    connect_parser = subparsers.add_parser(
        "connect", help="Run the MCP server as a supervised child process"
    )
    for p in (serve_parser, connect_parser):
        p.add_argument("--db", help="SQLite rule store (default: the JSON rules cache)")
        p.add_argument("--cache", help="Rules cache file")
        p.add_argument("--transport", choices=["stdio", "tcp"], help="Transport to serve on")
        p.add_argument("--host", help="TCP listen address")
        p.add_argument("--port", type=int, help="TCP listen port")

    # sync
    subparsers.add_parser("sync", help="Download rules into the local cache")

    # rules
    rules_parser = subparsers.add_parser("rules", help="List cached rules")
    rules_parser.add_argument("--category", help="Only show this category")

    # login
    login_parser = subparsers.add_parser("login", help="Store an API token")
    login_parser.add_argument("--token", required=True, help="API token from the Prism dashboard")
    login_parser.add_argument("--api-url", help="Prism API base URL")

    # import
    import_parser = subparsers.add_parser("import", help="Load a rules snapshot into SQLite")
    import_parser.add_argument("file", help="Rules JSON file (list, or object with rules/transcripts)")
    import_parser.add_argument("--db", required=True, help="SQLite rule store to write")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    handlers = {
        "serve": cmd_serve,
        "connect": cmd_connect,
        "sync": cmd_sync,
        "rules": cmd_rules,
        "login": cmd_login,
        "import": cmd_import,
    }
    try:
        return handlers[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except PrismError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# ─── serve / connect ─────────────────────────────────────────────────────────


def settings_from_args(
    args: argparse.Namespace, environ: Mapping[str, str] | None = None
) -> ServerSettings:
    """Environment settings with command-line overrides applied."""
    settings = ServerSettings.from_env(environ)
    overrides: dict[str, Any] = {}
    if args.db:
        overrides["db_path"] = Path(args.db).expanduser()
    if args.cache:
        overrides["rules_cache"] = Path(args.cache).expanduser()
    for name in ("transport", "host", "port"):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    return settings.model_copy(update=overrides)


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the MCP server in this process."""
    from prism_mcp.server import configure_logging, run

    settings = settings_from_args(args)
    configure_logging(settings.log_level)
    run(settings)
    return 0


def _forwarded_args(args: argparse.Namespace) -> list[str]:
    out: list[str] = []
    for flag, value in (
        ("--db", args.db),
        ("--cache", args.cache),
        ("--transport", args.transport),
        ("--host", args.host),
        ("--port", args.port),
    ):
        if value is not None:
            out += [flag, str(value)]
    return out


def cmd_connect(args: argparse.Namespace) -> int:
    """Supervise a `prism serve` child; stdout stays reserved for MCP frames."""
    from prism_mcp.server import configure_logging
    from prism_mcp.supervisor import ProcessSupervisor, serve_command

    config = load_cli_config()
    configure_logging(ServerSettings.from_env().log_level)

    env = dict(os.environ)
    if config.token:
        env["PRISM_TOKEN"] = config.token
    else:
        print("Warning: not authenticated; serving cached rules only.", file=sys.stderr)

    return ProcessSupervisor(serve_command(*_forwarded_args(args)), env=env).run()


# ─── sync ────────────────────────────────────────────────────────────────────


def _rule_count(payload: Any) -> int:
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict) and isinstance(payload.get("rules"), list):
        return len(payload["rules"])
    return 0


async def fetch_rules(config: CLIConfig, timeout: float = SYNC_TIMEOUT) -> Any:
    """GET ``{api_url}/api/rules`` with the stored bearer token."""
    url = f"{config.api_url.rstrip('/')}/api/rules"
    headers = {"Authorization": f"Bearer {config.token}"}
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url, headers=headers) as resp:
                if resp.status != 200:
                    raise UpstreamError(f"API error: {resp.status}")
                return await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise UpstreamError(f"Failed to fetch rules from {url}: {e}") from e


async def sync_rules(
    config: CLIConfig, cache_path: Path, environ: Mapping[str, str] | None = None
) -> int:
    """Download the rule snapshot into *cache_path*; return the rule count."""
    payload = await fetch_rules(config)
    if not isinstance(payload, (list, dict)):
        raise UpstreamError("API returned an unexpected rules payload")

    cache_path.parent.mkdir(parents=True, exist_ok=True)
    cache_path.write_text(json.dumps(payload, indent=2), "utf-8")
    save_cli_config({"last_sync": datetime.now(timezone.utc).isoformat()}, environ)
    return _rule_count(payload)


def cmd_sync(args: argparse.Namespace) -> int:
    """Sync rules from Prism Cloud to the local cache."""
    config = load_cli_config()
    if not config.is_authenticated:
        print("Not authenticated. Run `prism login --token <token>` first.", file=sys.stderr)
        return 1

    cache_path = ServerSettings.from_env().rules_cache
    print("Syncing rules from Prism Cloud...")
    try:
        count = asyncio.run(sync_rules(config, cache_path))
    except UpstreamError as e:
        print(f"Sync failed: {e}", file=sys.stderr)
        return 1

    print(f"Synced {count} rules")
    print(f"   Cache: {cache_path}")
    return 0


# ─── rules ───────────────────────────────────────────────────────────────────


def cmd_rules(args: argparse.Namespace) -> int:
    """List cached rules grouped by category."""
    from prism_mcp.repository import JsonFileRuleRepository

    cache_path = ServerSettings.from_env().rules_cache
    if not cache_path.exists():
        print("No rules cached. Run `prism sync` first.")
        return 0

    repo = JsonFileRuleRepository(cache_path)
    try:
        if args.category:
            rules = asyncio.run(repo.get_by_category(args.category))
        else:
            rules = asyncio.run(repo.list_all())
    except RepositoryError as e:
        print(f"Failed to read rules cache: {e}", file=sys.stderr)
        return 1

    print(f"\nPrism Rules ({len(rules)} total)\n")
    by_category: dict[str, list[str]] = {}
    for rule in rules:
        by_category.setdefault(rule.category, []).append(rule.slug)

    for category, slugs in by_category.items():
        print(f"  {category}")
        for slug in slugs:
            print(f"    • {slug}")
        print()
    return 0


# ─── login ───────────────────────────────────────────────────────────────────


def cmd_login(args: argparse.Namespace) -> int:
    """Store an API token (and optionally the API URL) in the config file."""
    token = args.token.strip()
    if not token:
        raise ConfigurationError("Token must not be empty")

    updates: dict[str, object] = {"token": token}
    if args.api_url:
        updates["api_url"] = args.api_url
    config = save_cli_config(updates)
    print(f"Logged in. Token saved for {config.api_url}")
    return 0


# ─── import ──────────────────────────────────────────────────────────────────


def import_snapshot(snapshot: Path, db_path: Path) -> tuple[int, int]:
    """
    Load rules and transcript chunks from *snapshot* into the SQLite store.

    Malformed documents are skipped.  Returns ``(rules, chunks)`` written.
    """
    from prism_mcp import db
    from prism_mcp.repository import coerce_chunk, coerce_rule

    try:
        payload = json.loads(snapshot.read_text("utf-8"))
    except (OSError, ValueError) as e:
        raise RepositoryError(f"Cannot read snapshot {snapshot}: {e}") from e

    if isinstance(payload, list):
        raw_rules, raw_chunks = payload, []
    elif isinstance(payload, dict):
        raw_rules, raw_chunks = payload.get("rules", []), payload.get("transcripts", [])
    else:
        raise RepositoryError(f"Snapshot {snapshot} must contain a list or an object")
    if not isinstance(raw_rules, list) or not isinstance(raw_chunks, list):
        raise RepositoryError(f"Snapshot {snapshot} has a malformed layout")

    rules = chunks = 0
    try:
        conn = db.connect(db_path)
    except sqlite3.Error as e:
        raise RepositoryError(f"Cannot open rule store {db_path}: {e}") from e
    try:
        for raw in raw_rules:
            rule = coerce_rule(raw)
            if rule is not None:
                db.upsert_rule(conn, rule)
                rules += 1
        for raw in raw_chunks:
            chunk = coerce_chunk(raw)
            if chunk is not None:
                db.upsert_transcript_chunk(conn, chunk)
                chunks += 1
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise RepositoryError(f"Import into {db_path} failed: {e}") from e
    finally:
        conn.close()
    return rules, chunks


def cmd_import(args: argparse.Namespace) -> int:
    rules, chunks = import_snapshot(Path(args.file), Path(args.db).expanduser())
    print(f"Imported {rules} rules and {chunks} transcript chunks into {args.db}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
