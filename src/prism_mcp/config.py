"""
Configuration for the Prism rule server and CLI.

ServerSettings is read from environment variables (the MCP client passes
them through its server config).  CLIConfig is the CLI's persisted state
in ``~/.prism/config.json``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from prism_mcp.errors import ConfigurationError

_logger = logging.getLogger("prism.config")

DEFAULT_API_URL = "https://api.prism.jeffdev.studio"
_TRUTHY = {"1", "true", "yes", "on"}


def prism_home(environ: Mapping[str, str] | None = None) -> Path:
    """Return the Prism data directory (``PRISM_HOME`` or ``~/.prism``)."""
    env = os.environ if environ is None else environ
    env_dir = env.get("PRISM_HOME")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".prism"


def default_rules_cache(environ: Mapping[str, str] | None = None) -> Path:
    return prism_home(environ) / "rules" / "rules.json"


def _first(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


# ─── Server settings ────────────────────────────────────────────────────────


class ServerSettings(BaseModel):
    """Runtime settings for the MCP server."""

    rules_cache: Path
    db_path: Path | None = None
    embedding_endpoint: str | None = None
    embedding_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_timeout: float = Field(default=10.0, gt=0)
    repository_timeout: float = Field(default=5.0, gt=0)
    enable_resources: bool = False
    transport: Literal["stdio", "tcp"] = "stdio"
    host: str = "127.0.0.1"
    port: int = Field(default=3100, ge=0, le=65535)
    log_level: str = "INFO"

    @property
    def embedding_configured(self) -> bool:
        return bool(self.embedding_endpoint and self.embedding_api_key)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerSettings:
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ

        cache = env.get("PRISM_RULES_CACHE")
        db_path = env.get("PRISM_DB_PATH")
        port_raw = env.get("PRISM_PORT", "3100")
        try:
            port = int(port_raw)
        except ValueError as e:
            raise ConfigurationError(f"PRISM_PORT must be an integer, got {port_raw!r}") from e

        try:
            return cls(
                rules_cache=Path(cache).expanduser() if cache else default_rules_cache(env),
                db_path=Path(db_path).expanduser() if db_path else None,
                embedding_endpoint=_first(env, "PRISM_EMBEDDING_ENDPOINT", "AZURE_OPENAI_ENDPOINT"),
                embedding_api_key=_first(env, "PRISM_EMBEDDING_API_KEY", "AZURE_OPENAI_API_KEY"),
                embedding_model=_first(
                    env, "PRISM_EMBEDDING_MODEL", "AZURE_OPENAI_EMBEDDING_DEPLOYMENT"
                )
                or "text-embedding-3-small",
                embedding_timeout=_number(env, "PRISM_EMBEDDING_TIMEOUT", 10.0),
                repository_timeout=_number(env, "PRISM_REPOSITORY_TIMEOUT", 5.0),
                enable_resources=env.get("PRISM_ENABLE_RESOURCES", "").lower() in _TRUTHY,
                transport=env.get("PRISM_TRANSPORT", "stdio"),
                host=env.get("PRISM_HOST", "127.0.0.1"),
                port=port,
                log_level=env.get("PRISM_LOG_LEVEL", "INFO").upper(),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid server configuration: {e}") from e


# ─── CLI config ─────────────────────────────────────────────────────────────


Tier = Literal["free", "pro", "team", "enterprise"]


class CLIConfig(BaseModel):
    """Local CLI state persisted as JSON."""

    api_url: str = Field(default=DEFAULT_API_URL, alias="apiUrl")
    token: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    tier: Tier | None = None
    last_sync: str | None = Field(default=None, alias="lastSync")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)


def config_file(environ: Mapping[str, str] | None = None) -> Path:
    return prism_home(environ) / "config.json"


def load_cli_config(environ: Mapping[str, str] | None = None) -> CLIConfig:
    """
    Load the CLI config, applying ``PRISM_API_URL`` / ``PRISM_TOKEN`` overrides.

    A missing or corrupt file yields the defaults.
    """
    env = os.environ if environ is None else environ
    path = config_file(env)
    config = CLIConfig()

    if path.exists():
        try:
            config = CLIConfig.model_validate(json.loads(path.read_text("utf-8")))
        except (OSError, ValueError) as e:
            _logger.warning("Ignoring unreadable config %s: %s", path, e)

    overrides: dict[str, str] = {}
    if env.get("PRISM_API_URL"):
        overrides["api_url"] = env["PRISM_API_URL"]
    if env.get("PRISM_TOKEN"):
        overrides["token"] = env["PRISM_TOKEN"]
    return config.model_copy(update=overrides) if overrides else config


def save_cli_config(
    updates: Mapping[str, object], environ: Mapping[str, str] | None = None
) -> CLIConfig:
    """Merge *updates* into the stored config file and return the result."""
    path = config_file(environ)
    current: dict[str, object] = {}
    if path.exists():
        try:
            loaded = json.loads(path.read_text("utf-8"))
            current = loaded if isinstance(loaded, dict) else {}
        except (OSError, ValueError):
            current = {}

    try:
        base = CLIConfig.model_validate(current)
    except ValidationError:
        base = CLIConfig()
    merged = base.model_copy(update=dict(updates))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(merged.model_dump(by_alias=True), indent=2), "utf-8")
    return merged
