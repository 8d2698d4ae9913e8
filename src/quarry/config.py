"""Quarry configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (QUARRY_EMBEDDING_MODEL, QUARRY_DB)
  3. Per-project quarry.yaml
  4. Global ~/.quarry/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from quarry.ingest.base import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, ChunkerOptions

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".quarry"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "quarry.yaml"

DEFAULT_DB = ".quarry.db"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Does not match rrf_k or max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

# Recognised top-level sections; anything else triggers a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["enabled", "database", "chunking", "embedding", "search", "collections"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChunkingCfg:
    """Chunk size and overlap in characters (quarry.yaml: chunking:)."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP

    def to_options(self) -> ChunkerOptions:
        return ChunkerOptions(chunk_size=self.chunk_size, chunk_overlap=self.chunk_overlap)


@dataclass
class EmbeddingCfg:
    """Embedding provider (quarry.yaml: embedding:). ``model=None`` disables vectors."""

    model: str | None = None
    num_retries: int = 3
    batch_size: int = 96

    @property
    def enabled(self) -> bool:
        return bool(self.model)


@dataclass
class SearchCfg:
    """Hybrid search tuning (quarry.yaml: search:)."""

    limit: int = 5
    rrf_k: int = 60
    overfetch: int = 3


@dataclass
class CollectionCfg:
    """A collection mirrored from one or more directories."""

    name: str
    dirs: list[str] = field(default_factory=list)
    description: str = ""


@dataclass
class KnowledgeConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    enabled: bool = False
    database: str = DEFAULT_DB
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    collections: list[CollectionCfg] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: KnowledgeConfig) -> None:
    ch = cfg.chunking
    if ch.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {ch.chunk_size}")
    if not 0 <= ch.chunk_overlap < ch.chunk_size:
        raise ConfigError(
            f"chunking.chunk_overlap must be in [0, chunk_size), got {ch.chunk_overlap} "
            f"with chunk_size {ch.chunk_size}"
        )
    if cfg.search.limit < 1:
        raise ConfigError(f"search.limit must be >= 1, got {cfg.search.limit}")
    if cfg.search.rrf_k < 0:
        raise ConfigError(f"search.rrf_k must be >= 0, got {cfg.search.rrf_k}")
    if cfg.search.overfetch < 1:
        raise ConfigError(f"search.overfetch must be >= 1, got {cfg.search.overfetch}")
    names = [c.name for c in cfg.collections]
    if len(names) != len(set(names)):
        raise ConfigError(f"Duplicate collection names in config: {names}")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_collections(raw: Any) -> list[CollectionCfg]:
    if not isinstance(raw, list):
        raise ConfigError("collections must be a list of {name, dirs} entries")
    collections: list[CollectionCfg] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigError(f"Every collection needs a name: {entry!r}")
        dirs = entry.get("dirs") or []
        if isinstance(dirs, str):
            dirs = [dirs]
        collections.append(
            CollectionCfg(
                name=str(entry["name"]),
                dirs=[str(d) for d in dirs],
                description=str(entry.get("description", "")),
            )
        )
    return collections


def _cfg_from_dict(data: dict[str, Any]) -> KnowledgeConfig:
    """Build a *KnowledgeConfig* from a merged raw YAML dict."""
    cfg = KnowledgeConfig()

    try:
        if "enabled" in data:
            cfg.enabled = bool(data["enabled"])

        if "database" in data:
            cfg.database = str(data["database"])

        if "chunking" in data:
            c = data["chunking"] or {}
            cfg.chunking = ChunkingCfg(
                chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
                chunk_overlap=int(c.get("chunk_overlap", cfg.chunking.chunk_overlap)),
            )

        if "embedding" in data:
            e = data["embedding"] or {}
            model = e.get("model")
            cfg.embedding = EmbeddingCfg(
                model=str(model) if model else None,
                num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
                batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
            )

        if "search" in data:
            s = data["search"] or {}
            cfg.search = SearchCfg(
                limit=int(s.get("limit", cfg.search.limit)),
                rrf_k=int(s.get("rrf_k", cfg.search.rrf_k)),
                overfetch=int(s.get("overfetch", cfg.search.overfetch)),
            )
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    if "collections" in data:
        cfg.collections = _parse_collections(data["collections"])

    return cfg


def _apply_env_overrides(cfg: KnowledgeConfig) -> KnowledgeConfig:
    """Apply QUARRY_* environment variable overrides."""
    if model := os.environ.get("QUARRY_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db := os.environ.get("QUARRY_DB"):
        cfg.database = db
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> KnowledgeConfig:
    """Load and return a merged *KnowledgeConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *quarry.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is invalid (e.g. chunk_overlap >= chunk_size).
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg
