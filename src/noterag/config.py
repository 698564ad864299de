"""noterag configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (NOTERAG_EMBEDDING_MODEL, NOTERAG_VECTORIZATION_ENABLED,
                             NOTERAG_RAG_TOP_K)
  3. Per-project noterag.yaml  (working directory)
  4. Global ~/.noterag/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".noterag"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "noterag.yaml"

# Fields that suggest an API key: forbidden in global config.
# Matches: api_key, apikey, api-key, api_secret, _token (suffix), standalone token,
# standalone secret, _secret (suffix), password, passwd, credential(s).
# Does NOT match legitimate config keys like top_k or max_top_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token, auth_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # my_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections: unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "retrieval", "index", "vectorization", "storage"]
)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (noterag.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector length produced by *model*; fixes the index shape.
        batch_size: Maximum texts per remote embedding call.
        num_retries: LiteLLM retries on transient errors.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 64
    num_retries: int = 3


@dataclass
class ChunkingCfg:
    """Chunk size and overlap in characters (noterag.yaml: chunking:)."""

    chunk_size: int = 4000
    overlap: int = 400
    search_window: int = 200


@dataclass
class RetrievalCfg:
    """Retrieval configuration (noterag.yaml: retrieval:).

    Attributes:
        top_k: Default number of nearest chunks to search for.
        min_top_k: Lower clamp for any requested top_k.
        max_top_k: Upper clamp for any requested top_k.
        preview_chars: Length of the chunk preview shown in citations.
    """

    top_k: int = 20
    min_top_k: int = 1
    max_top_k: int = 50
    preview_chars: int = 150


@dataclass
class IndexCfg:
    """Per-project vector index storage (noterag.yaml: index:)."""

    dir: str = "vectors"
    persist_debounce_seconds: float = 2.0


@dataclass
class VectorizationCfg:
    """Background vectorization (noterag.yaml: vectorization:).

    Attributes:
        enabled: Global switch for the whole pipeline. When off, retrieval is
            bypassed and callers send full document text instead.
        max_workers: Size of the background thread pool.
    """

    enabled: bool = False
    max_workers: int = 2


@dataclass
class StorageCfg:
    """Relational store location (noterag.yaml: storage:)."""

    db_path: str = "noterag.db"


@dataclass
class NoteragConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    index: IndexCfg = field(default_factory=IndexCfg)
    vectorization: VectorizationCfg = field(default_factory=VectorizationCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)

    def clamp_top_k(self, top_k: int | None) -> int:
        """Return *top_k* (or the default) clamped to the configured bounds."""
        value = self.retrieval.top_k if top_k is None else int(top_k)
        return max(self.retrieval.min_top_k, min(value, self.retrieval.max_top_k))


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names.

    Global config must never store credentials; they belong in env vars.
    """

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
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def validate(cfg: NoteragConfig) -> None:
    """Raise ConfigError for out-of-range values."""
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.embedding.batch_size < 1:
        raise ConfigError(f"embedding.batch_size must be >= 1, got {cfg.embedding.batch_size}")
    if cfg.chunking.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {cfg.chunking.chunk_size}")
    if not 0 <= cfg.chunking.overlap < cfg.chunking.chunk_size:
        raise ConfigError("chunking.overlap must be in [0, chunk_size)")
    if cfg.retrieval.min_top_k < 1:
        raise ConfigError(f"retrieval.min_top_k must be >= 1, got {cfg.retrieval.min_top_k}")
    if cfg.retrieval.max_top_k < cfg.retrieval.min_top_k:
        raise ConfigError("retrieval.max_top_k must be >= retrieval.min_top_k")
    if cfg.vectorization.max_workers < 1:
        raise ConfigError(
            f"vectorization.max_workers must be >= 1, got {cfg.vectorization.max_workers}"
        )


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


def _cfg_from_dict(data: dict[str, Any]) -> NoteragConfig:
    """Build a *NoteragConfig* from a merged raw YAML dict."""
    cfg = NoteragConfig()

    try:
        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
                batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
                num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
            )

        if "chunking" in data:
            c = data["chunking"] or {}
            cfg.chunking = ChunkingCfg(
                chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
                overlap=int(c.get("overlap", cfg.chunking.overlap)),
                search_window=int(c.get("search_window", cfg.chunking.search_window)),
            )

        if "retrieval" in data:
            r = data["retrieval"] or {}
            cfg.retrieval = RetrievalCfg(
                top_k=int(r.get("top_k", cfg.retrieval.top_k)),
                min_top_k=int(r.get("min_top_k", cfg.retrieval.min_top_k)),
                max_top_k=int(r.get("max_top_k", cfg.retrieval.max_top_k)),
                preview_chars=int(r.get("preview_chars", cfg.retrieval.preview_chars)),
            )

        if "index" in data:
            i = data["index"] or {}
            cfg.index = IndexCfg(
                dir=str(i.get("dir", cfg.index.dir)),
                persist_debounce_seconds=float(
                    i.get("persist_debounce_seconds", cfg.index.persist_debounce_seconds)
                ),
            )

        if "vectorization" in data:
            v = data["vectorization"] or {}
            cfg.vectorization = VectorizationCfg(
                enabled=_parse_bool(
                    v.get("enabled", cfg.vectorization.enabled), "vectorization.enabled"
                ),
                max_workers=int(v.get("max_workers", cfg.vectorization.max_workers)),
            )

        if "storage" in data:
            s = data["storage"] or {}
            cfg.storage = StorageCfg(db_path=str(s.get("db_path", cfg.storage.db_path)))
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: NoteragConfig) -> NoteragConfig:
    """Apply NOTERAG_* environment variable overrides."""
    if model := os.environ.get("NOTERAG_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if enabled := os.environ.get("NOTERAG_VECTORIZATION_ENABLED"):
        cfg.vectorization.enabled = _parse_bool(enabled, "NOTERAG_VECTORIZATION_ENABLED")
    if top_k := os.environ.get("NOTERAG_RAG_TOP_K"):
        try:
            cfg.retrieval.top_k = int(top_k)
        except ValueError as exc:
            raise ConfigError(f"NOTERAG_RAG_TOP_K must be an integer, got {top_k!r}") from exc
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> NoteragConfig:
    """Load and return a merged *NoteragConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *noterag.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *NoteragConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or a value
            is malformed or out of range.
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

    validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.noterag/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# noterag global configuration: defaults only.\n"
            "# NEVER store API keys here. Use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
            "\n"
            "retrieval:\n"
            "  top_k: 20\n"
            "\n"
            "vectorization:\n"
            "  enabled: false\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
