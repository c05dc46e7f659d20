"""Configuration management for the cluster engine."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG = {
    "database_url": "sqlite:///~/.clusterintel/clusters.db",
    "chroma_path": "~/.clusterintel/chroma",
    "storage_backend": "chromadb",
    "claude_model": "claude-sonnet-4-20250514",
    "timeouts": {"vector_store": 30.0, "text_generator": 20.0},
    "clustering": {
        "max_clusters": 5,
        "min_cluster_size": 3,
        "max_iterations": 50,
        "convergence_threshold": 1e-3,
        "page_size": 1000,
        "seed": None,
    },
    "health": {"activity_window_days": 30, "oversized_threshold": 10},
    "topology": {
        "split_similarity_threshold": 0.3,
        "merge_min_average": 0.4,
        "merge_min_pairwise": 0.2,
        "max_cluster_size": 8,
        "min_cluster_size": 2,
        "similarity_threshold": 0.6,
    },
    "analytics": {
        "bridge_threshold": 0.7,
        "bridge_limit": 20,
        "overlap_min": 0.3,
        "duplicate_threshold": 0.8,
    },
    "suggestions": {"threshold": 0.7, "max_suggestions": 5, "ttl_days": 30},
    "logging": {"level": "INFO"},
}

MAX_PAGE_SIZE = 1000


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".clusterintel" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            file_cfg = yaml.safe_load(f) or {}
        _deep_merge(cfg, file_cfg)

    # Env overrides
    if api_key := os.environ.get("ANTHROPIC_API_KEY"):
        cfg["claude_api_key"] = api_key
    if db_url := os.environ.get("CLUSTERINTEL_DATABASE_URL"):
        cfg["database_url"] = db_url

    cfg["chroma_path"] = str(Path(cfg["chroma_path"]).expanduser().resolve())
    cfg["database_url"] = _expand_sqlite_url(cfg["database_url"])

    page_size = cfg["clustering"].get("page_size") or MAX_PAGE_SIZE
    cfg["clustering"]["page_size"] = min(int(page_size), MAX_PAGE_SIZE)

    return cfg


def _expand_sqlite_url(url: str) -> str:
    """Expand ``~`` in file-backed SQLite URLs and create the parent directory."""
    prefix = "sqlite:///"
    if not url.startswith(prefix) or url == prefix or ":memory:" in url:
        return url
    db_path = Path(url[len(prefix):]).expanduser().resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"{prefix}{db_path}"


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
