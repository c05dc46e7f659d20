"""Tests for configuration loading."""

import yaml

from clusterintel.config import DEFAULT_CONFIG, MAX_PAGE_SIZE, load_config


def _write(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


def test_file_values_merge_into_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("CLUSTERINTEL_DATABASE_URL", raising=False)
    path = _write(tmp_path, {
        "database_url": "sqlite://",
        "chroma_path": str(tmp_path / "chroma"),
        "topology": {"max_cluster_size": 12},
    })
    cfg = load_config(path)

    assert cfg["topology"]["max_cluster_size"] == 12
    assert cfg["topology"]["min_cluster_size"] == DEFAULT_CONFIG["topology"]["min_cluster_size"]
    assert cfg["database_url"] == "sqlite://"
    assert DEFAULT_CONFIG["topology"]["max_cluster_size"] == 8


def test_sqlite_path_is_expanded_and_created(tmp_path, monkeypatch):
    monkeypatch.delenv("CLUSTERINTEL_DATABASE_URL", raising=False)
    db_file = tmp_path / "nested" / "clusters.db"
    path = _write(tmp_path, {"database_url": f"sqlite:///{db_file}", "chroma_path": str(tmp_path)})
    cfg = load_config(path)
    assert cfg["database_url"] == f"sqlite:///{db_file.resolve()}"
    assert db_file.parent.is_dir()


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("CLUSTERINTEL_DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    cfg = load_config(_write(tmp_path, {"chroma_path": str(tmp_path)}))
    assert cfg["database_url"] == "sqlite:///:memory:"
    assert cfg["claude_api_key"] == "test-key"


def test_page_size_is_capped(tmp_path, monkeypatch):
    monkeypatch.setenv("CLUSTERINTEL_DATABASE_URL", "sqlite://")
    cfg = load_config(_write(tmp_path, {"chroma_path": str(tmp_path), "clustering": {"page_size": 5000}}))
    assert cfg["clustering"]["page_size"] == MAX_PAGE_SIZE
