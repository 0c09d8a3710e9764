from __future__ import annotations

import json
from pathlib import Path

import pytest

from tether.configuration import (
    ObservabilitySettings,
    SemanticIndexSettings,
    TetherConfig,
    apply_env_overrides,
    default_config,
    load_config_from_file,
    render_default_config,
)
from tether.errors import ConfigurationError
from tether.resolution import ResolutionConfig


def test_tether_config_defaults(tmp_path: Path) -> None:
    config = TetherConfig.with_root(tmp_path)

    assert config.storage.database_path == tmp_path / "records" / "records.db"
    assert config.storage.database_url == f"sqlite:///{tmp_path / 'records' / 'records.db'}"
    assert config.observability.event_log_url is None
    assert config.semantic_index.collection_name == "tether_records"
    assert config.resolution.reuse_threshold == 0.9
    assert len(config.build_registry()) == 0


def test_tether_config_with_custom_settings(tmp_path: Path) -> None:
    config = TetherConfig.with_root(
        tmp_path,
        database_url="postgresql+psycopg://db/tether",
        resolution=ResolutionConfig(reuse_threshold=0.95, partial_scoring="fuzzy"),
        semantic_index=SemanticIndexSettings(backend="memory", collection_name="crm"),
        observability=ObservabilitySettings(event_log_url="sqlite:///events.db"),
        context_fields={"workspace_id": 5},
    )

    assert config.storage.database_url == "postgresql+psycopg://db/tether"
    assert config.resolution.partial_scoring == "fuzzy"
    assert config.semantic_index.backend == "memory"
    assert config.observability.event_log_url == "sqlite:///events.db"
    assert config.context_fields["workspace_id"] == 5


def test_ensure_directories(tmp_path: Path) -> None:
    config = default_config(tmp_path / "storage")

    config.storage.ensure_directories()

    assert (tmp_path / "storage" / "records").is_dir()
    assert (tmp_path / "storage" / "semantic_index").is_dir()
    assert (tmp_path / "storage" / "logs").is_dir()


def test_unknown_semantic_backend() -> None:
    with pytest.raises(ConfigurationError):
        SemanticIndexSettings(backend="pinecone")


def test_build_registry_from_files_and_inline(tmp_path: Path) -> None:
    yaml_file = tmp_path / "crm.yaml"
    yaml_file.write_text(
        "record_types:\n"
        "  customer:\n"
        "    semantic: true\n"
        "    fields:\n"
        "      name: {type: string, required: true}\n"
        "      email: {type: email}\n"
    )
    json_file = tmp_path / "catalog.json"
    json_file.write_text(json.dumps({"product": {"fields": {"name": {"required": True}}}}))

    config = TetherConfig.with_root(
        tmp_path,
        schema_paths=[yaml_file, json_file],
        record_types={"customer": {"fields": {"name": {"type": "string"}}}},
    )
    registry = config.build_registry()

    assert registry.names() == ["customer", "product"]
    assert registry.get("customer").semantic is False
    assert registry.get("product").field_schema("name").required is True


def test_load_config_from_file(tmp_path: Path) -> None:
    config_py = tmp_path / "config.py"
    storage_root = tmp_path / "storage_root"
    config_py.write_text(
        "\n".join(
            [
                "from pathlib import Path",
                "from tether.configuration import TetherConfig",
                "",
                f"storage_root = Path({repr(str(storage_root))})",
                "",
                "TETHER_CONFIG = TetherConfig.with_root(storage_root)",
                "",
            ]
        )
    )

    config = load_config_from_file(config_py)

    assert config.storage.root == storage_root


def test_load_config_requires_symbol(tmp_path: Path) -> None:
    config_py = tmp_path / "config.py"
    config_py.write_text("CONFIG = None\n")

    with pytest.raises(ConfigurationError):
        load_config_from_file(config_py)
    with pytest.raises(ConfigurationError):
        load_config_from_file(tmp_path / "missing.py")


def test_rendered_default_config_loads(tmp_path: Path) -> None:
    config_py = tmp_path / "config.py"
    config_py.write_text(render_default_config(tmp_path / "storage"))

    config = load_config_from_file(config_py)

    assert config.storage.root == tmp_path / "storage"
    assert config.resolution == ResolutionConfig()


class TestEnvOverrides:
    """TETHER_* variables layered over a config."""

    def test_environment_values(self, tmp_path: Path):
        config = TetherConfig.with_root(tmp_path)

        updated = apply_env_overrides(config, environ={
            "TETHER_DATABASE_URL": "sqlite:///other.db",
            "TETHER_LOG_LEVEL": "debug",
            "TETHER_SEMANTIC_BACKEND": "Memory",
            "TETHER_REUSE_THRESHOLD": "0.95",
            "TETHER_PARALLEL_SEARCH": "yes",
            "TETHER_MAX_CHOICES": "5",
            "UNRELATED": "ignored",
        })

        assert updated.storage.database_url == "sqlite:///other.db"
        assert updated.observability.log_level == "DEBUG"
        assert updated.semantic_index.backend == "memory"
        assert updated.resolution.reuse_threshold == 0.95
        assert updated.resolution.parallel_search is True
        assert updated.resolution.max_choices == 5
        assert config.storage.database_url != "sqlite:///other.db"

    def test_env_file_loses_to_environment(self, tmp_path: Path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "TETHER_SEMANTIC_ENABLED=false\n"
            "TETHER_CONSIDER_THRESHOLD=0.6\n"
        )

        updated = apply_env_overrides(
            TetherConfig.with_root(tmp_path),
            env_file=env_file,
            environ={"TETHER_CONSIDER_THRESHOLD": "0.65"},
        )

        assert updated.semantic_index.enabled is False
        assert updated.resolution.consider_threshold == 0.65

    def test_no_variables_returns_same_config(self, tmp_path: Path):
        config = TetherConfig.with_root(tmp_path)

        assert apply_env_overrides(config, environ={}) is config

    @pytest.mark.parametrize(
        "environ",
        [
            {"TETHER_REUSE_THRESHOLD": "high"},
            {"TETHER_REUSE_THRESHOLD": "0.5"},
            {"TETHER_PARALLEL_SEARCH": "sometimes"},
            {"TETHER_MAX_CHOICES": "0"},
            {"TETHER_SEMANTIC_BACKEND": "pinecone"},
            {"TETHER_PARTIAL_SCORING": "random"},
        ],
    )
    def test_bad_values_raise(self, tmp_path: Path, environ):
        with pytest.raises(ConfigurationError):
            apply_env_overrides(TetherConfig.with_root(tmp_path), environ=environ)
