"""
Unified configuration primitives for Tether.

The `TetherConfig` dataclass is the single entry point that downstream
components use to find storage locations (record database, semantic index,
event log), resolution thresholds and record type schemas.

Example usage::

    from pathlib import Path
    from tether.configuration import TetherConfig

    config = TetherConfig.with_root(Path.cwd() / "tether_storage")
    print(config.storage.database_url)

The configuration loader can execute a user supplied `config.py` file::

    from tether.configuration import load_config_from_file

    config = load_config_from_file("/path/to/config.py")

The file must define a variable named ``TETHER_CONFIG`` that is an instance
of :class:`TetherConfig`. Environment variables prefixed with ``TETHER_``
(optionally read from a ``.env`` file) can then be layered on top with
:func:`apply_env_overrides`.
"""

from __future__ import annotations

import dataclasses
import os
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, MutableMapping, Sequence

from dotenv import dotenv_values

from tether.errors import ConfigurationError
from tether.resolution.config import ResolutionConfig
from tether.schema import RecordTypeRegistry, RecordTypeSchema, load_record_type_file

DEFAULT_STORAGE_ROOT_NAME = "tether_storage"
CONFIG_SYMBOL_NAME = "TETHER_CONFIG"
ENV_PREFIX = "TETHER_"
SEMANTIC_BACKENDS = ("chroma", "memory")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _ensure_path(path: Path | str) -> Path:
    result = Path(path).expanduser()
    if not result.is_absolute():
        result = result.resolve()
    return result


@dataclass(slots=True)
class StoragePaths:
    """Filesystem locations used by Tether."""

    root: Path
    database_path: Path
    semantic_index_dir: Path
    log_dir: Path
    database_url_override: str | None = None

    def ensure_directories(self) -> None:
        """Create directories represented by this configuration."""
        for directory in {
            self.root,
            self.database_path.parent,
            self.semantic_index_dir,
            self.log_dir,
        }:
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def database_url(self) -> str:
        """Return the SQLAlchemy URL for the record store."""
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite:///{self.database_path}"


@dataclass(slots=True)
class SemanticIndexSettings:
    """Settings that influence semantic index creation."""

    enabled: bool = True
    backend: str = "chroma"
    collection_name: str = "tether_records"
    embedding_model: str | None = None
    prefer_local_embeddings: bool = True

    def __post_init__(self) -> None:
        if self.backend not in SEMANTIC_BACKENDS:
            raise ConfigurationError(
                f"Unknown semantic index backend {self.backend!r} "
                f"(expected one of {', '.join(SEMANTIC_BACKENDS)})"
            )


@dataclass(slots=True)
class ObservabilitySettings:
    """Global observability and logging configuration."""

    event_log_url: str | None = None
    log_level: str = "INFO"
    enable_resolution_events: bool = True


@dataclass(slots=True)
class TetherConfig:
    """
    Root configuration structure for Tether.

    Attributes:
        storage: Filesystem paths and the record database URL.
        resolution: Thresholds and limits for the resolution engine.
        semantic_index: Semantic index backend preferences.
        observability: Logging and event configuration.
        record_types: Inline record type definitions keyed by name, in the
            same shape as record type files.
        schema_paths: YAML, JSON or TOML files with record type definitions.
        context_fields: Values stamped on created records whose type declares
            the field (``workspace_id``, ``created_by`` ...).
        extras: User-defined metadata dictionary.
    """

    storage: StoragePaths
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    semantic_index: SemanticIndexSettings = field(default_factory=SemanticIndexSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)
    record_types: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    schema_paths: tuple[Path, ...] = field(default_factory=tuple)
    context_fields: Mapping[str, Any] = field(default_factory=dict)
    extras: Mapping[str, Any] = field(default_factory=dict)

    def build_registry(self) -> RecordTypeRegistry:
        """Load schema files, then inline definitions, into a new registry."""
        registry = RecordTypeRegistry()
        for path in self.schema_paths:
            for schema in load_record_type_file(path):
                registry.register(schema)
        for name, definition in self.record_types.items():
            registry.register(RecordTypeSchema.from_dict(name, definition))
        return registry

    @classmethod
    def with_root(
        cls,
        root: Path | str,
        *,
        database_url: str | None = None,
        resolution: ResolutionConfig | None = None,
        semantic_index: SemanticIndexSettings | None = None,
        observability: ObservabilitySettings | None = None,
        record_types: Mapping[str, Mapping[str, Any]] | None = None,
        schema_paths: Sequence[Path | str] | None = None,
        context_fields: Mapping[str, Any] | None = None,
        extras: Mapping[str, Any] | None = None,
    ) -> "TetherConfig":
        """
        Create a TetherConfig with storage paths derived from a root directory.

        Args:
            root: Root directory for all storage backends.
            database_url: Optional SQLAlchemy URL replacing the SQLite file.
            resolution: Optional resolution thresholds.
            semantic_index: Optional semantic index settings.
            observability: Optional observability settings.
            record_types: Optional inline record type definitions.
            schema_paths: Optional record type definition files.
            context_fields: Optional values for created records.
            extras: Optional user-defined metadata.

        Returns:
            Configured TetherConfig instance.
        """
        root_path = _ensure_path(root)
        storage = StoragePaths(
            root=root_path,
            database_path=root_path / "records" / "records.db",
            semantic_index_dir=root_path / "semantic_index",
            log_dir=root_path / "logs",
            database_url_override=database_url,
        )
        return cls(
            storage=storage,
            resolution=resolution or ResolutionConfig(),
            semantic_index=semantic_index or SemanticIndexSettings(),
            observability=observability or ObservabilitySettings(),
            record_types=dict(record_types or {}),
            schema_paths=tuple(_ensure_path(path) for path in schema_paths or ()),
            context_fields=MappingProxyType(dict(context_fields or {})),
            extras=MappingProxyType(dict(extras or {})),
        )


def default_config(root: Path | None = None) -> TetherConfig:
    """Return a default configuration rooted at the provided directory."""
    if root is None:
        root = Path.cwd() / DEFAULT_STORAGE_ROOT_NAME
    return TetherConfig.with_root(root)


def render_default_config(root: Path | None = None) -> str:
    """
    Render the canonical ``config.py`` contents for a user workspace.

    Parameters
    ----------
    root:
        Optional storage root. Defaults to ``<cwd>/tether_storage`` when not
        supplied.

    Returns
    -------
    str
        The string content for a `config.py` file.
    """
    config = default_config(root)
    resolution = config.resolution
    semantic = config.semantic_index
    return textwrap.dedent(
        f"""\
        from pathlib import Path

        from tether.configuration import (
            ObservabilitySettings,
            SemanticIndexSettings,
            TetherConfig,
        )
        from tether.resolution.config import ResolutionConfig, ThresholdOverride


        storage_root = Path({str(config.storage.root)!r})

        resolution = ResolutionConfig(
            reuse_threshold={resolution.reuse_threshold!r},
            consider_threshold={resolution.consider_threshold!r},
            partial_match_score={resolution.partial_match_score!r},
            partial_scoring={resolution.partial_scoring!r},
            max_choices={resolution.max_choices!r},
            parallel_search={resolution.parallel_search!r},
            record_type_overrides={{
                # "product": ThresholdOverride(reuse_threshold=0.95),
            }},
        )

        semantic_index = SemanticIndexSettings(
            enabled={semantic.enabled!r},
            backend={semantic.backend!r},
            collection_name={semantic.collection_name!r},
            embedding_model={semantic.embedding_model!r},
            prefer_local_embeddings={semantic.prefer_local_embeddings!r},
        )

        observability = ObservabilitySettings(
            event_log_url=None,
            log_level="INFO",
            enable_resolution_events=True,
        )

        # Record types can be declared inline or in YAML/JSON/TOML files.
        record_types = {{
            # "customer": {{
            #     "semantic": True,
            #     "fields": {{
            #         "name": {{"type": "string", "required": True}},
            #         "email": {{"type": "email"}},
            #     }},
            # }},
        }}
        schema_paths: tuple[Path, ...] = (
            # Path("/path/to/record_types.yaml"),
        )

        TETHER_CONFIG = TetherConfig.with_root(
            storage_root,
            database_url=None,
            resolution=resolution,
            semantic_index=semantic_index,
            observability=observability,
            record_types=record_types,
            schema_paths=schema_paths,
            context_fields={{}},
        )
        """
    )


def load_config_from_file(path: Path | str) -> TetherConfig:
    """
    Execute a user provided config module and return ``TetherConfig``.

    The target file must define a global named ``TETHER_CONFIG`` that is an
    instance of :class:`TetherConfig`.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    namespace: MutableMapping[str, Any] = {}
    code = path.read_text()
    compiled = compile(code, str(path), "exec")
    exec(compiled, namespace, namespace)  # noqa: S102 (exec used for config loading)

    if CONFIG_SYMBOL_NAME not in namespace:
        raise ConfigurationError(
            f"Configuration file {path} must define `{CONFIG_SYMBOL_NAME}`"
        )

    config_obj = namespace[CONFIG_SYMBOL_NAME]
    if not isinstance(config_obj, TetherConfig):
        raise ConfigurationError(
            f"{CONFIG_SYMBOL_NAME} in {path} must be a TetherConfig, "
            f"got {type(config_obj)!r}"
        )

    return config_obj


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


_RESOLUTION_VARIABLES = {
    "REUSE_THRESHOLD": ("reuse_threshold", _parse_float),
    "CONSIDER_THRESHOLD": ("consider_threshold", _parse_float),
    "PARTIAL_MATCH_SCORE": ("partial_match_score", _parse_float),
    "PARTIAL_SCORING": ("partial_scoring", lambda name, raw: raw.strip()),
    "MAX_CHOICES": ("max_choices", _parse_int),
    "PARALLEL_SEARCH": ("parallel_search", _parse_bool),
    "MAX_CREATION_RETRIES": ("max_creation_retries", _parse_int),
}


def apply_env_overrides(
    config: TetherConfig,
    *,
    env_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> TetherConfig:
    """
    Return a copy of ``config`` with ``TETHER_*`` variables applied.

    Values from ``env_file`` (parsed with python-dotenv) are read first and
    the process environment wins over them. Recognised variables:
    ``TETHER_DATABASE_URL``, ``TETHER_LOG_LEVEL``, ``TETHER_EVENT_LOG_URL``,
    ``TETHER_SEMANTIC_ENABLED``, ``TETHER_SEMANTIC_BACKEND``,
    ``TETHER_EMBEDDING_MODEL`` and the resolution settings
    ``TETHER_REUSE_THRESHOLD``, ``TETHER_CONSIDER_THRESHOLD``,
    ``TETHER_PARTIAL_MATCH_SCORE``, ``TETHER_PARTIAL_SCORING``,
    ``TETHER_MAX_CHOICES``, ``TETHER_PARALLEL_SEARCH`` and
    ``TETHER_MAX_CREATION_RETRIES``.
    """
    values: dict[str, str] = {}
    if env_file is not None:
        values.update(
            {key: value for key, value in dotenv_values(env_file).items() if value is not None}
        )
    values.update(os.environ if environ is None else environ)
    settings = {
        key[len(ENV_PREFIX):]: value
        for key, value in values.items()
        if key.startswith(ENV_PREFIX)
    }
    if not settings:
        return config

    storage = config.storage
    if "DATABASE_URL" in settings:
        storage = dataclasses.replace(storage, database_url_override=settings["DATABASE_URL"])

    observability = config.observability
    if "LOG_LEVEL" in settings:
        observability = dataclasses.replace(observability, log_level=settings["LOG_LEVEL"].upper())
    if "EVENT_LOG_URL" in settings:
        observability = dataclasses.replace(observability, event_log_url=settings["EVENT_LOG_URL"])

    semantic = config.semantic_index
    if "SEMANTIC_ENABLED" in settings:
        semantic = dataclasses.replace(
            semantic,
            enabled=_parse_bool("TETHER_SEMANTIC_ENABLED", settings["SEMANTIC_ENABLED"]),
        )
    if "SEMANTIC_BACKEND" in settings:
        semantic = dataclasses.replace(semantic, backend=settings["SEMANTIC_BACKEND"].strip().lower())
    if "EMBEDDING_MODEL" in settings:
        semantic = dataclasses.replace(semantic, embedding_model=settings["EMBEDDING_MODEL"])

    resolution_changes = {}
    for suffix, (attribute, parse) in _RESOLUTION_VARIABLES.items():
        if suffix in settings:
            resolution_changes[attribute] = parse(ENV_PREFIX + suffix, settings[suffix])
    resolution = config.resolution
    if resolution_changes:
        resolution = dataclasses.replace(resolution, **resolution_changes)

    return dataclasses.replace(
        config,
        storage=storage,
        observability=observability,
        semantic_index=semantic,
        resolution=resolution,
    )


__all__ = [
    "CONFIG_SYMBOL_NAME",
    "ConfigurationError",
    "DEFAULT_STORAGE_ROOT_NAME",
    "ObservabilitySettings",
    "SemanticIndexSettings",
    "StoragePaths",
    "TetherConfig",
    "apply_env_overrides",
    "default_config",
    "load_config_from_file",
    "render_default_config",
]
