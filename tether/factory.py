"""Builds stores, indexes and sessions from a TetherConfig."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from tether.configuration import TetherConfig, default_config
from tether.observability import (
    EventLogStore,
    EventRecorder,
    attach_persistent_observer,
    configure_logging,
    get_event_recorder,
)
from tether.observability.logging import LOGGER
from tether.records import RecordStore, SQLRecordStore
from tether.resolution.session import ResolutionSession
from tether.schema import RecordTypeRegistry
from tether.semantic import ChromaSemanticIndex, InMemorySemanticIndex, SemanticIndex
from tether.semantic.embeddings import EmbeddingFunction


def create_record_store(config: TetherConfig, registry: RecordTypeRegistry) -> RecordStore:
    """SQL record store at the configured URL, holding every registered type."""
    if config.storage.database_url_override is None:
        config.storage.ensure_directories()
    return SQLRecordStore(config.storage.database_url, record_types=registry.names())


def create_semantic_indexes(
    config: TetherConfig,
    registry: RecordTypeRegistry,
    *,
    embedding_function: Optional[EmbeddingFunction] = None,
) -> Dict[str, SemanticIndex]:
    """One shared index, mapped to every record type marked ``semantic``."""
    settings = config.semantic_index
    semantic_types = registry.semantic_types()
    if not settings.enabled or not semantic_types:
        return {}

    index: SemanticIndex
    if settings.backend == "memory":
        index = InMemorySemanticIndex(embedding_function)
    else:
        config.storage.ensure_directories()
        index = ChromaSemanticIndex(
            collection_name=settings.collection_name,
            persist_directory=str(config.storage.semantic_index_dir),
            embedding_model=settings.embedding_model,
            embedding_function=embedding_function,
            prefer_local_embeddings=settings.prefer_local_embeddings,
        )
    return {record_type: index for record_type in semantic_types}


def configure_observability(
    config: TetherConfig,
    recorder: Optional[EventRecorder] = None,
) -> Optional[EventLogStore]:
    """Set up logging and, when configured, the persistent event log.

    Returns the EventLogStore so the caller can close it.
    """
    recorder = recorder or get_event_recorder()
    settings = config.observability
    if settings.enable_resolution_events:
        configure_logging(settings.log_level, recorder=recorder)
    else:
        LOGGER.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    if not settings.event_log_url:
        return None
    store = EventLogStore(settings.event_log_url)
    attach_persistent_observer(recorder, store)
    return store


def create_session(
    config: Optional[TetherConfig] = None,
    *,
    store: Optional[RecordStore] = None,
    registry: Optional[RecordTypeRegistry] = None,
    embedding_function: Optional[EmbeddingFunction] = None,
) -> ResolutionSession:
    """
    Build a ResolutionSession from configuration.

    Args:
        config: Configuration (defaults to ``default_config()``)
        store: Optional record store replacing the configured SQL store
        registry: Optional registry replacing ``config.build_registry()``
        embedding_function: Optional embedding function for semantic indexes

    Returns:
        Ready-to-use ResolutionSession
    """
    config = config or default_config()
    registry = registry or config.build_registry()
    store = store or create_record_store(config, registry)
    indexes = create_semantic_indexes(config, registry, embedding_function=embedding_function)
    return ResolutionSession.create(
        store,
        registry=registry,
        semantic_indexes=indexes,
        config=config.resolution,
        context_fields=config.context_fields,
    )


__all__ = [
    "configure_observability",
    "create_record_store",
    "create_semantic_indexes",
    "create_session",
]
