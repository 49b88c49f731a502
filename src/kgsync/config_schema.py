"""Unified configuration schema for kgsync.

Defines Pydantic models for the unified config structure with dedicated
sections for the project layout, the knowledge graph store, sync behaviour
and logging.  Includes an adapter that flattens the sections into the
fallback dict consumed by ``config.load_config()``.

Usage:
    from kgsync.config_schema import build_config, to_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ProjectConfig(BaseModel):
    """Project layout.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    root: str | None = Field(default=None, description="Project root")
    modules_dir: str = Field(
        default="src/modules",
        description="Generated module tree, relative to the project root",
    )

    model_config = {"frozen": True}


class StoreConfig(BaseModel):
    """Knowledge graph store settings."""

    path: str = Field(
        default=".kgsync/knowledge_graph.db",
        description="SQLite database path, relative to the project root",
    )

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Reconciliation settings.

    Attributes:
        history_file: Sync history log path.
        chunk_size: Files analysed concurrently during a scan.
        non_interactive: Never prompt; conflicts stay manual and
            unforced confirmations decline.
        default_strategy: Strategy used when none is passed explicitly.
    """

    history_file: str = Field(
        default=".kgsync/sync_history.json",
        description="Sync history path, relative to the project root",
    )
    chunk_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Files analysed concurrently (1-1000)",
    )
    non_interactive: bool = Field(
        default=False, description="Never block on a prompt"
    )
    default_strategy: str | None = Field(
        default=None,
        description="use_code, use_kg, merge or manual",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> load_config() fallbacks
# ---------------------------------------------------------------------------


def to_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten a ``UnifiedConfig`` into the ``yaml_fallbacks`` dict of
    ``load_config()``.

    ``project.root`` is only included when set, so the current directory
    remains the default root.
    """
    fallbacks = {
        "modules_dir": unified.project.modules_dir,
        "store_path": unified.store.path,
        "history_file": unified.sync.history_file,
        "chunk_size": unified.sync.chunk_size,
        "non_interactive": unified.sync.non_interactive,
        "default_strategy": unified.sync.default_strategy,
    }
    if unified.project.root:
        fallbacks["project_root"] = unified.project.root
    return fallbacks
