"""Configuration loading and manager construction shared by CLI and MCP."""

import logging
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import UnifiedConfig, build_config, to_fallbacks
from ..sync.history import SyncHistory
from ..sync.manager import SyncManager
from ..sync.optimizer import SyncOptimizer
from ..sync.prompts import CancellationToken
from ..sync.store import SqliteKnowledgeGraph

logger = logging.getLogger(__name__)


def load_runtime_config(
    overrides: dict[str, Any] | None = None,
) -> tuple[Config, UnifiedConfig]:
    """Resolve configuration from every source.

    Precedence: CLI overrides > env vars (``.env`` loaded first) > YAML
    config files > defaults.

    Args:
        overrides: CLI values (project_root, modules_dir, store_path,
            history_file, non_interactive, debug).

    Returns:
        The validated ``Config`` and the ``UnifiedConfig`` it was built
        from (the latter carries the logging section).

    Raises:
        ValueError: If any value is invalid.
    """
    # .env first so ${VAR} interpolation in YAML can see its values
    load_dotenv()

    opts = overrides or {}
    project_root = opts.get("project_root")
    config_files = discover_config_files(project_root)
    unified = build_config(load_hierarchical_config(project_root))
    if config_files:
        logger.info("Configuration loaded from: %s", config_files[0])

    config = load_config(
        project_root=project_root,
        modules_dir=opts.get("modules_dir"),
        store_path=opts.get("store_path"),
        history_file=opts.get("history_file"),
        non_interactive=opts.get("non_interactive", False),
        debug=opts.get("debug", False),
        yaml_fallbacks=to_fallbacks(unified),
    )
    return config, unified


def create_manager(
    config: Config,
    prompt: Any = None,
    cancel_token: CancellationToken | None = None,
) -> SyncManager:
    """Open the knowledge graph and build a ``SyncManager`` for *config*.

    Raises:
        StoreConnectionError: If the database cannot be opened.
    """
    store = SqliteKnowledgeGraph(config.store_path)
    store.initialize()
    logger.debug(
        "Store %s, modules %s, history %s",
        config.store_path,
        config.modules_dir,
        config.history_file,
    )
    return SyncManager(
        store,
        history=SyncHistory(config.history_file),
        prompt=prompt,
        modules_dir=config.modules_dir,
        optimizer=SyncOptimizer(chunk_size=config.chunk_size),
        cancel_token=cancel_token,
    )
