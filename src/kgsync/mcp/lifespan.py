"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from ..core.runtime import create_manager, load_runtime_config
from ..errors import StoreConnectionError
from ..sync.prompts import CancellationToken, NonInteractivePrompt

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Resolve configuration: CLI > env vars (.env) > YAML > defaults
    - Open the knowledge graph (creating the schema if needed)
    - Build a non-interactive ``SyncManager``
    - Fail fast if configuration or the store is unusable

    On shutdown:
    - Cancel any pending prompt through the cancellation token

    Args:
        config_overrides: Optional dict with config values from CLI
            (project_root, modules_dir, store_path, history_file)

    Yields:
        Dict with 'manager' (SyncManager) and 'config' (Config)

    Raises:
        RuntimeError: If configuration is invalid or the store cannot be
            opened.
    """
    logger.info("MCP server starting...")
    _stderr_print("kgsync MCP server starting...")

    try:
        config, _ = load_runtime_config(
            {**(config_overrides or {}), "non_interactive": True}
        )
    except (ValueError, OSError) as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    _stderr_print(f"  Project root: {config.project_root}")
    _stderr_print(f"  Modules: {config.modules_dir}")

    token = CancellationToken()
    try:
        manager = create_manager(
            config, prompt=NonInteractivePrompt(), cancel_token=token
        )
    except StoreConnectionError as e:
        logger.error("Failed to open knowledge graph: %s", e)
        _stderr_print(f"ERROR: {e}")
        raise RuntimeError(str(e)) from e

    logger.info("Knowledge graph ready at %s", config.store_path)
    _stderr_print(f"  Knowledge graph: {config.store_path}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"manager": manager, "config": config}
    finally:
        token.cancel()
        logger.info("MCP server shutting down")
        _stderr_print("kgsync MCP server shutting down.")
