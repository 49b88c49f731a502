"""Runtime configuration for the kgsync CLI and MCP server.

Reads project layout and sync settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    KGSYNC_PROJECT_ROOT: Project root directory (default: current directory)
    KGSYNC_MODULES_DIR: Generated module tree (default: src/modules)
    KGSYNC_STORE_PATH: Knowledge graph database (default: .kgsync/knowledge_graph.db)
    KGSYNC_HISTORY_FILE: Sync history log (default: .kgsync/sync_history.json)
    KGSYNC_CHUNK_SIZE: Files analysed concurrently (optional, default: 10)
    KGSYNC_NON_INTERACTIVE: Never prompt (optional, default: false)

Relative paths are resolved against the project root.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .sync.models import ConflictStrategy

logger = logging.getLogger(__name__)

DEFAULT_MODULES_DIR = "src/modules"
DEFAULT_STORE_PATH = ".kgsync/knowledge_graph.db"
DEFAULT_HISTORY_FILE = ".kgsync/sync_history.json"
DEFAULT_CHUNK_SIZE = 10


@dataclass
class Config:
    project_root: Path
    modules_dir: Path
    store_path: Path
    history_file: Path
    chunk_size: int = DEFAULT_CHUNK_SIZE
    non_interactive: bool = False
    default_strategy: str | None = None
    debug: bool = False


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the project root is missing, the chunk size is out
            of range or the default strategy is unknown.
    """
    if not config.project_root.is_dir():
        raise ValueError(
            f"Project root '{config.project_root}' is not a directory. "
            "Set KGSYNC_PROJECT_ROOT or pass --project-root."
        )

    if not (1 <= config.chunk_size <= 1000):
        raise ValueError(
            f"Invalid chunk size {config.chunk_size}: must be a number between 1 and 1000"
        )

    if config.default_strategy is not None:
        valid = [s.value for s in ConflictStrategy]
        normalised = config.default_strategy.strip().lower().replace("-", "_")
        if normalised not in valid:
            raise ValueError(
                f"Invalid default strategy '{config.default_strategy}': "
                f"must be one of {', '.join(valid)}"
            )
        config.default_strategy = normalised

    if config.store_path.exists() and config.store_path.is_dir():
        raise ValueError(
            f"Store path '{config.store_path}' is a directory, expected a database file"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve(root: Path, value: str | Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def load_config(
    project_root: str | None = None,
    modules_dir: str | None = None,
    store_path: str | None = None,
    history_file: str | None = None,
    non_interactive: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        project_root: Override project root directory.
        modules_dir: Override generated module tree.
        store_path: Override knowledge graph database path.
        history_file: Override sync history path.
        non_interactive: Never prompt (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict from ``config_schema.to_fallbacks()``.
            Used when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- Paths: CLI > env > YAML > default ---

    root = Path(
        project_root
        or os.getenv("KGSYNC_PROJECT_ROOT")
        or fb.get("project_root")
        or "."
    ).expanduser().resolve()

    final_modules_dir = _resolve(
        root,
        modules_dir
        or os.getenv("KGSYNC_MODULES_DIR")
        or fb.get("modules_dir")
        or DEFAULT_MODULES_DIR,
    )
    final_store_path = _resolve(
        root,
        store_path
        or os.getenv("KGSYNC_STORE_PATH")
        or fb.get("store_path")
        or DEFAULT_STORE_PATH,
    )
    final_history_file = _resolve(
        root,
        history_file
        or os.getenv("KGSYNC_HISTORY_FILE")
        or fb.get("history_file")
        or DEFAULT_HISTORY_FILE,
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if non_interactive:
        final_non_interactive = True
    else:
        env_non_interactive = _get_bool_env("KGSYNC_NON_INTERACTIVE")
        if env_non_interactive is not None:
            final_non_interactive = env_non_interactive
        else:
            final_non_interactive = bool(fb.get("non_interactive", False))

    # --- Numeric fields: env > YAML > default ---

    chunk_raw = os.getenv("KGSYNC_CHUNK_SIZE")
    if chunk_raw is not None:
        try:
            final_chunk_size = int(chunk_raw)
        except ValueError:
            raise ValueError(
                f"Invalid KGSYNC_CHUNK_SIZE '{chunk_raw}': must be a number between 1 and 1000"
            ) from None
    elif "chunk_size" in fb:
        final_chunk_size = int(fb["chunk_size"])
    else:
        final_chunk_size = DEFAULT_CHUNK_SIZE

    config = Config(
        project_root=root,
        modules_dir=final_modules_dir,
        store_path=final_store_path,
        history_file=final_history_file,
        chunk_size=final_chunk_size,
        non_interactive=final_non_interactive,
        default_strategy=fb.get("default_strategy"),
        debug=debug,
    )

    validate_config(config)

    return config
