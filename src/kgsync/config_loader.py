"""
Hierarchical configuration loader for kgsync.

Finds config files by convention, supports YAML ``!include`` and
``${VAR:-default}`` interpolation, and merges the files section by section
with "project wins" semantics.

Usage:
    from kgsync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config(project_root)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "KGSYNC_CONFIG"
PROJECT_CONFIG_DIR = ".kgsync"

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` / ``${VAR:-default}`` from the environment.

    An unset or empty variable takes the default, or ``""`` without one.
    A ``${`` with no closing brace is left as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {key: _interpolate(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# YAML loading with !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``yaml.SafeLoader`` subclass that understands ``!include``.

    Each loader carries the chain of files being loaded so circular
    includes are reported instead of recursing forever.
    """

    include_chain: tuple[Path, ...] = ()


def _include(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    if target in loader.include_chain:
        chain = " -> ".join(str(p) for p in (*loader.include_chain, target))
        raise ValueError(f"Circular include detected: {chain}")
    if not target.is_file():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml_file(target, _chain=loader.include_chain)


ConfigLoader.add_constructor("!include", _include)


def load_yaml_file(path: Path, *, _chain: tuple[Path, ...] = ()) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = Path(path).resolve()
    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader.include_chain = (*_chain, path)
        try:
            return loader.get_single_data()
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files(project_root: Path | None = None) -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``KGSYNC_CONFIG`` env var (explicit single path)
        2. ``<project_root>/.kgsync/config.yml``
        3. ``<project_root>/.kgsync/config.yaml``
        4. ``~/.config/kgsync/config.yml`` (user-wide)

    *project_root* defaults to the current directory.
    """
    root = Path(project_root) if project_root else Path.cwd()
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    candidates.append(root / PROJECT_CONFIG_DIR / "config.yml")
    candidates.append(root / PROJECT_CONFIG_DIR / "config.yaml")
    candidates.append(Path.home() / ".config" / "kgsync" / "config.yml")

    return [p for p in candidates if p.is_file()]


_STARTER_CONFIG = """\
# kgsync configuration
#
# Every value can also be set through the environment:
#   KGSYNC_PROJECT_ROOT, KGSYNC_MODULES_DIR, KGSYNC_STORE_PATH,
#   KGSYNC_HISTORY_FILE, KGSYNC_CHUNK_SIZE, KGSYNC_NON_INTERACTIVE
#
# project:
#   modules_dir: src/modules
#
# store:
#   path: .kgsync/knowledge_graph.db
#
# sync:
#   history_file: .kgsync/sync_history.json
#   chunk_size: 10
#   non_interactive: false
#   default_strategy: manual
#
# logging:
#   level: INFO
#   file: null
"""


def ensure_config(project_root: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none.

    The starter goes to ``<project_root>/.kgsync/config.yml``.
    """
    existing = discover_config_files(project_root)
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    root = Path(project_root) if project_root else Path.cwd()
    config_path = root / PROJECT_CONFIG_DIR / "config.yml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(
    project_root: Path | None = None,
) -> dict[str, Any]:
    """Load and merge every discovered config file.

    Files are applied from lowest to highest precedence.  Section dicts
    (``project``, ``store``, ...) are merged key by key so a project file
    can override one setting of a user-wide section; any other top-level
    value is replaced.  Env var interpolation runs after the merge.

    Returns an empty dict when no config files exist (zero-config).
    """
    paths = discover_config_files(project_root)
    if not paths:
        logger.debug("No config files found -- using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = load_yaml_file(path)
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Config file %s has non-mapping root (%s) -- skipping",
                path,
                type(data).__name__,
            )
            continue
        for key, value in data.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged[key] = {**current, **value}
            else:
                merged[key] = value

    return _interpolate(merged)
