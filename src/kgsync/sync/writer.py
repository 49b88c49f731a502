"""Code writer used by push and by conflict resolution.

Renders a knowledge-graph entity as a generated Python module under the
module tree (``<modules_dir>/<module>/<type>s/<Name>.py``) and removes the
generated file of an entity that no longer exists in the graph.  Output is
written through ``file_handler.write_file`` and always stays inside
``modules_dir``.
"""

from __future__ import annotations

import keyword
import logging
from pathlib import Path

from ..file_handler import validate_output_path, write_file
from .analyzer import SOURCE_SUFFIX, CodeAnalyzer
from .models import CODE, ExtractedEntity

logger = logging.getLogger(__name__)


def _check_identifier(name: str, what: str) -> None:
    if not name.isidentifier() or keyword.iskeyword(name):
        raise ValueError(f"Invalid {what} name for generated code: {name!r}")


def render_entity_source(entity: ExtractedEntity) -> str:
    """Render *entity* as the source of a generated Python module.

    Raises:
        ValueError: If a name is not a valid Python identifier.
    """
    _check_identifier(entity.name, "entity")
    for prop in entity.properties:
        _check_identifier(prop, "property")
    for method in entity.methods:
        _check_identifier(method, "method")

    module_desc = f" of module {entity.module}" if entity.module else ""
    lines = [
        f'"""{entity.type.capitalize()} {entity.name}{module_desc}.',
        "",
        "Generated by kgsync from the knowledge graph.",
        '"""',
        "",
        "from typing import Any",
        "",
        "",
        f"class {entity.name}:",
    ]
    body: list[str] = [f"    {prop}: Any = None" for prop in entity.properties]
    for method in entity.methods:
        if body:
            body.append("")
        body.append(f"    def {method}(self, *args: Any, **kwargs: Any) -> Any:")
        body.append("        raise NotImplementedError")
    if not body:
        body.append("    pass")
    lines.extend(body)
    return "\n".join(lines) + "\n"


class SourceCodeWriter:
    """Write and remove generated entity modules.

    Args:
        modules_dir: Root of the generated module tree.
        analyzer: Analyzer used to check a file before removing it.
    """

    def __init__(
        self, modules_dir: Path, analyzer: CodeAnalyzer | None = None
    ) -> None:
        self.modules_dir = Path(modules_dir)
        self.analyzer = analyzer or CodeAnalyzer(self.modules_dir)

    def entity_path(self, entity: ExtractedEntity) -> Path:
        """Generated file location for *entity*."""
        if not entity.module:
            raise ValueError(
                f"Entity {entity.key} has no module; cannot generate code"
            )
        return (
            self.modules_dir
            / entity.module
            / f"{entity.type}s"
            / f"{entity.name}{SOURCE_SUFFIX}"
        )

    def write_entity(self, entity: ExtractedEntity) -> Path:
        """Render *entity* and write it to its generated file."""
        path = validate_output_path(
            self._existing_path(entity) or self.entity_path(entity),
            self.modules_dir,
        )
        if path.exists():
            self._ensure_sole_definition(path, entity)
        source = render_entity_source(entity)
        write_file(path, source)
        logger.debug("Wrote %s to %s", entity.key, path)
        return path

    def remove_entity(self, entity: ExtractedEntity) -> Path:
        """Delete the generated file of *entity*.

        Raises:
            ValueError: If the file is outside ``modules_dir`` or also
                defines other entities.
            FileNotFoundError: If the file does not exist.
        """
        path = validate_output_path(
            self._existing_path(entity) or self.entity_path(entity),
            self.modules_dir,
        )
        if not path.exists():
            raise FileNotFoundError(f"Generated file not found: {path}")

        self._ensure_sole_definition(path, entity)
        path.unlink()
        logger.debug("Removed %s (%s)", path, entity.key)
        return path

    def _ensure_sole_definition(
        self, path: Path, entity: ExtractedEntity
    ) -> None:
        others = [
            e.name
            for e in self.analyzer.analyze(path) or []
            if e.name != entity.name
        ]
        if others:
            raise ValueError(
                f"{path} also defines {', '.join(others)}; "
                "edit the file by hand"
            )

    @staticmethod
    def _existing_path(entity: ExtractedEntity) -> Path | None:
        if entity.location.source == CODE and entity.location.path:
            return Path(entity.location.path)
        return None
