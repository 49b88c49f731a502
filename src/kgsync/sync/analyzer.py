"""Source entity extraction for generated Python code.

``CodeAnalyzer.analyze()`` parses one file with :mod:`ast` and returns the
public top-level classes and functions as ``ExtractedEntity`` snapshots.
Entity type and module are inferred from the generated-code layout::

    <modules_dir>/<module>/<type>s/<Name>.py

e.g. ``src/modules/user/things/User.py`` -> ``thing`` in module ``user``.

The analyzer never raises: unreadable files, syntax errors and files
without public definitions all yield ``None``.
"""

from __future__ import annotations

import ast
import logging
from pathlib import Path

from ..file_handler import read_file_with_encoding
from .models import CODE, ExtractedEntity, SourceLocation

logger = logging.getLogger(__name__)

ENTITY_TYPES: tuple[str, ...] = (
    "thing",
    "behavior",
    "flow",
    "feature",
    "component",
    "domain",
    "module",
    "contract",
    "screen",
    "infrastructure",
    "application",
    "release",
)

SOURCE_SUFFIX = ".py"


def infer_entity_type_and_module(
    file_path: Path, modules_dir: Path | None = None
) -> tuple[str, str | None]:
    """Infer ``(entity_type, module)`` from a generated file's path.

    Falls back to the last ``modules`` path component when *modules_dir*
    is not given or does not contain the file.  An unrecognised type
    directory maps to ``thing``; a path outside the layout uses the
    lower-cased file stem as the type and no module.
    """
    parts: tuple[str, ...] | None = None
    if modules_dir is not None:
        try:
            parts = Path(file_path).resolve().relative_to(
                Path(modules_dir).resolve()
            ).parts
        except ValueError:
            parts = None

    if parts is None:
        all_parts = Path(file_path).parts
        if "modules" in all_parts:
            idx = len(all_parts) - 1 - all_parts[::-1].index("modules")
            parts = all_parts[idx + 1 :]

    if parts is not None and len(parts) >= 3:
        module_name = parts[0]
        entity_type = parts[1]
        if entity_type.endswith("s"):
            entity_type = entity_type[:-1]
        if entity_type not in ENTITY_TYPES:
            entity_type = "thing"
        return entity_type, module_name

    return Path(file_path).stem.lower(), None


def _is_public(name: str) -> bool:
    return not name.startswith("_")


def _class_properties(node: ast.ClassDef) -> list[str]:
    names: list[str] = []

    def _add(name: str) -> None:
        if _is_public(name) and name not in names:
            names.append(name)

    for stmt in node.body:
        if isinstance(stmt, ast.AnnAssign) and isinstance(
            stmt.target, ast.Name
        ):
            _add(stmt.target.id)
        elif isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                if isinstance(target, ast.Name):
                    _add(target.id)

    # Instance attributes assigned in __init__
    for stmt in node.body:
        if isinstance(stmt, ast.FunctionDef) and stmt.name == "__init__":
            for sub in ast.walk(stmt):
                targets: list[ast.expr] = []
                if isinstance(sub, ast.Assign):
                    targets = list(sub.targets)
                elif isinstance(sub, ast.AnnAssign):
                    targets = [sub.target]
                for target in targets:
                    if (
                        isinstance(target, ast.Attribute)
                        and isinstance(target.value, ast.Name)
                        and target.value.id == "self"
                    ):
                        _add(target.attr)
    return names


def _class_methods(node: ast.ClassDef) -> list[str]:
    return [
        stmt.name
        for stmt in node.body
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef))
        and _is_public(stmt.name)
    ]


class CodeAnalyzer:
    """Extract entities from generated Python source files.

    Args:
        modules_dir: Root of the generated module tree, used to infer the
            entity type and module from file paths.
    """

    def __init__(self, modules_dir: Path | None = None) -> None:
        self.modules_dir = modules_dir

    def analyze(self, file_path: Path | str) -> list[ExtractedEntity] | None:
        """Return the public top-level entities defined in *file_path*.

        Returns:
            List of entities, or ``None`` if the file cannot be read or
            parsed or defines nothing public.
        """
        path = Path(file_path)
        if path.suffix != SOURCE_SUFFIX:
            return None

        try:
            source, _ = read_file_with_encoding(path)
            tree = ast.parse(source, filename=str(path))
        except (OSError, SyntaxError, ValueError) as exc:
            logger.debug("Skipping unparseable file %s: %s", path, exc)
            return None

        entity_type, module_name = infer_entity_type_and_module(
            path, self.modules_dir
        )
        location = SourceLocation(source=CODE, path=str(path))
        entities: list[ExtractedEntity] = []

        for node in tree.body:
            if isinstance(node, ast.ClassDef) and _is_public(node.name):
                entities.append(
                    ExtractedEntity(
                        type=entity_type,
                        name=node.name,
                        module=module_name,
                        properties=_class_properties(node),
                        methods=_class_methods(node),
                        location=location,
                    )
                )
            elif isinstance(
                node, (ast.FunctionDef, ast.AsyncFunctionDef)
            ) and _is_public(node.name):
                entities.append(
                    ExtractedEntity(
                        type=entity_type,
                        name=node.name,
                        module=module_name,
                        location=location,
                    )
                )

        return entities or None
