"""Shared pytest fixtures for kgsync tests."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from kgsync.sync.history import SyncHistory
from kgsync.sync.manager import SyncManager
from kgsync.sync.models import (
    CODE,
    KNOWLEDGE_GRAPH,
    ExtractedEntity,
    SourceLocation,
)
from kgsync.sync.prompts import NonInteractivePrompt
from kgsync.sync.store import StoredEntity, StoredModule


def make_entity(
    name: str,
    *,
    type: str = "thing",
    module: str | None = "user",
    properties: list[str] | None = None,
    methods: list[str] | None = None,
    source: str = CODE,
    path: str | None = None,
) -> ExtractedEntity:
    """Build an ``ExtractedEntity`` snapshot for either side."""
    if source == CODE and path is None and module:
        path = f"src/modules/{module}/{type}s/{name}.py"
    return ExtractedEntity(
        type=type,
        name=name,
        module=module,
        properties=properties or [],
        methods=methods or [],
        location=SourceLocation(
            source=source, path=path if source == CODE else None
        ),
    )


def make_kg_entity(name: str, **kwargs) -> ExtractedEntity:
    """Build a knowledge-graph-side snapshot."""
    return make_entity(name, source=KNOWLEDGE_GRAPH, **kwargs)


class FakeStore:
    """In-memory knowledge graph store with per-type readers.

    ``entities`` maps module name to a list of ``(type, StoredEntity)``.
    ``fail_on`` names entities whose writes raise ``RuntimeError``.
    """

    def __init__(self, entities=None, fail_on=()):
        self.entities = entities or {}
        self.fail_on = set(fail_on)
        self.upserted: list[ExtractedEntity] = []
        self.deleted: list[ExtractedEntity] = []

    def add(self, entity: ExtractedEntity) -> None:
        rows = self.entities.setdefault(entity.module, [])
        rows.append(
            (
                entity.type,
                StoredEntity(
                    id=f"{entity.module}-{entity.name}",
                    module_id=entity.module,
                    name=entity.name,
                    properties=list(entity.properties),
                    methods=list(entity.methods),
                ),
            )
        )

    def get_modules(self):
        return [StoredModule(id=name, name=name) for name in self.entities]

    def _rows(self, module_id, entity_type):
        return [
            row
            for row_type, row in self.entities.get(module_id, [])
            if row_type == entity_type
        ]

    def get_things_by_module(self, module_id):
        return self._rows(module_id, "thing")

    def get_behaviors_by_module(self, module_id):
        return self._rows(module_id, "behavior")

    def upsert_entity(self, entity):
        if entity.name in self.fail_on:
            raise RuntimeError(f"cannot write {entity.name}")
        self.upserted.append(entity)

    def delete_entity(self, entity):
        if entity.name in self.fail_on:
            raise RuntimeError(f"cannot delete {entity.name}")
        self.deleted.append(entity)


class StaticAnalyzer:
    """Analyzer stand-in that returns a fixed entity list per file."""

    def __init__(self, by_file: dict[str, list[ExtractedEntity]]):
        self.by_file = by_file
        self.calls: list[Path] = []

    def analyze(self, file_path):
        self.calls.append(Path(file_path))
        return self.by_file.get(str(Path(file_path)))


class ScriptedPrompt:
    """Prompt stand-in returning canned answers and recording questions."""

    def __init__(self, strategy: str = "manual", confirm: bool = True):
        self.strategy = strategy
        self.answer = confirm
        self.strategy_calls = []
        self.confirm_calls = []

    async def prompt_strategy(self, conflict):
        self.strategy_calls.append(conflict)
        return self.strategy

    async def confirm(self, question):
        self.confirm_calls.append(question)
        return self.answer


def write_source(modules_dir: Path, module: str, kind: str, name: str, body: str) -> Path:
    """Write a generated source file at ``<module>/<kind>s/<name>.py``."""
    path = modules_dir / module / f"{kind}s" / f"{name}.py"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")
    return path


@pytest.fixture
def modules_dir(tmp_path: Path) -> Path:
    path = tmp_path / "src" / "modules"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def history(tmp_path: Path) -> SyncHistory:
    return SyncHistory(tmp_path / ".kgsync" / "sync_history.json")


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def mock_writer():
    """MagicMock code writer (``write_entity`` / ``remove_entity``)."""
    return MagicMock()


@pytest.fixture
def make_manager(modules_dir, history, fake_store, mock_writer):
    """Factory for a ``SyncManager`` wired to in-memory collaborators."""

    def _make(code_entities=None, prompt=None, store=None, **kwargs):
        analyzer = None
        if code_entities is not None:
            by_file: dict[str, list[ExtractedEntity]] = {}
            for ent in code_entities:
                path = write_source(
                    modules_dir, ent.module, ent.type, ent.name, "# generated\n"
                )
                by_file.setdefault(str(path), []).append(ent)
            analyzer = StaticAnalyzer(by_file)
        return SyncManager(
            store if store is not None else fake_store,
            analyzer=analyzer,
            writer=mock_writer,
            history=history,
            prompt=prompt or NonInteractivePrompt(),
            modules_dir=modules_dir,
            **kwargs,
        )

    return _make
