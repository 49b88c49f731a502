"""Knowledge graph store: protocol and default SQLite implementation.

The sync manager only needs three things from the structured store:

* ``get_modules()`` -- the module listing;
* per-type readers named ``get_<type>s_by_module(module_id)`` -- looked up
  with ``getattr`` so a store may implement any subset of entity types;
* ``upsert_entity()`` / ``delete_entity()`` -- used by pull and by conflict
  resolution to write an entity into the graph.

``SqliteKnowledgeGraph`` is a small relational implementation with one
``modules`` table and one ``entities`` table.  Properties and methods are
stored as JSON arrays so their order survives a round trip.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from ..errors import StoreConnectionError
from .analyzer import ENTITY_TYPES
from .models import KNOWLEDGE_GRAPH, ExtractedEntity, SourceLocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredModule:
    id: str
    name: str


@dataclass(frozen=True)
class StoredEntity:
    """One entity row as returned by the per-type readers."""

    id: str
    module_id: str
    name: str
    properties: list[str] = field(default_factory=list)
    methods: list[str] = field(default_factory=list)


def reader_name(entity_type: str) -> str:
    """Name of the per-type reader, e.g. ``get_things_by_module``."""
    return f"get_{entity_type}s_by_module"


class KnowledgeGraphStore(Protocol):
    """Structural interface consumed by ``SyncManager``."""

    def get_modules(self) -> list[StoredModule]:
        ...  # pragma: no cover

    def upsert_entity(self, entity: ExtractedEntity) -> None:
        ...  # pragma: no cover

    def delete_entity(self, entity: ExtractedEntity) -> None:
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------


class SqliteKnowledgeGraph:
    """Knowledge graph backed by a local SQLite database.

    Usage:
        kg = SqliteKnowledgeGraph(project_root / ".kgsync" / "knowledge_graph.db")
        kg.initialize()
        things = kg.get_things_by_module(module.id)

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StoreConnectionError(
                f"Cannot open knowledge graph at {self.db_path}: {exc}"
            ) from exc
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Create the schema if it does not exist yet."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with closing(self._get_connection()) as conn, conn:
                self._create_schema(conn)
        except (OSError, sqlite3.Error) as exc:
            raise StoreConnectionError(
                f"Cannot initialize knowledge graph at {self.db_path}: {exc}"
            ) from exc
        logger.debug("Knowledge graph schema ready at %s", self.db_path)

    @staticmethod
    def _create_schema(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS modules (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS entities (
                id TEXT PRIMARY KEY,
                module_id TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                name TEXT NOT NULL,
                properties_json TEXT DEFAULT '[]',
                methods_json TEXT DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (module_id) REFERENCES modules(id)
            )
        """)
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_key "
            "ON entities(module_id, entity_type, name)"
        )

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def get_modules(self) -> list[StoredModule]:
        rows = self._query("SELECT id, name FROM modules ORDER BY name")
        return [StoredModule(id=row["id"], name=row["name"]) for row in rows]

    def get_entities_by_module(
        self, module_id: str, entity_type: str
    ) -> list[StoredEntity]:
        rows = self._query(
            "SELECT id, module_id, name, properties_json, methods_json "
            "FROM entities WHERE module_id = ? AND entity_type = ? "
            "ORDER BY name",
            (module_id, entity_type),
        )
        return [
            StoredEntity(
                id=row["id"],
                module_id=row["module_id"],
                name=row["name"],
                properties=json.loads(row["properties_json"] or "[]"),
                methods=json.loads(row["methods_json"] or "[]"),
            )
            for row in rows
        ]

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with closing(self._get_connection()) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreConnectionError(
                f"Knowledge graph query failed ({self.db_path}): {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def upsert_entity(self, entity: ExtractedEntity) -> None:
        """Insert or update *entity*, creating its module when needed."""
        if not entity.module:
            raise ValueError(
                f"Entity {entity.key} has no module; cannot store it"
            )
        now = datetime.now(timezone.utc).isoformat()
        with closing(self._get_connection()) as conn, conn:
            module_id = self._ensure_module(conn, entity.module, now)
            conn.execute(
                """
                INSERT INTO entities (
                    id, module_id, entity_type, name,
                    properties_json, methods_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(module_id, entity_type, name) DO UPDATE SET
                    properties_json = excluded.properties_json,
                    methods_json = excluded.methods_json,
                    updated_at = excluded.updated_at
                """,
                (
                    str(uuid.uuid4()),
                    module_id,
                    entity.type,
                    entity.name,
                    entity.properties_json,
                    entity.methods_json,
                    now,
                    now,
                ),
            )
        logger.debug("Upserted %s into knowledge graph", entity.key)

    def delete_entity(self, entity: ExtractedEntity) -> None:
        """Remove *entity*; a missing row is not an error."""
        with closing(self._get_connection()) as conn, conn:
            conn.execute(
                """
                DELETE FROM entities WHERE entity_type = ? AND name = ?
                AND module_id IN (SELECT id FROM modules WHERE name = ?)
                """,
                (entity.type, entity.name, entity.module or ""),
            )
        logger.debug("Deleted %s from knowledge graph", entity.key)

    @staticmethod
    def _ensure_module(
        conn: sqlite3.Connection, name: str, now: str
    ) -> str:
        row = conn.execute(
            "SELECT id FROM modules WHERE name = ?", (name,)
        ).fetchone()
        if row is not None:
            return row["id"]
        module_id = str(uuid.uuid4())
        conn.execute(
            "INSERT INTO modules (id, name, created_at) VALUES (?, ?, ?)",
            (module_id, name, now),
        )
        return module_id


def _make_reader(
    entity_type: str,
) -> Callable[[SqliteKnowledgeGraph, str], list[StoredEntity]]:
    def reader(self: SqliteKnowledgeGraph, module_id: str) -> list[StoredEntity]:
        return self.get_entities_by_module(module_id, entity_type)

    reader.__name__ = reader_name(entity_type)
    reader.__doc__ = f"Return all ``{entity_type}`` entities of a module."
    return reader


for _entity_type in ENTITY_TYPES:
    setattr(
        SqliteKnowledgeGraph,
        reader_name(_entity_type),
        _make_reader(_entity_type),
    )


def stored_to_extracted(
    row: Any, entity_type: str, module_name: str
) -> ExtractedEntity:
    """Convert a reader result (object or mapping) into a KG snapshot.

    ``properties``/``methods`` may be lists or JSON-encoded strings.
    """
    def _get(name: str, default: Any = None) -> Any:
        if isinstance(row, dict):
            return row.get(name, default)
        return getattr(row, name, default)

    def _names(value: Any) -> list[str]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return []
        if not isinstance(value, (list, tuple)):
            return []
        return [str(v) for v in value]

    store_id = _get("id")
    return ExtractedEntity(
        type=entity_type,
        name=str(_get("name", "")),
        module=module_name,
        properties=_names(_get("properties")),
        methods=_names(_get("methods")),
        location=SourceLocation(source=KNOWLEDGE_GRAPH),
        store_id=str(store_id) if store_id is not None else None,
    )
