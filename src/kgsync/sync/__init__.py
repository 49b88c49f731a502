"""Reconciliation engine between generated code and the knowledge graph.

Public API for detecting divergence between entities parsed from generated
Python modules and entities stored in the structured knowledge graph, and
for bringing the two back in line.

Architecture
------------
Every pass takes one snapshot of both sides, then runs the change detector
twice (``compare(code, kg)`` and ``compare(kg, code)``).  An entity that is
``modified`` in both results is a conflict; conflicts gate every mutating
operation.  Successful pulls and pushes are recorded in an append-only
JSON history that can be truncated (rolled back) to an earlier point.

Modules:

- ``manager``   -- ``SyncManager``: status, pull, push, rollback, history.
- ``detector``  -- ``ChangeDetector``: classify added/modified/deleted.
- ``merger``    -- ``ConflictMerger``: conflicts and resolution strategies
  (three-way merge via ``merge3``).
- ``history``   -- ``SyncHistory``: the persisted sync log.
- ``analyzer``  -- ``CodeAnalyzer``: entities from generated Python files.
- ``store``     -- ``SqliteKnowledgeGraph``: default knowledge graph store.
- ``writer``    -- ``SourceCodeWriter``: generated code for push.
- ``prompts``   -- confirmation/resolution ports and cancellation.
- ``optimizer`` -- checksum cache, file watching, chunked analysis.
- ``models``    -- core data contracts.
- ``reporter``  -- human-readable and JSON formatting.

Usage example
-------------
::

    from pathlib import Path
    from kgsync.sync import (
        SqliteKnowledgeGraph,
        SyncHistory,
        SyncManager,
        SyncOptions,
        format_sync_report,
    )

    store = SqliteKnowledgeGraph(Path(".kgsync/knowledge_graph.db"))
    store.initialize()
    manager = SyncManager(
        store,
        history=SyncHistory(Path(".kgsync/sync_history.json")),
        modules_dir=Path("src/modules"),
    )

    # Preview first
    preview = await manager.pull(SyncOptions(dry_run=True))
    print(format_sync_report(preview))

    report = await manager.pull(SyncOptions(force=True))
    print(format_sync_report(report))
"""

from .analyzer import ENTITY_TYPES, CodeAnalyzer
from .detector import ChangeDetector
from .history import SyncHistory
from .manager import SyncManager
from .merger import ConflictMerger
from .models import (
    Change,
    ChangeType,
    Conflict,
    ConflictStrategy,
    EntityKey,
    ExtractedEntity,
    SyncHistoryEntry,
    SyncOptions,
    SyncOutcome,
    SyncReport,
    SyncStatus,
)
from .optimizer import SyncOptimizer
from .prompts import CancellationToken, ConsolePrompt, NonInteractivePrompt
from .reporter import (
    format_history,
    format_status,
    format_sync_report,
    report_to_json,
    status_to_json,
)
from .store import SqliteKnowledgeGraph
from .writer import SourceCodeWriter

__all__ = [
    "ENTITY_TYPES",
    "CancellationToken",
    "Change",
    "ChangeDetector",
    "ChangeType",
    "CodeAnalyzer",
    "Conflict",
    "ConflictMerger",
    "ConflictStrategy",
    "ConsolePrompt",
    "EntityKey",
    "ExtractedEntity",
    "NonInteractivePrompt",
    "SourceCodeWriter",
    "SqliteKnowledgeGraph",
    "SyncHistory",
    "SyncHistoryEntry",
    "SyncManager",
    "SyncOptimizer",
    "SyncOptions",
    "SyncOutcome",
    "SyncReport",
    "SyncStatus",
    "format_history",
    "format_status",
    "format_sync_report",
    "report_to_json",
    "status_to_json",
]
