"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across all sync modules:

- ``EntityKey``: ``(module, type, name)`` identity used to match entities.
- ``ExtractedEntity``: side-specific snapshot of one entity.
- ``Change`` / ``ChangeType``: classified difference for one entity.
- ``Conflict`` / ``ConflictStrategy`` / ``ConflictResolution``: entities
  modified on both sides and how they were resolved.
- ``SyncHistoryEntry``: one record of the persisted audit log.
- ``SyncStatus`` / ``SyncSummary``: derived status of a reconciliation pass.
- ``SyncOptions``: caller options for status/pull/push.
- ``ApplyResult`` / ``SyncReport`` / ``SyncOutcome``: outcome of pull/push.

All models are frozen (immutable); snapshots are built fresh for every
reconciliation pass and never mutated.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CODE = "code"
KNOWLEDGE_GRAPH = "knowledge_graph"


# ---------------------------------------------------------------------------
# Identity and snapshots
# ---------------------------------------------------------------------------


class EntityKey(BaseModel):
    """Reconciliation key shared by both sides.

    Attributes:
        module: Owning module name (empty string when unknown).
        entity_type: Entity type, e.g. ``thing`` or ``behavior``.
        name: Entity name.
    """

    module: str = ""
    entity_type: str
    name: str

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.module}:{self.entity_type}:{self.name}"


class SourceLocation(BaseModel):
    """Where a snapshot or change came from."""

    source: str
    path: str | None = None

    model_config = {"frozen": True}


class ExtractedEntity(BaseModel):
    """Lightweight view of one entity as seen by one side.

    Attributes:
        type: Entity type.
        name: Entity name.
        module: Owning module name, if known.
        properties: Ordered property names.
        methods: Ordered method names.
        location: Side that produced the snapshot (plus file path for code).
        store_id: Row id in the knowledge graph store (KG side only).
    """

    type: str
    name: str
    module: str | None = None
    properties: list[str] = []
    methods: list[str] = []
    location: SourceLocation = Field(
        default_factory=lambda: SourceLocation(source=CODE)
    )
    store_id: str | None = None

    model_config = {"frozen": True}

    @property
    def key(self) -> EntityKey:
        return EntityKey(
            module=self.module or "",
            entity_type=self.type,
            name=self.name,
        )

    @property
    def properties_json(self) -> str:
        return json.dumps(self.properties)

    @property
    def methods_json(self) -> str:
        return json.dumps(self.methods)


# ---------------------------------------------------------------------------
# Changes and conflicts
# ---------------------------------------------------------------------------


class ChangeType(str, Enum):
    """Classification of a difference relative to the source side."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class EntityRef(BaseModel):
    """Reference to an entity inside a change: ``id`` is the key string."""

    type: str
    id: str
    name: str

    model_config = {"frozen": True}


class Change(BaseModel):
    """One classified difference, produced only by ``ChangeDetector``."""

    type: ChangeType
    entity: EntityRef
    location: SourceLocation
    detected: datetime
    details: str

    model_config = {"frozen": True}


class Conflict(BaseModel):
    """An entity modified independently on both sides.

    Attributes:
        entity: The conflicting entity.
        description: Human-readable reason.
        code_change: The code-side ``modified`` change.
        kg_change: The knowledge-graph-side ``modified`` change.
        code_entity: Code-side snapshot, when the caller supplied one.
        kg_entity: Knowledge-graph-side snapshot, when supplied.
    """

    entity: EntityRef
    description: str
    code_change: Change | None = None
    kg_change: Change | None = None
    code_entity: ExtractedEntity | None = None
    kg_entity: ExtractedEntity | None = None

    model_config = {"frozen": True}


class ConflictStrategy(str, Enum):
    """Closed set of conflict resolution strategies."""

    USE_CODE = "use_code"
    USE_KG = "use_kg"
    MERGE = "merge"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: ConflictStrategy | str | None) -> ConflictStrategy:
        """Map free-form input onto a strategy.

        Unrecognised or empty input falls back to ``MANUAL``; this never
        raises.
        """
        if isinstance(value, ConflictStrategy):
            return value
        normalised = (value or "").strip().lower().replace("-", "_")
        try:
            return cls(normalised)
        except ValueError:
            logger.warning(
                "Unrecognised conflict strategy %r -- treating as manual",
                value,
            )
            return cls.MANUAL


class MergeSpec(BaseModel):
    """Common ancestor for a three-way merge of an entity's structure."""

    base_properties: list[str] | None = None
    base_methods: list[str] | None = None

    model_config = {"frozen": True}


class ConflictResolution(BaseModel):
    """Decision taken for one conflict.

    Attributes:
        conflict: The resolved conflict.
        strategy: Strategy that was applied.
        winner: Entity state to hand off, or ``None`` for manual.
        target: Side(s) the winner must be written to: ``code``,
            ``knowledge_graph``, ``both`` or ``None``.
    """

    conflict: Conflict
    strategy: ConflictStrategy
    winner: ExtractedEntity | None = None
    target: str | None = None

    model_config = {"frozen": True}

    @property
    def resolved(self) -> bool:
        return self.winner is not None and self.target is not None


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class SyncHistoryEntry(BaseModel):
    """One record in the persisted sync log.

    The commit reference is stored on disk as ``gitCommit``.
    """

    timestamp: str
    action: str
    details: Any = None
    git_commit: str | None = Field(default=None, alias="gitCommit")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "extra": "ignore",
    }

    def to_json_dict(self) -> dict[str, Any]:
        """Return the on-disk representation of this entry."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "action": self.action,
            "details": self.details,
        }
        if self.git_commit is not None:
            data["gitCommit"] = self.git_commit
        return data


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class SyncSummary(BaseModel):
    code_ahead: int = 0
    kg_ahead: int = 0
    in_sync: int = 0
    conflicted: int = 0

    model_config = {"frozen": True}


class PendingChanges(BaseModel):
    in_code: list[Change] = []
    in_knowledge_graph: list[Change] = []

    model_config = {"frozen": True}


class SyncStatus(BaseModel):
    """Derived status of one reconciliation pass (never persisted)."""

    last_sync: str | None = None
    pending_changes: PendingChanges = Field(default_factory=PendingChanges)
    conflicts: list[Conflict] = []
    summary: SyncSummary = Field(default_factory=SyncSummary)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Options and reports
# ---------------------------------------------------------------------------


class SyncOptions(BaseModel):
    """Options accepted by the sync manager operations.

    Attributes:
        dry_run: Preview the change set without applying it.
        force: Skip the confirmation prompt.
        modules: Restrict the pass to these module names.
        to: Rollback point (timestamp or commit reference).
        strategy: Free-form conflict strategy; parsed with a manual fallback.
        non_interactive: Never block on a prompt.
    """

    dry_run: bool = False
    force: bool = False
    modules: list[str] | None = None
    to: str | None = None
    strategy: str | None = None
    non_interactive: bool = False

    model_config = {"frozen": True}


class SyncOutcome(str, Enum):
    """How a pull or push invocation ended."""

    NO_CHANGES = "no_changes"
    CONFLICTS_RESOLVED = "conflicts_resolved"
    DRY_RUN = "dry_run"
    ABORTED = "aborted"
    APPLIED = "applied"


class ApplyResult(BaseModel):
    """Result of writing one entity to one side.

    Attributes:
        entity: The entity that was written.
        action: Change type or resolution strategy that was applied.
        target: Side that was written.
        success: Whether the write succeeded.
        error: Error message if the write failed.
    """

    entity: EntityRef
    action: str
    target: str
    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate result of one pull or push invocation."""

    action: str
    outcome: SyncOutcome
    changes: list[Change] = []
    conflicts: list[Conflict] = []
    resolutions: list[ConflictResolution] = []
    results: list[ApplyResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def applied(self) -> bool:
        return self.outcome == SyncOutcome.APPLIED
