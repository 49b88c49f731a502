"""Sync manager that orchestrates reconciliation between code and graph.

The ``SyncManager`` ties together the analyzer, store, detector, merger,
writers and history.  Each operation runs through the same steps:

1. Gather one snapshot of both sides (code tree scan + store reads).
2. Compare in both directions (``compare(code, kg)`` and
   ``compare(kg, code)``).
3. Detect conflicts between the two ``modified`` subsets.
4. For ``pull``/``push``: gate on conflicts, preview on dry-run, confirm,
   then apply each change independently and record one history entry.

The manager holds no state between operations.  Every blocking call (file
listing, analysis, store queries, prompts, history I/O) goes through
``run_sync`` so the single engine task suspends at each I/O boundary.

Error handling is per-change: a single failed write does not abort the
apply loop.  Store failures while gathering propagate before anything is
written.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..core.async_utils import run_sync
from .analyzer import ENTITY_TYPES, SOURCE_SUFFIX, CodeAnalyzer
from .detector import ChangeDetector, index_entities
from .history import SyncHistory
from .merger import BOTH, ConflictMerger
from .models import (
    CODE,
    KNOWLEDGE_GRAPH,
    ApplyResult,
    Change,
    ChangeType,
    Conflict,
    ConflictResolution,
    ConflictStrategy,
    EntityRef,
    ExtractedEntity,
    PendingChanges,
    SyncHistoryEntry,
    SyncOptions,
    SyncOutcome,
    SyncReport,
    SyncStatus,
    SyncSummary,
)
from .optimizer import SyncOptimizer
from .prompts import CancellationToken, NonInteractivePrompt, await_prompt
from .store import KnowledgeGraphStore, reader_name, stored_to_extracted
from .writer import SourceCodeWriter

logger = logging.getLogger(__name__)

PULL = "pull"
PUSH = "push"

DEFAULT_MODULES_DIR = Path("src/modules")
DEFAULT_HISTORY_FILE = Path(".kgsync/sync_history.json")


@dataclass(frozen=True)
class Snapshot:
    """Both sides of one reconciliation pass, gathered exactly once."""

    code_entities: list[ExtractedEntity] = field(default_factory=list)
    kg_entities: list[ExtractedEntity] = field(default_factory=list)

    @property
    def code_index(self) -> dict[str, ExtractedEntity]:
        return index_entities(self.code_entities)

    @property
    def kg_index(self) -> dict[str, ExtractedEntity]:
        return index_entities(self.kg_entities)


@dataclass(frozen=True)
class _Comparison:
    code_changes: list[Change]
    kg_changes: list[Change]
    conflicts: list[Conflict]


def _attr(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncManager:
    """Run status, pull, push, rollback and history operations.

    Args:
        store: Knowledge graph store (see ``KnowledgeGraphStore``).
        analyzer: Source entity extractor.  Defaults to ``CodeAnalyzer``.
        writer: Code writer used by push.  Defaults to ``SourceCodeWriter``.
        history: Sync history log.
        prompt: Object implementing ``prompt_strategy`` and ``confirm``.
            Defaults to a ``NonInteractivePrompt`` that declines.
        modules_dir: Root of the generated module tree.
        optimizer: Optional ``SyncOptimizer`` for cached, chunked analysis.
        cancel_token: Optional token that aborts a pending prompt.
    """

    def __init__(
        self,
        store: KnowledgeGraphStore,
        analyzer: CodeAnalyzer | None = None,
        writer: SourceCodeWriter | None = None,
        history: SyncHistory | None = None,
        prompt: Any = None,
        modules_dir: Path | str = DEFAULT_MODULES_DIR,
        optimizer: SyncOptimizer | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.store = store
        self.modules_dir = Path(modules_dir)
        self.analyzer = analyzer or CodeAnalyzer(self.modules_dir)
        self.writer = writer or SourceCodeWriter(
            self.modules_dir, self.analyzer
        )
        self.history = history or SyncHistory(DEFAULT_HISTORY_FILE)
        self.prompt = prompt or NonInteractivePrompt()
        self.optimizer = optimizer
        self.cancel_token = cancel_token

        self.detector = ChangeDetector()
        self.merger = ConflictMerger()

    # ------------------------------------------------------------------
    # Gathering
    # ------------------------------------------------------------------

    async def gather(self, options: SyncOptions | None = None) -> Snapshot:
        """Collect code-side and knowledge-graph-side entities once."""
        options = options or SyncOptions()
        modules = set(options.modules) if options.modules else None
        code_entities = await self._gather_code(modules)
        kg_entities = await self._gather_knowledge_graph(modules)
        logger.info(
            "Gathered %d code entities and %d knowledge graph entities",
            len(code_entities),
            len(kg_entities),
        )
        return Snapshot(code_entities=code_entities, kg_entities=kg_entities)

    def _list_source_files(self, modules: set[str] | None) -> list[Path]:
        """Walk ``<modules_dir>/<module>/<type>s/*.py``."""
        if not self.modules_dir.is_dir():
            logger.debug(
                "Modules directory %s not found -- no code entities",
                self.modules_dir,
            )
            return []

        files: list[Path] = []
        for module_dir in sorted(self.modules_dir.iterdir()):
            if not module_dir.is_dir():
                continue
            if modules is not None and module_dir.name not in modules:
                continue
            # Only <type>s directories hold entities; helpers and tests do not.
            for type_dir_name in sorted(f"{t}s" for t in ENTITY_TYPES):
                type_dir = module_dir / type_dir_name
                if not type_dir.is_dir():
                    continue
                files.extend(
                    sorted(
                        p
                        for p in type_dir.iterdir()
                        if p.is_file() and p.suffix == SOURCE_SUFFIX
                    )
                )
        return files

    async def _analyze_file(self, path: Path) -> list[ExtractedEntity] | None:
        if self.optimizer is not None:
            return await run_sync(
                self.optimizer.analyze_cached, path, self.analyzer.analyze
            )
        return await run_sync(self.analyzer.analyze, path)

    async def _gather_code(
        self, modules: set[str] | None
    ) -> list[ExtractedEntity]:
        files = await run_sync(self._list_source_files, modules)
        if self.optimizer is not None:
            results = await self.optimizer.analyze_in_chunks(
                files, self._analyze_file
            )
        else:
            results = [await self._analyze_file(path) for path in files]

        entities: list[ExtractedEntity] = []
        for file_entities in results:
            for ent in file_entities or []:
                if modules is None or ent.module in modules:
                    entities.append(ent)
        return entities

    async def _gather_knowledge_graph(
        self, modules: set[str] | None
    ) -> list[ExtractedEntity]:
        readers: list[tuple[str, Callable[[Any], Any]]] = []
        for entity_type in ENTITY_TYPES:
            reader = getattr(self.store, reader_name(entity_type), None)
            if reader is None:
                logger.debug(
                    "Store has no %s -- skipping %s entities",
                    reader_name(entity_type),
                    entity_type,
                )
                continue
            readers.append((entity_type, reader))

        stored_modules = await run_sync(self.store.get_modules)
        entities: list[ExtractedEntity] = []
        for module in stored_modules:
            module_name = _attr(module, "name")
            if modules is not None and module_name not in modules:
                continue
            module_id = _attr(module, "id")
            for entity_type, reader in readers:
                rows = await run_sync(reader, module_id)
                entities.extend(
                    stored_to_extracted(row, entity_type, module_name)
                    for row in rows or []
                )
        return entities

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def _compare(self, snapshot: Snapshot) -> _Comparison:
        code_changes = self.detector.compare(
            snapshot.code_entities,
            snapshot.kg_entities,
            CODE,
            KNOWLEDGE_GRAPH,
        )
        kg_changes = self.detector.compare(
            snapshot.kg_entities,
            snapshot.code_entities,
            KNOWLEDGE_GRAPH,
            CODE,
        )
        conflicts = self.merger.detect_conflicts(
            code_changes,
            kg_changes,
            snapshot.code_index,
            snapshot.kg_index,
        )
        return _Comparison(code_changes, kg_changes, conflicts)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def status(self, options: SyncOptions | None = None) -> SyncStatus:
        """Compute pending changes, conflicts and summary counts.

        Read-only: never writes history or either side.
        """
        options = options or SyncOptions()
        snapshot = await self.gather(options)
        comparison = self._compare(snapshot)
        last = await run_sync(self.history.last_entry)

        in_sync = len(snapshot.code_entities) - len(comparison.code_changes)

        return SyncStatus(
            last_sync=last.timestamp if last else None,
            pending_changes=PendingChanges(
                in_code=comparison.code_changes,
                in_knowledge_graph=comparison.kg_changes,
            ),
            conflicts=comparison.conflicts,
            summary=SyncSummary(
                code_ahead=len(comparison.code_changes),
                kg_ahead=len(comparison.kg_changes),
                in_sync=in_sync,
                conflicted=len(comparison.conflicts),
            ),
        )

    async def pull(self, options: SyncOptions | None = None) -> SyncReport:
        """Bring code-side entities into the knowledge graph."""
        return await self._sync(PULL, options or SyncOptions())

    async def push(self, options: SyncOptions | None = None) -> SyncReport:
        """Bring knowledge-graph entities into generated code."""
        return await self._sync(PUSH, options or SyncOptions())

    async def rollback(self, to: str | None) -> list[SyncHistoryEntry]:
        """Truncate the history log to the entry matching *to*.

        Only the log is rewritten; entity state is not reverted.

        Raises:
            ValueError: If *to* is empty.
            RollbackPointNotFoundError: If no entry matches.
        """
        if not to:
            raise ValueError(
                "Rollback requires a target: pass a timestamp or commit "
                "reference with --to"
            )
        return await run_sync(self.history.rollback, to)

    async def show_history(
        self, options: SyncOptions | None = None
    ) -> list[SyncHistoryEntry]:
        """Return history entries, oldest first.

        With ``options.modules`` set, only entries that ran over all
        modules or over at least one of the given modules are returned.
        """
        entries = await run_sync(self.history.get_history)
        if options is None or not options.modules:
            return entries
        wanted = set(options.modules)
        filtered = []
        for entry in entries:
            ran_on = (
                entry.details.get("modules")
                if isinstance(entry.details, dict)
                else None
            )
            if not ran_on or wanted.intersection(ran_on):
                filtered.append(entry)
        return filtered

    # ------------------------------------------------------------------
    # Pull / push
    # ------------------------------------------------------------------

    async def _sync(self, action: str, options: SyncOptions) -> SyncReport:
        started_at = _now_iso()
        snapshot = await self.gather(options)
        comparison = self._compare(snapshot)
        changes = (
            comparison.code_changes
            if action == PULL
            else comparison.kg_changes
        )

        def _report(outcome: SyncOutcome, **kwargs: Any) -> SyncReport:
            return SyncReport(
                action=action,
                outcome=outcome,
                changes=changes,
                conflicts=comparison.conflicts,
                started_at=started_at,
                completed_at=_now_iso(),
                **kwargs,
            )

        if comparison.conflicts:
            logger.warning(
                "%d conflict(s) detected -- resolving before %s",
                len(comparison.conflicts),
                action,
            )
            resolutions, results = await self._resolve_conflicts(
                comparison.conflicts, options
            )
            return _report(
                SyncOutcome.CONFLICTS_RESOLVED,
                resolutions=resolutions,
                results=results,
            )

        if not changes:
            logger.info("Nothing to %s: both sides are in sync", action)
            return _report(SyncOutcome.NO_CHANGES)

        if options.dry_run:
            logger.info(
                "Dry run: %d change(s) would be applied by %s",
                len(changes),
                action,
            )
            return _report(SyncOutcome.DRY_RUN)

        if not options.force:
            target = KNOWLEDGE_GRAPH if action == PULL else CODE
            question = (
                f"Apply {len(changes)} change(s) to "
                f"{target.replace('_', ' ')}?"
            )
            if not await self._confirm(question, options):
                logger.info("%s aborted by user", action.capitalize())
                return _report(SyncOutcome.ABORTED)

        results = await self._apply_changes(action, changes, snapshot)
        succeeded = sum(1 for r in results if r.success)
        failed = len(results) - succeeded
        await run_sync(
            self.history.record_sync,
            action,
            {
                "modules": options.modules,
                "dryRun": options.dry_run,
                "applied": succeeded,
                "failed": failed,
            },
        )
        logger.info(
            "%s complete: %d succeeded, %d failed",
            action.capitalize(),
            succeeded,
            failed,
        )
        return _report(SyncOutcome.APPLIED, results=results)

    async def _confirm(self, question: str, options: SyncOptions) -> bool:
        if options.non_interactive:
            logger.info("Non-interactive mode: declining '%s'", question)
            return False
        return await await_prompt(
            self.prompt.confirm(question), self.cancel_token
        )

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    async def _resolve_conflicts(
        self, conflicts: list[Conflict], options: SyncOptions
    ) -> tuple[list[ConflictResolution], list[ApplyResult]]:
        resolutions: list[ConflictResolution] = []
        results: list[ApplyResult] = []

        for conflict in conflicts:
            strategy: str | None = options.strategy
            if not strategy:
                if options.non_interactive:
                    strategy = ConflictStrategy.MANUAL.value
                else:
                    strategy = await await_prompt(
                        self.prompt.prompt_strategy(conflict),
                        self.cancel_token,
                    )

            resolution = self.merger.resolve_conflict(conflict, strategy)
            resolutions.append(resolution)
            if resolution.resolved and not options.dry_run:
                results.extend(await self._hand_off(resolution))

        return resolutions, results

    async def _hand_off(
        self, resolution: ConflictResolution
    ) -> list[ApplyResult]:
        """Write the winning entity to the side(s) named by the resolution."""
        winner = resolution.winner
        targets = (
            [KNOWLEDGE_GRAPH, CODE]
            if resolution.target == BOTH
            else [resolution.target]
        )
        results = []
        for target in targets:
            func = (
                self.writer.write_entity
                if target == CODE
                else self.store.upsert_entity
            )
            results.append(
                await self._write(
                    resolution.conflict.entity,
                    resolution.strategy.value,
                    target,
                    func,
                    winner,
                )
            )
        return results

    # ------------------------------------------------------------------
    # Apply phase
    # ------------------------------------------------------------------

    async def _apply_changes(
        self, action: str, changes: list[Change], snapshot: Snapshot
    ) -> list[ApplyResult]:
        """Apply every change independently; failures are recorded."""
        code_index = snapshot.code_index
        kg_index = snapshot.kg_index
        results: list[ApplyResult] = []

        for change in changes:
            key = change.entity.id
            deleted = change.type == ChangeType.DELETED
            if action == PULL:
                target = KNOWLEDGE_GRAPH
                func = (
                    self.store.delete_entity
                    if deleted
                    else self.store.upsert_entity
                )
                entity = kg_index.get(key) if deleted else code_index.get(key)
            else:
                target = CODE
                func = (
                    self.writer.remove_entity
                    if deleted
                    else self.writer.write_entity
                )
                entity = code_index.get(key) if deleted else kg_index.get(key)

            results.append(
                await self._write(
                    change.entity, change.type.value, target, func, entity
                )
            )
        return results

    async def _write(
        self,
        ref: EntityRef,
        action: str,
        target: str,
        func: Callable[[ExtractedEntity], Any],
        entity: ExtractedEntity | None,
    ) -> ApplyResult:
        if entity is None:
            return ApplyResult(
                entity=ref,
                action=action,
                target=target,
                success=False,
                error="Entity snapshot missing",
            )
        try:
            await run_sync(func, entity)
        except Exception as exc:
            logger.error(
                "Failed to apply %s of %s to %s: %s",
                action,
                ref.id,
                target,
                exc,
            )
            return ApplyResult(
                entity=ref,
                action=action,
                target=target,
                success=False,
                error=str(exc),
            )
        return ApplyResult(
            entity=ref, action=action, target=target, success=True
        )
