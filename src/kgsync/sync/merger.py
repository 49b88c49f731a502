"""Conflict detection and resolution for the reconciliation engine.

Only an entity that is ``modified`` on *both* sides is a conflict; an entity
added on one side and modified or deleted on the other is not flagged here.

Resolution picks a winning entity state and the side it must be written to;
the actual write is done by the caller's writers.  The ``merge`` strategy
runs a three-way merge over the ``properties`` and ``methods`` sequences
using the ``merge3`` library (the same algorithm used by Bazaar/Breezy).
When no merge base is supplied the items common to both sides, in code
order, are used as the base.  Conflicting regions keep the code items
followed by knowledge-graph items not already present, so the result is
deterministic for the same inputs.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from merge3 import Merge3

from .models import (
    CODE,
    KNOWLEDGE_GRAPH,
    Change,
    ChangeType,
    Conflict,
    ConflictResolution,
    ConflictStrategy,
    ExtractedEntity,
    MergeSpec,
)

logger = logging.getLogger(__name__)

BOTH = "both"


def merge_sequences(
    base: Sequence[str] | None,
    code: Sequence[str],
    kg: Sequence[str],
) -> list[str]:
    """Three-way merge two ordered name sequences against a base.

    Args:
        base: Common ancestor, or ``None`` to derive one from both sides.
        code: Code-side sequence.
        kg: Knowledge-graph-side sequence.

    Returns:
        Merged sequence without duplicates.
    """
    if base is None:
        kg_items = set(kg)
        base = [item for item in code if item in kg_items]

    merged: list[str] = []
    m3 = Merge3(list(base), list(code), list(kg))
    for group in m3.merge_groups():
        kind = group[0]
        if kind == "conflict":
            _, _base_items, code_items, kg_items_region = group
            merged.extend(code_items)
            merged.extend(
                item for item in kg_items_region if item not in code_items
            )
        else:
            merged.extend(group[1])

    seen: set[str] = set()
    result = []
    for item in merged:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class ConflictMerger:
    """Detect conflicts between two change lists and resolve them."""

    def detect_conflicts(
        self,
        code_changes: Sequence[Change],
        kg_changes: Sequence[Change],
        code_index: Mapping[str, ExtractedEntity] | None = None,
        kg_index: Mapping[str, ExtractedEntity] | None = None,
    ) -> list[Conflict]:
        """Return one ``Conflict`` per entity modified on both sides.

        Args:
            code_changes: Changes computed with code as the source side.
            kg_changes: Changes computed with the knowledge graph as source.
            code_index: Optional key -> code snapshot, attached to conflicts.
            kg_index: Optional key -> KG snapshot, attached to conflicts.
        """
        code_modified = {
            c.entity.id: c
            for c in code_changes
            if c.type == ChangeType.MODIFIED
        }
        kg_modified = {
            c.entity.id: c
            for c in kg_changes
            if c.type == ChangeType.MODIFIED
        }

        conflicts: list[Conflict] = []
        for key, code_change in code_modified.items():
            kg_change = kg_modified.get(key)
            if kg_change is None:
                continue
            conflicts.append(
                Conflict(
                    entity=code_change.entity,
                    description="Both code and knowledge graph modified "
                    "entity structure",
                    code_change=code_change,
                    kg_change=kg_change,
                    code_entity=(code_index or {}).get(key),
                    kg_entity=(kg_index or {}).get(key),
                )
            )
        return conflicts

    def resolve_conflict(
        self,
        conflict: Conflict,
        strategy: ConflictStrategy | str | None,
        merge_spec: MergeSpec | None = None,
    ) -> ConflictResolution:
        """Decide the winning entity state for *conflict*.

        Args:
            conflict: The conflict to resolve.
            strategy: A ``ConflictStrategy`` or free-form input; anything
                unrecognised is treated as ``manual``.
            merge_spec: Optional merge base for the ``merge`` strategy.

        Returns:
            A ``ConflictResolution``.  ``manual`` (or a strategy whose
            snapshot is missing) yields no winner.
        """
        chosen = ConflictStrategy.parse(strategy)
        code_ent = conflict.code_entity
        kg_ent = conflict.kg_entity

        if chosen == ConflictStrategy.USE_CODE and code_ent is not None:
            return ConflictResolution(
                conflict=conflict,
                strategy=chosen,
                winner=code_ent,
                target=KNOWLEDGE_GRAPH,
            )

        if chosen == ConflictStrategy.USE_KG and kg_ent is not None:
            return ConflictResolution(
                conflict=conflict,
                strategy=chosen,
                winner=kg_ent,
                target=CODE,
            )

        if (
            chosen == ConflictStrategy.MERGE
            and code_ent is not None
            and kg_ent is not None
        ):
            spec = merge_spec or MergeSpec()
            merged = code_ent.model_copy(
                update={
                    "properties": merge_sequences(
                        spec.base_properties,
                        code_ent.properties,
                        kg_ent.properties,
                    ),
                    "methods": merge_sequences(
                        spec.base_methods,
                        code_ent.methods,
                        kg_ent.methods,
                    ),
                    "store_id": kg_ent.store_id,
                }
            )
            return ConflictResolution(
                conflict=conflict,
                strategy=chosen,
                winner=merged,
                target=BOTH,
            )

        if chosen != ConflictStrategy.MANUAL:
            logger.warning(
                "Cannot apply %s to %s: entity snapshot missing",
                chosen.value,
                conflict.entity.id,
            )
        else:
            logger.info(
                "Conflict for %s left for manual resolution",
                conflict.entity.id,
            )
        return ConflictResolution(conflict=conflict, strategy=chosen)
