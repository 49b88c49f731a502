"""Change detection between two entity snapshots.

``ChangeDetector.compare`` classifies every entity key relative to a chosen
*source* side:

* present in source only -> ``added`` (located on the source side)
* present in both, structure differs -> ``modified`` (source side)
* present in target only -> ``deleted`` (located on the target side)

Structure is compared on the serialised ``properties`` and ``methods``
sequences, so reordering counts as a modification.  The sync manager calls
``compare`` twice per pass with the arguments swapped; the overlap between
the two results is intentional and the status counts depend on it.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from .models import (
    CODE,
    KNOWLEDGE_GRAPH,
    Change,
    ChangeType,
    EntityRef,
    ExtractedEntity,
    SourceLocation,
)

_LABELS = {
    CODE: "code",
    KNOWLEDGE_GRAPH: "knowledge graph",
}


def index_entities(
    entities: Iterable[ExtractedEntity],
) -> dict[str, ExtractedEntity]:
    """Map each entity's key string to the entity.

    A later duplicate key replaces an earlier one.
    """
    return {str(ent.key): ent for ent in entities}


def _label(side: str) -> str:
    return _LABELS.get(side, side)


class ChangeDetector:
    """Compare two entity collections and classify the differences."""

    def compare(
        self,
        source_entities: Iterable[ExtractedEntity],
        target_entities: Iterable[ExtractedEntity],
        source_label: str = CODE,
        target_label: str = KNOWLEDGE_GRAPH,
    ) -> list[Change]:
        """Classify every key relative to the source side.

        Args:
            source_entities: Entities of the side treated as the source.
            target_entities: Entities of the other side.
            source_label: Side name of *source_entities*.
            target_label: Side name of *target_entities*.

        Returns:
            List of ``Change`` records.  Callers must not rely on the order.
        """
        now = datetime.now(timezone.utc)
        source_map = index_entities(source_entities)
        target_map = index_entities(target_entities)
        changes: list[Change] = []

        for key, ent in source_map.items():
            other = target_map.get(key)
            if other is None:
                changes.append(
                    self._change(
                        ChangeType.ADDED,
                        key,
                        ent,
                        self._location(ent, source_label),
                        now,
                        f"Exists in {_label(source_label)} but not in "
                        f"{_label(target_label)}",
                    )
                )
            elif (
                ent.properties_json != other.properties_json
                or ent.methods_json != other.methods_json
            ):
                changes.append(
                    self._change(
                        ChangeType.MODIFIED,
                        key,
                        ent,
                        self._location(ent, source_label),
                        now,
                        "Entity structure differs between code and "
                        "knowledge graph",
                    )
                )

        for key, ent in target_map.items():
            if key not in source_map:
                changes.append(
                    self._change(
                        ChangeType.DELETED,
                        key,
                        ent,
                        self._location(ent, target_label),
                        now,
                        f"Exists in {_label(target_label)} but not in "
                        f"{_label(source_label)}",
                    )
                )

        return changes

    @staticmethod
    def _location(ent: ExtractedEntity, side: str) -> SourceLocation:
        if ent.location.source == side:
            return ent.location
        return SourceLocation(source=side)

    @staticmethod
    def _change(
        change_type: ChangeType,
        key: str,
        ent: ExtractedEntity,
        location: SourceLocation,
        detected: datetime,
        details: str,
    ) -> Change:
        return Change(
            type=change_type,
            entity=EntityRef(type=ent.type, id=key, name=ent.name),
            location=location,
            detected=detected,
            details=details,
        )
