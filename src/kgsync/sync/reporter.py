"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_status`` -- pending changes, conflicts and summary counts.
- ``format_change_preview`` -- dry-run preview grouped by change type.
- ``format_sync_report`` -- post-pull/push summary.
- ``format_history`` -- one line per history entry.
- ``format_conflict`` -- unified diff of both sides of a conflict.
- ``status_to_json`` / ``report_to_json`` -- structured dicts for ``--json``
  and MCP tool output.
"""

from __future__ import annotations

import difflib
import json
from collections import defaultdict
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .models import ChangeType, SyncOutcome

if TYPE_CHECKING:
    from .models import (
        Change,
        Conflict,
        ExtractedEntity,
        SyncHistoryEntry,
        SyncReport,
        SyncStatus,
    )

_DIRECTION = {
    "pull": "code -> knowledge graph",
    "push": "knowledge graph -> code",
}

_OUTCOME_TEXT = {
    SyncOutcome.NO_CHANGES: "Already in sync. Nothing to do.",
    SyncOutcome.CONFLICTS_RESOLVED: (
        "Conflicts handled. Run the command again to apply the remaining "
        "changes."
    ),
    SyncOutcome.DRY_RUN: "DRY RUN -- No changes were made",
    SyncOutcome.ABORTED: "Aborted. No changes were made.",
}


# ------------------------------------------------------------------
# Status
# ------------------------------------------------------------------


def _change_line(change: Change) -> str:
    return f"  [{change.type.value.upper()}] {change.entity.id}: {change.details}"


def format_status(status: SyncStatus) -> str:
    """Format a ``SyncStatus`` as human-readable text.

    Args:
        status: The computed status.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("Sync status")
    lines.append(f"Last sync: {status.last_sync or 'never'}")
    lines.append("")

    s = status.summary
    lines.append(
        f"Code ahead: {s.code_ahead}, knowledge graph ahead: {s.kg_ahead}, "
        f"in sync: {s.in_sync}, conflicted: {s.conflicted}"
    )
    lines.append("")

    if status.pending_changes.in_code:
        lines.append("Pending changes in code:")
        lines.extend(_change_line(c) for c in status.pending_changes.in_code)
        lines.append("")

    if status.pending_changes.in_knowledge_graph:
        lines.append("Pending changes in knowledge graph:")
        lines.extend(
            _change_line(c)
            for c in status.pending_changes.in_knowledge_graph
        )
        lines.append("")

    if status.conflicts:
        lines.append("Conflicts:")
        for conflict in status.conflicts:
            lines.append(f"  {conflict.entity.id}: {conflict.description}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_change_preview(changes: Sequence[Change], action: str) -> str:
    """Format the change set a pull or push would apply.

    Args:
        changes: Pending changes.
        action: ``pull`` or ``push``.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(f"{action.capitalize()} ({_DIRECTION.get(action, action)})")
    lines.append("")

    groups: dict[ChangeType, list[Change]] = defaultdict(list)
    for change in changes:
        groups[change.type].append(change)

    for change_type in (ChangeType.ADDED, ChangeType.MODIFIED, ChangeType.DELETED):
        if change_type not in groups:
            continue
        lines.append(f"[{change_type.value.upper()}]")
        for change in groups[change_type]:
            lines.append(f"  {change.entity.id}")
        lines.append("")

    if not changes:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Sync report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a pull/push report as human-readable text.

    Args:
        report: The completed report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(
        f"{report.action.capitalize()} report "
        f"({_DIRECTION.get(report.action, report.action)})"
    )
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if report.outcome == SyncOutcome.DRY_RUN:
        lines.append(_OUTCOME_TEXT[report.outcome])
        lines.append("")
        lines.append(format_change_preview(report.changes, report.action))
        return "\n".join(lines).rstrip()

    if report.conflicts:
        lines.append(f"{len(report.conflicts)} conflict(s) detected:")
        for resolution in report.resolutions:
            state = (
                f"resolved -> {resolution.target}"
                if resolution.resolved
                else "unresolved"
            )
            lines.append(
                f"  {resolution.conflict.entity.id}: "
                f"{resolution.strategy.value} ({state})"
            )
        lines.append("")

    if report.outcome == SyncOutcome.APPLIED:
        lines.append(
            f"Applied {len(report.results)} change(s): "
            f"{report.succeeded} succeeded, {report.failed} failed"
        )
        lines.append("")

    failures = [r for r in report.results if not r.success]
    if failures:
        lines.append("Errors:")
        for r in failures:
            lines.append(f"  {r.entity.id} ({r.action} -> {r.target}): {r.error}")
        lines.append("")

    text = _OUTCOME_TEXT.get(report.outcome)
    if text:
        lines.append(text)

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# History
# ------------------------------------------------------------------


def format_history(entries: Sequence[SyncHistoryEntry]) -> str:
    """Format history entries, oldest first."""
    if not entries:
        return "No sync history."
    lines = [f"Sync history ({len(entries)} entries):"]
    for entry in entries:
        line = f"  {entry.timestamp}  {entry.action}"
        if entry.git_commit:
            line += f"  [{entry.git_commit}]"
        if entry.details:
            line += f"  {json.dumps(entry.details, sort_keys=True, default=str)}"
        lines.append(line)
    return "\n".join(lines)


# ------------------------------------------------------------------
# Conflict diff
# ------------------------------------------------------------------


def _entity_lines(entity: ExtractedEntity | None) -> list[str]:
    if entity is None:
        return []
    lines = [f"property {p}\n" for p in entity.properties]
    lines.extend(f"method {m}\n" for m in entity.methods)
    return lines


def format_conflict(conflict: Conflict) -> str:
    """Format a single conflict for interactive review.

    Shows a unified diff between the code-side and knowledge-graph-side
    structure of the entity.

    Args:
        conflict: The conflict details.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(f"Conflict: {conflict.entity.id}")
    lines.append(conflict.description)
    lines.append("")

    diff_text = "".join(
        difflib.unified_diff(
            _entity_lines(conflict.code_entity),
            _entity_lines(conflict.kg_entity),
            fromfile="code",
            tofile="knowledge_graph",
        )
    )
    if diff_text:
        lines.append(diff_text.rstrip())
    else:
        lines.append("(no structural differences available)")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def _change_to_json(change: Change) -> dict:
    return {
        "type": change.type.value,
        "entity": change.entity.model_dump(),
        "source": change.location.source,
        "detected": change.detected.isoformat(),
        "details": change.details,
    }


def status_to_json(status: SyncStatus) -> dict:
    """Convert a status to a structured dict for JSON serialisation."""
    return {
        "last_sync": status.last_sync,
        "summary": status.summary.model_dump(),
        "pending_changes": {
            "in_code": [
                _change_to_json(c) for c in status.pending_changes.in_code
            ],
            "in_knowledge_graph": [
                _change_to_json(c)
                for c in status.pending_changes.in_knowledge_graph
            ],
        },
        "conflicts": [
            {"entity": c.entity.model_dump(), "description": c.description}
            for c in status.conflicts
        ],
    }


def report_to_json(report: SyncReport) -> dict:
    """Convert a pull/push report to a structured dict.

    Suitable for MCP ``structuredContent`` output.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "entity": r.entity.id,
            "action": r.action,
            "target": r.target,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "action": report.action,
        "outcome": report.outcome.value,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "changes": len(report.changes),
            "conflicts": len(report.conflicts),
            "succeeded": report.succeeded,
            "failed": report.failed,
        },
        "changes": [_change_to_json(c) for c in report.changes],
        "resolutions": [
            {
                "entity": r.conflict.entity.id,
                "strategy": r.strategy.value,
                "target": r.target,
                "resolved": r.resolved,
            }
            for r in report.resolutions
        ],
        "results": results_list,
    }
