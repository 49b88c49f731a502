"""MCP tool handlers for code/knowledge-graph synchronisation.

Defines five tools:

- ``sync_status`` -- pending changes, conflicts and summary counts.
- ``sync_pull`` -- apply code-side changes to the knowledge graph.
- ``sync_push`` -- apply knowledge-graph changes to generated code.
- ``sync_history`` -- list recorded sync operations.
- ``sync_rollback`` -- truncate the history to an earlier point.

Pull and push always run non-interactively: an agent can never answer a
prompt, so conflicts without a ``strategy`` stay manual and an unforced
run only previews what it would confirm.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...errors import (
    RollbackPointNotFoundError,
    StoreConnectionError,
    SyncCancelledError,
)
from ...sync.manager import SyncManager
from ...sync.models import ConflictStrategy, SyncOptions
from ...sync.reporter import (
    format_history,
    format_status,
    format_sync_report,
    report_to_json,
    status_to_json,
)
from .errors import build_error_response

logger = logging.getLogger(__name__)

_MODULES_SCHEMA = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Restrict the operation to these module names",
}

_APPLY_SCHEMA = {
    "type": "object",
    "properties": {
        "dry_run": {
            "type": "boolean",
            "default": False,
            "description": "Preview changes without applying them",
        },
        "force": {
            "type": "boolean",
            "default": False,
            "description": (
                "Apply without confirmation. Without it the run is "
                "declined after the preview."
            ),
        },
        "modules": _MODULES_SCHEMA,
        "strategy": {
            "type": "string",
            "enum": [s.value for s in ConflictStrategy],
            "description": (
                "Conflict resolution strategy. Omit to leave conflicts "
                "for manual resolution."
            ),
        },
    },
    "required": [],
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="sync_status",
        description=(
            "Compare generated code with the knowledge graph and report "
            "pending changes on each side, conflicts, and the last sync time."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"modules": _MODULES_SCHEMA},
            "required": [],
        },
    ),
    types.Tool(
        name="sync_pull",
        description=(
            "Bring entities found in generated code into the knowledge "
            "graph. Conflicting entities are resolved first and the run "
            "stops; call again to apply the remaining changes."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema=_APPLY_SCHEMA,
    ),
    types.Tool(
        name="sync_push",
        description=(
            "Write knowledge graph entities into generated code. Conflicting "
            "entities are resolved first and the run stops; call again to "
            "apply the remaining changes."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema=_APPLY_SCHEMA,
    ),
    types.Tool(
        name="sync_history",
        description="List recorded pull/push operations, oldest first.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"modules": _MODULES_SCHEMA},
            "required": [],
        },
    ),
    types.Tool(
        name="sync_rollback",
        description=(
            "Truncate the sync history after the entry matching a timestamp "
            "or commit reference. Only the log is rewritten; entities in "
            "code and in the knowledge graph are not reverted."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "to": {
                    "type": "string",
                    "description": "Timestamp or commit reference from sync_history",
                },
            },
            "required": ["to"],
        },
    ),
]

SYNC_TOOL_NAMES = frozenset(tool.name for tool in SYNC_TOOLS)


# ---------------------------------------------------------------------------
# Tool handler
# ---------------------------------------------------------------------------


async def handle_sync_tool(
    name: str,
    arguments: dict[str, Any] | None,
    manager: SyncManager,
) -> types.CallToolResult:
    """Dispatch and execute a sync tool.

    Args:
        name: Tool name.
        arguments: Tool arguments dict.
        manager: Configured SyncManager instance.

    Returns:
        ``CallToolResult`` with tool output or error details.
    """
    args = arguments or {}

    try:
        match name:
            case "sync_status":
                return await _handle_status(args, manager)
            case "sync_pull" | "sync_push":
                return await _handle_apply(name, args, manager)
            case "sync_history":
                return await _handle_history(args, manager)
            case "sync_rollback":
                return await _handle_rollback(args, manager)
            case _:
                raise ValueError(f"Unknown sync tool: {name}")

    except RollbackPointNotFoundError as exc:
        return build_error_response(
            "not_found",
            str(exc),
            "Use sync_history to list valid timestamps and commit references.",
        )
    except StoreConnectionError as exc:
        return build_error_response(
            "store_error",
            str(exc),
            "Check the knowledge graph path (store.path / KGSYNC_STORE_PATH).",
        )
    except SyncCancelledError as exc:
        return build_error_response(
            "cancelled",
            str(exc),
            "Retry the operation.",
        )
    except ValueError as exc:
        return build_error_response(
            "validation_error",
            str(exc),
            "Check parameter values and retry.",
        )
    except Exception as exc:
        logger.exception("Sync tool error: %s", exc)
        return build_error_response(
            "server_error",
            str(exc),
            "Check the kgsync configuration and the server log.",
        )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _modules(args: dict[str, Any]) -> list[str] | None:
    modules = args.get("modules")
    if modules is None:
        return None
    if not isinstance(modules, list) or not all(
        isinstance(m, str) for m in modules
    ):
        raise ValueError("modules must be a list of module names")
    return modules or None


async def _handle_status(
    args: dict[str, Any], manager: SyncManager
) -> types.CallToolResult:
    status = await manager.status(SyncOptions(modules=_modules(args)))
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_status(status))],
        structuredContent=status_to_json(status),
    )


async def _handle_apply(
    name: str, args: dict[str, Any], manager: SyncManager
) -> types.CallToolResult:
    options = SyncOptions(
        dry_run=bool(args.get("dry_run", False)),
        force=bool(args.get("force", False)),
        modules=_modules(args),
        strategy=args.get("strategy"),
        non_interactive=True,
    )
    if name == "sync_pull":
        report = await manager.pull(options)
    else:
        report = await manager.push(options)

    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_sync_report(report))
        ],
        structuredContent=report_to_json(report),
    )


async def _handle_history(
    args: dict[str, Any], manager: SyncManager
) -> types.CallToolResult:
    entries = await manager.show_history(SyncOptions(modules=_modules(args)))
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_history(entries))],
        structuredContent={
            "entries": [entry.to_json_dict() for entry in entries]
        },
    )


async def _handle_rollback(
    args: dict[str, Any], manager: SyncManager
) -> types.CallToolResult:
    to = args.get("to")
    if not to:
        return build_error_response(
            "validation_error",
            "to is required",
            "Provide the 'to' parameter with a timestamp or commit "
            "reference from sync_history.",
        )

    remaining = await manager.rollback(to)
    text = (
        f"Rolled back sync history to {to} "
        f"({len(remaining)} entries remain).\n"
        "Entity state in code and in the knowledge graph was not changed."
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "to": to,
            "remaining": [entry.to_json_dict() for entry in remaining],
        },
    )
