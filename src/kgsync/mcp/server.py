"""MCP server for kgsync using stdio transport.

Exposes the reconciliation engine (status, pull, push, history, rollback)
as MCP tools so AI agents can keep generated code and the knowledge graph
in line.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..logger import setup_logging
from ..sync.manager import SyncManager
from .lifespan import server_lifespan
from .tools import (
    SYNC_TOOL_NAMES,
    SYNC_TOOLS,
    build_error_response,
    handle_sync_tool,
)

logger = logging.getLogger(__name__)

server = Server("kgsync")

# Global manager instance (installed by main() from the lifespan)
_manager: SyncManager | None = None


def get_manager() -> SyncManager:
    """Get the global SyncManager instance.

    Raises:
        RuntimeError: If the manager is not initialized
    """
    if _manager is None:
        raise RuntimeError(
            "SyncManager not initialized. Server lifespan not started."
        )
    return _manager


def set_manager(manager: SyncManager | None) -> None:
    """Set (or clear with ``None``) the global SyncManager instance."""
    global _manager
    _manager = manager


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List the sync tools."""
    return SYNC_TOOLS


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Dispatch a tool call to the sync handlers.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    if name not in SYNC_TOOL_NAMES:
        return build_error_response(
            "unknown_tool",
            f"Unknown tool: {name}",
            "Use list_tools to see available tools.",
        )
    return await handle_sync_tool(name, arguments, get_manager())


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Logging is set up for MCP mode (file only, never stdout) before the
    stdio transport starts.

    Args:
        config_overrides: Optional dict with config values to override
            (project_root, modules_dir, store_path, history_file, log_file)
    """
    overrides = dict(config_overrides or {})
    log_file = overrides.pop("log_file", None)
    setup_logging(mode="mcp", log_file=log_file)

    # set_manager() is called here rather than inside the lifespan so the
    # module-level global is the one in this (possibly __main__) module.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_manager(ctx["manager"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="kgsync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_manager(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="kgsync MCP server - code/knowledge-graph sync tools for AI agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (.kgsync/config.yml, .env)
  kgsync-mcp

  # Serve another project
  kgsync-mcp --project-root /path/to/project

  # Custom log file location
  kgsync-mcp --log-file /var/log/kgsync-mcp.log

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument("--project-root", help="Project root directory")
    parser.add_argument(
        "--modules-dir", help="Generated module tree (relative to the project root)"
    )
    parser.add_argument("--store", dest="store_path", help="Knowledge graph database path")
    parser.add_argument("--history-file", help="Sync history file path")
    parser.add_argument(
        "--log-file",
        default="/tmp/kgsync-mcp.log",
        help="Log file path (default: /tmp/kgsync-mcp.log)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"kgsync-mcp version {__version__}",
    )

    args = parser.parse_args()

    config_overrides = {
        key: value
        for key, value in (
            ("project_root", args.project_root),
            ("modules_dir", args.modules_dir),
            ("store_path", args.store_path),
            ("history_file", args.history_file),
            ("log_file", args.log_file),
        )
        if value
    }

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
