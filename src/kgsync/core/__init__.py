"""Core helpers shared between the CLI and the MCP server."""

from .async_utils import gather_chunked, run_sync

__all__ = ["gather_chunked", "run_sync"]
