"""MCP tool handlers for kgsync.

Each tool wraps a ``SyncManager`` operation with argument validation,
text plus structured output, and structured error responses.
"""

from .errors import build_error_response
from .sync import SYNC_TOOL_NAMES, SYNC_TOOLS, handle_sync_tool

__all__ = [
    "SYNC_TOOLS",
    "SYNC_TOOL_NAMES",
    "build_error_response",
    "handle_sync_tool",
]
