"""MCP server exposing the sync operations to AI agents."""
