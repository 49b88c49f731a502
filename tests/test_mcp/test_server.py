"""Tests for kgsync.mcp.server -- tool listing and dispatch."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kgsync.mcp import server


@pytest.fixture(autouse=True)
def _reset_manager():
    yield
    server.set_manager(None)


class TestManagerAccess:
    def test_get_manager_before_start(self):
        server.set_manager(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            server.get_manager()

    def test_set_and_get(self):
        manager = MagicMock()
        server.set_manager(manager)
        assert server.get_manager() is manager


class TestHandlers:
    async def test_list_tools(self):
        tools = await server.handle_list_tools()
        assert {t.name for t in tools} == {
            "sync_status",
            "sync_pull",
            "sync_push",
            "sync_history",
            "sync_rollback",
        }

    async def test_unknown_tool(self):
        result = await server.handle_call_tool("wiki_get", {})
        assert result.isError
        assert "Unknown tool: wiki_get" in result.content[0].text

    async def test_dispatches_to_sync_handler(self):
        manager = MagicMock()
        server.set_manager(manager)
        with patch(
            "kgsync.mcp.server.handle_sync_tool", new=AsyncMock()
        ) as handler:
            await server.handle_call_tool("sync_status", {"modules": ["a"]})
        handler.assert_awaited_once_with(
            "sync_status", {"modules": ["a"]}, manager
        )
