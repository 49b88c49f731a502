"""Tests for the MCP sync tool definitions and handlers.

Handlers run against a real ``SyncManager`` wired to in-memory
collaborators (see ``conftest.make_manager``).
"""

from unittest.mock import AsyncMock, MagicMock

from conftest import FakeStore, make_entity, make_kg_entity

from kgsync.errors import StoreConnectionError, SyncCancelledError
from kgsync.mcp.tools import SYNC_TOOL_NAMES, SYNC_TOOLS, handle_sync_tool


def _text(result) -> str:
    return result.content[0].text


class TestToolDefinitions:
    def test_five_tools(self):
        assert SYNC_TOOL_NAMES == {
            "sync_status",
            "sync_pull",
            "sync_push",
            "sync_history",
            "sync_rollback",
        }

    def test_rollback_requires_to(self):
        tool = next(t for t in SYNC_TOOLS if t.name == "sync_rollback")
        assert tool.inputSchema["required"] == ["to"]

    def test_read_only_hints(self):
        hints = {t.name: t.annotations.readOnlyHint for t in SYNC_TOOLS}
        assert hints["sync_status"] is True
        assert hints["sync_history"] is True
        assert hints["sync_pull"] is False

    def test_strategy_enum(self):
        tool = next(t for t in SYNC_TOOLS if t.name == "sync_pull")
        assert tool.inputSchema["properties"]["strategy"]["enum"] == [
            "use_code",
            "use_kg",
            "merge",
            "manual",
        ]


class TestStatusTool:
    async def test_status(self, make_manager):
        manager = make_manager([make_entity("User", properties=["id"])])
        result = await handle_sync_tool("sync_status", None, manager)
        assert not result.isError
        assert result.structuredContent["summary"]["code_ahead"] == 1
        assert "Code ahead: 1" in _text(result)

    async def test_invalid_modules(self, make_manager):
        result = await handle_sync_tool(
            "sync_status", {"modules": "user"}, make_manager([])
        )
        assert result.isError
        assert "validation_error" in _text(result)


class TestApplyTools:
    async def test_unforced_pull_is_declined(self, make_manager, history):
        manager = make_manager([make_entity("User")])
        result = await handle_sync_tool("sync_pull", {}, manager)
        assert result.structuredContent["outcome"] == "aborted"
        assert history.get_history() == []

    async def test_forced_pull_applies(self, make_manager, fake_store, history):
        manager = make_manager([make_entity("User")])
        result = await handle_sync_tool(
            "sync_pull", {"force": True, "modules": ["user"]}, manager
        )
        assert result.structuredContent["outcome"] == "applied"
        assert [e.name for e in fake_store.upserted] == ["User"]
        assert history.get_history()[0].details["modules"] == ["user"]

    async def test_dry_run_push(self, make_manager, mock_writer):
        store = FakeStore()
        store.add(make_kg_entity("Invoice", module="billing"))
        manager = make_manager([], store=store)
        result = await handle_sync_tool(
            "sync_push", {"dry_run": True}, manager
        )
        assert result.structuredContent["outcome"] == "dry_run"
        mock_writer.write_entity.assert_not_called()

    async def test_conflict_without_strategy_stays_manual(self, make_manager):
        store = FakeStore()
        store.add(make_kg_entity("User", properties=["a"]))
        manager = make_manager(
            [make_entity("User", properties=["b"])], store=store
        )
        result = await handle_sync_tool("sync_pull", {"force": True}, manager)
        data = result.structuredContent
        assert data["outcome"] == "conflicts_resolved"
        assert data["resolutions"][0]["strategy"] == "manual"
        assert data["resolutions"][0]["resolved"] is False


class TestHistoryAndRollbackTools:
    async def test_history(self, make_manager, history):
        history.record_sync("pull", {"modules": None}, git_commit="abc")
        result = await handle_sync_tool("sync_history", {}, make_manager([]))
        entries = result.structuredContent["entries"]
        assert entries[0]["gitCommit"] == "abc"

    async def test_rollback(self, make_manager, history):
        history.record_sync("pull", {}, git_commit="abc")
        history.record_sync("push", {})
        result = await handle_sync_tool(
            "sync_rollback", {"to": "abc"}, make_manager([])
        )
        assert not result.isError
        assert len(result.structuredContent["remaining"]) == 1
        assert "was not changed" in _text(result)

    async def test_rollback_missing_to(self, make_manager):
        result = await handle_sync_tool("sync_rollback", {}, make_manager([]))
        assert result.isError
        assert "to is required" in _text(result)

    async def test_rollback_not_found(self, make_manager):
        result = await handle_sync_tool(
            "sync_rollback", {"to": "nope"}, make_manager([])
        )
        assert result.isError
        assert "Error (not_found)" in _text(result)
        assert "sync_history" in _text(result)


class TestErrorMapping:
    async def test_store_error(self):
        manager = MagicMock()
        manager.status = AsyncMock(side_effect=StoreConnectionError("locked"))
        result = await handle_sync_tool("sync_status", {}, manager)
        assert "Error (store_error): locked" in _text(result)

    async def test_cancelled(self):
        manager = MagicMock()
        manager.pull = AsyncMock(side_effect=SyncCancelledError("stop"))
        result = await handle_sync_tool("sync_pull", {}, manager)
        assert "Error (cancelled)" in _text(result)

    async def test_unexpected_error(self):
        manager = MagicMock()
        manager.show_history = AsyncMock(side_effect=RuntimeError("disk"))
        result = await handle_sync_tool("sync_history", {}, manager)
        assert result.isError
        assert "Error (server_error): disk" in _text(result)

    async def test_unknown_tool(self):
        result = await handle_sync_tool("sync_sideways", {}, MagicMock())
        assert "Unknown sync tool" in _text(result)
