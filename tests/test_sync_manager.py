"""Tests for sync/manager.py -- the reconciliation orchestrator.

Covers:
- status(): summary counts, last sync, read-only behaviour
- pull()/push(): no-op, dry-run purity, confirmation, forced apply
- partial-failure application still records history
- conflict gating with explicit strategy, prompt and non-interactive mode
- rollback() and show_history() delegation
- gathering: missing modules dir, module filters, missing store readers,
  store failures
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import (
    FakeStore,
    ScriptedPrompt,
    make_entity,
    make_kg_entity,
    write_source,
)

from kgsync.errors import (
    RollbackPointNotFoundError,
    StoreConnectionError,
    SyncCancelledError,
)
from kgsync.sync.manager import SyncManager
from kgsync.sync.models import (
    CODE,
    KNOWLEDGE_GRAPH,
    ConflictStrategy,
    SyncOptions,
    SyncOutcome,
)
from kgsync.sync.optimizer import SyncOptimizer
from kgsync.sync.prompts import CancellationToken


def _store_with(*entities) -> FakeStore:
    store = FakeStore()
    for ent in entities:
        store.add(ent)
    return store


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


class TestStatus:
    async def test_single_code_entity_is_code_ahead(self, make_manager):
        manager = make_manager(
            [make_entity("User", properties=["id", "name"])]
        )
        status = await manager.status()

        s = status.summary
        assert (s.code_ahead, s.kg_ahead, s.in_sync, s.conflicted) == (
            1,
            0,
            0,
            0,
        )
        assert status.last_sync is None

    async def test_in_sync_entities_counted(self, make_manager):
        store = _store_with(make_kg_entity("User", properties=["id"]))
        manager = make_manager(
            [make_entity("User", properties=["id"])], store=store
        )
        status = await manager.status()
        assert status.summary.in_sync == 1
        assert status.summary.code_ahead == 0
        assert status.summary.kg_ahead == 0

    async def test_divergent_entity_is_conflicted(self, make_manager):
        store = _store_with(make_kg_entity("User", properties=["id"]))
        manager = make_manager(
            [make_entity("User", properties=["id", "email"])], store=store
        )
        status = await manager.status()
        assert status.summary.conflicted == 1
        assert status.summary.code_ahead == 1
        assert status.summary.kg_ahead == 1
        assert status.conflicts[0].entity.id == "user:thing:User"

    async def test_kg_only_entity_appears_in_both_lists(self, make_manager):
        store = _store_with(make_kg_entity("Invoice", module="billing"))
        manager = make_manager([], store=store)
        status = await manager.status()
        assert [c.type.value for c in status.pending_changes.in_code] == [
            "deleted"
        ]
        assert [
            c.type.value for c in status.pending_changes.in_knowledge_graph
        ] == ["added"]

    async def test_in_sync_subtracts_every_code_side_change(
        self, make_manager
    ):
        store = _store_with(
            make_kg_entity("User", properties=["id"]),
            make_kg_entity("Invoice", properties=["id"]),
        )
        manager = make_manager(
            [make_entity("User", properties=["id"])], store=store
        )
        status = await manager.status()

        s = status.summary
        # The KG-only Invoice shows up as a code-side deletion.
        assert s.code_ahead == 1
        assert s.kg_ahead == 1
        assert s.in_sync == 1 - s.code_ahead == 0

    async def test_last_sync_from_history(self, make_manager, history):
        entry = history.record_sync("pull", {})
        status = await make_manager([]).status()
        assert status.last_sync == entry.timestamp

    async def test_status_never_writes(self, make_manager, history, fake_store):
        manager = make_manager([make_entity("User")])
        await manager.status()
        assert not history.history_file.exists()
        assert fake_store.upserted == []


# ---------------------------------------------------------------------------
# pull
# ---------------------------------------------------------------------------


class TestPull:
    async def test_no_changes_is_noop(self, make_manager, history):
        report = await make_manager([]).pull(SyncOptions(force=True))
        assert report.outcome == SyncOutcome.NO_CHANGES
        assert not history.history_file.exists()

    async def test_dry_run_leaves_history_byte_identical(
        self, make_manager, history, fake_store
    ):
        history.record_sync("push", {})
        before = history.history_file.read_bytes()

        manager = make_manager([make_entity("User", properties=["id"])])
        report = await manager.pull(SyncOptions(dry_run=True))

        assert report.outcome == SyncOutcome.DRY_RUN
        assert len(report.changes) == 1
        assert history.history_file.read_bytes() == before
        assert fake_store.upserted == []

    async def test_forced_pull_applies_and_records(
        self, make_manager, history, fake_store
    ):
        manager = make_manager(
            [make_entity("User", properties=["id"]), make_entity("Role")]
        )
        report = await manager.pull(SyncOptions(force=True, modules=["user"]))

        assert report.outcome == SyncOutcome.APPLIED
        assert report.succeeded == 2
        assert sorted(e.name for e in fake_store.upserted) == ["Role", "User"]
        (entry,) = history.get_history()
        assert entry.action == "pull"
        assert entry.details == {
            "modules": ["user"],
            "dryRun": False,
            "applied": 2,
            "failed": 0,
        }

    async def test_partial_failure_still_records_history(
        self, make_manager, history
    ):
        store = FakeStore(fail_on={"Role"})
        manager = make_manager(
            [make_entity("User"), make_entity("Role"), make_entity("Team")],
            store=store,
        )
        report = await manager.pull(SyncOptions(force=True))

        assert report.outcome == SyncOutcome.APPLIED
        assert report.failed == 1
        assert report.succeeded == 2
        assert sorted(e.name for e in store.upserted) == ["Team", "User"]
        failure = next(r for r in report.results if not r.success)
        assert "cannot write Role" in failure.error
        (entry,) = history.get_history()
        assert entry.details["failed"] == 1

    async def test_deleted_in_code_removes_from_graph(self, make_manager):
        store = _store_with(make_kg_entity("Invoice", module="billing"))
        manager = make_manager([], store=store)
        report = await manager.pull(SyncOptions(force=True))
        assert report.succeeded == 1
        assert [e.name for e in store.deleted] == ["Invoice"]
        assert report.results[0].action == "deleted"
        assert report.results[0].target == KNOWLEDGE_GRAPH

    async def test_confirmation_accepted(self, make_manager, history):
        prompt = ScriptedPrompt(confirm=True)
        manager = make_manager([make_entity("User")], prompt=prompt)
        report = await manager.pull()
        assert report.outcome == SyncOutcome.APPLIED
        assert prompt.confirm_calls == ["Apply 1 change(s) to knowledge graph?"]
        assert len(history.get_history()) == 1

    async def test_confirmation_declined_aborts(
        self, make_manager, history, fake_store
    ):
        prompt = ScriptedPrompt(confirm=False)
        manager = make_manager([make_entity("User")], prompt=prompt)
        report = await manager.pull()
        assert report.outcome == SyncOutcome.ABORTED
        assert fake_store.upserted == []
        assert not history.history_file.exists()

    async def test_force_skips_confirmation(self, make_manager):
        prompt = ScriptedPrompt(confirm=False)
        manager = make_manager([make_entity("User")], prompt=prompt)
        report = await manager.pull(SyncOptions(force=True))
        assert report.outcome == SyncOutcome.APPLIED
        assert prompt.confirm_calls == []

    async def test_non_interactive_declines_unforced_run(self, make_manager):
        prompt = ScriptedPrompt(confirm=True)
        manager = make_manager([make_entity("User")], prompt=prompt)
        report = await manager.pull(SyncOptions(non_interactive=True))
        assert report.outcome == SyncOutcome.ABORTED
        assert prompt.confirm_calls == []


# ---------------------------------------------------------------------------
# push
# ---------------------------------------------------------------------------


class TestPush:
    async def test_push_writes_graph_entities_to_code(
        self, make_manager, mock_writer, history
    ):
        store = _store_with(make_kg_entity("Invoice", module="billing"))
        manager = make_manager([], store=store)
        report = await manager.push(SyncOptions(force=True))

        assert report.outcome == SyncOutcome.APPLIED
        mock_writer.write_entity.assert_called_once()
        written = mock_writer.write_entity.call_args.args[0]
        assert written.name == "Invoice"
        assert written.location.source == KNOWLEDGE_GRAPH
        assert report.results[0].target == CODE
        assert history.get_history()[0].action == "push"

    async def test_push_removes_code_only_entities(
        self, make_manager, mock_writer
    ):
        manager = make_manager([make_entity("User")])
        report = await manager.push(SyncOptions(force=True))
        mock_writer.remove_entity.assert_called_once()
        removed = mock_writer.remove_entity.call_args.args[0]
        assert removed.location.source == CODE
        assert report.results[0].action == "deleted"

    async def test_push_writer_failure_is_partial(
        self, make_manager, mock_writer, history
    ):
        mock_writer.remove_entity.side_effect = FileNotFoundError("gone")
        manager = make_manager([make_entity("User")])
        report = await manager.push(SyncOptions(force=True))
        assert report.failed == 1
        assert report.results[0].error == "gone"
        assert len(history.get_history()) == 1

    async def test_push_dry_run(self, make_manager, mock_writer, history):
        store = _store_with(make_kg_entity("Invoice", module="billing"))
        report = await make_manager([], store=store).push(
            SyncOptions(dry_run=True)
        )
        assert report.outcome == SyncOutcome.DRY_RUN
        mock_writer.write_entity.assert_not_called()
        assert not history.history_file.exists()


# ---------------------------------------------------------------------------
# conflict gating
# ---------------------------------------------------------------------------


class TestConflictGating:
    def _conflicted(self, make_manager, **kwargs):
        store = _store_with(
            make_kg_entity("User", properties=["id", "name"]),
        )
        code = [
            make_entity("User", properties=["id", "email"]),
            make_entity("Role"),
        ]
        return make_manager(code, store=store, **kwargs), store

    async def test_strategy_resolves_and_stops(
        self, make_manager, history
    ):
        manager, store = self._conflicted(make_manager)
        report = await manager.pull(
            SyncOptions(force=True, strategy="use_code")
        )

        assert report.outcome == SyncOutcome.CONFLICTS_RESOLVED
        assert len(report.resolutions) == 1
        assert report.resolutions[0].strategy == ConflictStrategy.USE_CODE
        # Only the conflict winner is written; "Role" waits for the next run.
        assert [e.name for e in store.upserted] == ["User"]
        assert not history.history_file.exists()

    async def test_use_kg_hands_off_to_code_writer(
        self, make_manager, mock_writer
    ):
        manager, _ = self._conflicted(make_manager)
        await manager.pull(SyncOptions(strategy="use_kg"))
        written = mock_writer.write_entity.call_args.args[0]
        assert written.properties == ["id", "name"]

    async def test_merge_writes_both_sides(self, make_manager, mock_writer):
        manager, store = self._conflicted(make_manager)
        report = await manager.push(SyncOptions(strategy="merge"))
        assert [r.target for r in report.results] == [KNOWLEDGE_GRAPH, CODE]
        assert store.upserted[0].properties == ["id", "email", "name"]
        mock_writer.write_entity.assert_called_once()

    async def test_prompt_used_without_strategy(self, make_manager):
        prompt = ScriptedPrompt(strategy="use_code")
        manager, store = self._conflicted(make_manager, prompt=prompt)
        report = await manager.pull(SyncOptions(force=True))
        assert len(prompt.strategy_calls) == 1
        assert report.resolutions[0].resolved
        assert [e.name for e in store.upserted] == ["User"]

    async def test_unrecognised_prompt_answer_is_manual(self, make_manager):
        prompt = ScriptedPrompt(strategy="keep mine")
        manager, store = self._conflicted(make_manager, prompt=prompt)
        report = await manager.pull(SyncOptions(force=True))
        assert report.resolutions[0].strategy == ConflictStrategy.MANUAL
        assert store.upserted == []
        assert report.results == []

    async def test_non_interactive_without_strategy_is_manual(
        self, make_manager
    ):
        prompt = ScriptedPrompt(strategy="use_code")
        manager, store = self._conflicted(make_manager, prompt=prompt)
        report = await manager.pull(SyncOptions(non_interactive=True))
        assert prompt.strategy_calls == []
        assert report.resolutions[0].strategy == ConflictStrategy.MANUAL
        assert store.upserted == []

    async def test_dry_run_resolves_without_writing(self, make_manager):
        manager, store = self._conflicted(make_manager)
        report = await manager.pull(
            SyncOptions(dry_run=True, strategy="use_code")
        )
        assert report.outcome == SyncOutcome.CONFLICTS_RESOLVED
        assert report.resolutions[0].resolved
        assert store.upserted == []

    async def test_cancelled_token_aborts_prompt(self, make_manager):
        token = CancellationToken()
        token.cancel()
        manager, _ = self._conflicted(
            make_manager, prompt=ScriptedPrompt(), cancel_token=token
        )
        with pytest.raises(SyncCancelledError):
            await manager.pull()


# ---------------------------------------------------------------------------
# rollback / history
# ---------------------------------------------------------------------------


class TestRollbackAndHistory:
    async def test_rollback_requires_point(self, make_manager, history):
        with pytest.raises(ValueError, match="requires a target"):
            await make_manager([]).rollback("")
        assert not history.history_file.exists()

    async def test_rollback_delegates(self, make_manager, history):
        first = history.record_sync("pull", {"modules": None})
        history.record_sync("push", {"modules": None})
        remaining = await make_manager([]).rollback(first.timestamp)
        assert len(remaining) == 1
        assert len(history.get_history()) == 1

    async def test_rollback_does_not_touch_entities(
        self, make_manager, history, fake_store
    ):
        manager = make_manager([make_entity("User")])
        await manager.pull(SyncOptions(force=True))
        entry = history.get_history()[0]
        history.record_sync("push", {})
        await manager.rollback(entry.timestamp)
        assert [e.name for e in fake_store.upserted] == ["User"]
        assert fake_store.deleted == []

    async def test_rollback_unknown_point(self, make_manager):
        with pytest.raises(RollbackPointNotFoundError):
            await make_manager([]).rollback("nope")

    async def test_show_history(self, make_manager, history):
        history.record_sync("pull", {"modules": ["user"]})
        history.record_sync("push", {"modules": ["billing"]})
        history.record_sync("pull", {"modules": None})
        manager = make_manager([])

        assert len(await manager.show_history()) == 3
        filtered = await manager.show_history(SyncOptions(modules=["user"]))
        assert [e.details["modules"] for e in filtered] == [["user"], None]


# ---------------------------------------------------------------------------
# gathering
# ---------------------------------------------------------------------------


class TestGather:
    async def test_missing_modules_dir_is_zero_entities(
        self, tmp_path, history, fake_store
    ):
        manager = SyncManager(
            fake_store,
            history=history,
            modules_dir=tmp_path / "does-not-exist",
        )
        snapshot = await manager.gather()
        assert snapshot.code_entities == []

    async def test_module_filter(self, make_manager):
        store = _store_with(
            make_kg_entity("Invoice", module="billing"),
            make_kg_entity("User"),
        )
        manager = make_manager(
            [make_entity("Role"), make_entity("Plan", module="billing")],
            store=store,
        )
        snapshot = await manager.gather(SyncOptions(modules=["billing"]))
        assert [e.name for e in snapshot.code_entities] == ["Plan"]
        assert [e.name for e in snapshot.kg_entities] == ["Invoice"]

    async def test_missing_reader_skips_type(self, make_manager):
        store = _store_with(make_kg_entity("Ship", type="flow"))
        manager = make_manager([], store=store)
        snapshot = await manager.gather()
        # FakeStore has no get_flows_by_module
        assert snapshot.kg_entities == []

    async def test_store_failure_propagates(self, make_manager, history):
        class BrokenStore(FakeStore):
            def get_modules(self):
                raise StoreConnectionError("database is locked")

        manager = make_manager([make_entity("User")], store=BrokenStore())
        with pytest.raises(StoreConnectionError):
            await manager.pull(SyncOptions(force=True))
        assert not history.history_file.exists()

    async def test_real_analyzer_skips_unparseable_files(
        self, modules_dir, history, fake_store
    ):
        good = modules_dir / "user" / "things" / "User.py"
        good.parent.mkdir(parents=True)
        good.write_text("class User:\n    id: int = 0\n", encoding="utf-8")
        (good.parent / "Broken.py").write_text("class (:\n", encoding="utf-8")

        manager = SyncManager(
            fake_store, history=history, modules_dir=modules_dir
        )
        snapshot = await manager.gather()
        assert [(e.name, e.properties) for e in snapshot.code_entities] == [
            ("User", ["id"])
        ]

    async def test_only_entity_type_directories_are_scanned(
        self, modules_dir, history, fake_store
    ):
        write_source(
            modules_dir, "user", "thing", "User", "class User:\n    id = 0\n"
        )
        helper = modules_dir / "user" / "helpers" / "util.py"
        helper.parent.mkdir(parents=True)
        helper.write_text("def slugify(text):\n    return text\n")
        suite = modules_dir / "user" / "tests" / "test_user.py"
        suite.parent.mkdir(parents=True)
        suite.write_text("def test_user():\n    pass\n")

        manager = SyncManager(
            fake_store, history=history, modules_dir=modules_dir
        )
        snapshot = await manager.gather()
        assert [str(e.key) for e in snapshot.code_entities] == [
            "user:thing:User"
        ]

    async def test_optimizer_reuses_unchanged_analysis(
        self, modules_dir, history, fake_store
    ):
        path = modules_dir / "user" / "things" / "User.py"
        path.parent.mkdir(parents=True)
        path.write_text("class User:\n    id: int = 0\n", encoding="utf-8")
        calls = []

        class CountingAnalyzer:
            def analyze(self, file_path):
                calls.append(file_path)
                return [make_entity("User", properties=["id"])]

        manager = SyncManager(
            fake_store,
            analyzer=CountingAnalyzer(),
            history=history,
            modules_dir=modules_dir,
            optimizer=SyncOptimizer(chunk_size=2),
        )
        await manager.gather()
        await manager.gather()
        assert len(calls) == 1

        path.write_text("class User:\n    id: int = 1\n", encoding="utf-8")
        await manager.gather()
        assert len(calls) == 2

    async def test_same_snapshot_used_for_both_directions(
        self, make_manager
    ):
        store = _store_with(make_kg_entity("User", properties=["id"]))
        manager = make_manager(
            [make_entity("User", properties=["id", "name"])], store=store
        )
        gathered = []
        original = manager.gather

        async def _counting(options=None):
            snapshot = await original(options)
            gathered.append(snapshot)
            return snapshot

        manager.gather = _counting
        await asyncio.wait_for(manager.status(), timeout=5)
        assert len(gathered) == 1
