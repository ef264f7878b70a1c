"""Tests for pending-work tracking around migration entry points."""

from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from fireway.loader import load_source
from fireway.tracker import PendingWorkTracker

FIRE_AND_FORGET = """
import asyncio

async def _write(state):
    await state["release"].wait()
    state["written"] = True

def migrate(state):
    state["task"] = asyncio.create_task(_write(state))
"""

LATE_FAILURE = """
import asyncio

async def _explode():
    await asyncio.sleep(0)
    raise RuntimeError("late boom")

def migrate(state):
    state["task"] = asyncio.create_task(_explode())
"""


EARLY_FAILURE = """
import asyncio

async def _explode():
    raise RuntimeError("early boom")

async def migrate(state):
    state["task"] = asyncio.create_task(_explode())
    await asyncio.sleep(0.01)
    if state.get("handle"):
        try:
            await state["task"]
        except RuntimeError as exc:
            state["handled"] = str(exc)
"""


def _module(tmp_path: Path, name: str, source: str):
    path = tmp_path / f"{name}.py"
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return path, load_source(f"tracker_{name}", path)


class TestEntryPoints:
    @pytest.mark.asyncio
    async def test_sync_entry_succeeds(self, tmp_path: Path):
        calls = []

        result = await PendingWorkTracker(tmp_path / "m.py").run(calls.append, "ctx")

        assert result.success is True
        assert result.error is None
        assert calls == ["ctx"]

    @pytest.mark.asyncio
    async def test_async_entry_is_awaited(self, tmp_path: Path):
        done = []

        async def entry(ctx):
            await asyncio.sleep(0)
            done.append(ctx)

        result = await PendingWorkTracker(tmp_path / "m.py").run(entry, "ctx")

        assert result.success is True
        assert done == ["ctx"]

    @pytest.mark.asyncio
    async def test_sync_throw_fails(self, tmp_path: Path):
        def entry(ctx):
            raise ValueError("bad data")

        result = await PendingWorkTracker(tmp_path / "m.py").run(entry, None)

        assert result.success is False
        assert isinstance(result.error, ValueError)

    @pytest.mark.asyncio
    async def test_async_rejection_fails(self, tmp_path: Path):
        async def entry(ctx):
            await asyncio.sleep(0)
            raise ValueError("bad data")

        with capture_logs() as logs:
            result = await PendingWorkTracker(tmp_path / "m.py").run(entry, None)

        assert result.success is False
        assert isinstance(result.error, ValueError)
        assert any(e["event"] == "migration.error" for e in logs)

    @pytest.mark.asyncio
    async def test_return_value_is_ignored(self, tmp_path: Path):
        async def entry(ctx):
            return False

        result = await PendingWorkTracker(tmp_path / "m.py").run(entry, None)

        assert result.success is True


class TestPendingWork:
    @pytest.mark.asyncio
    async def test_unawaited_task_warns_with_location(self, tmp_path: Path):
        path, module = _module(tmp_path, "fire_and_forget", FIRE_AND_FORGET)
        state = {"release": asyncio.Event()}

        with capture_logs() as logs:
            result = await PendingWorkTracker(path).run(module.migrate, state)

        assert result.success is True
        assert "written" not in state
        assert len(result.outstanding) == 1
        assert result.outstanding[0].location.startswith(f"{path}:")
        warning = next(e for e in logs if e["event"] == "pending_work.unawaited")
        assert warning["log_level"] == "warning"
        assert warning["hint"] == "Use --force-wait if you want to wait"
        assert warning["locations"] == [result.outstanding[0].location]

        state["release"].set()
        await state["task"]

    @pytest.mark.asyncio
    async def test_force_wait_blocks_until_settled(self, tmp_path: Path):
        path, module = _module(tmp_path, "fire_and_forget", FIRE_AND_FORGET)
        state = {"release": asyncio.Event()}
        loop = asyncio.get_running_loop()
        loop.call_later(0.02, state["release"].set)

        with capture_logs() as logs:
            result = await PendingWorkTracker(path, force_wait=True).run(module.migrate, state)

        assert result.success is True
        assert state["written"] is True
        assert state["task"].done()
        assert not any(e["event"] == "pending_work.unawaited" for e in logs)

    @pytest.mark.asyncio
    async def test_nothing_pending_logs_nothing(self, tmp_path: Path):
        async def entry(ctx):
            await asyncio.gather(asyncio.sleep(0), asyncio.sleep(0))

        with capture_logs() as logs:
            result = await PendingWorkTracker(tmp_path / "m.py").run(entry, None)

        assert result.success is True
        assert result.outstanding == []
        assert logs == []

    @pytest.mark.asyncio
    async def test_late_failure_is_captured(self, tmp_path: Path):
        path, module = _module(tmp_path, "late_failure", LATE_FAILURE)
        state: dict = {}

        with capture_logs() as logs:
            result = await PendingWorkTracker(path, grace_period=0.05).run(module.migrate, state)

        assert result.success is False
        assert str(result.error) == "late boom"
        assert any(e["event"] == "migration.unhandled_error" for e in logs)
        assert state["task"].done()

    @pytest.mark.asyncio
    async def test_late_failure_stops_force_wait(self, tmp_path: Path):
        path, module = _module(tmp_path, "late_failure", LATE_FAILURE)
        blocker = asyncio.Event()
        state: dict = {}

        def migrate(ctx):
            module.migrate(ctx)
            asyncio.get_running_loop().create_task(blocker.wait())

        result = await PendingWorkTracker(path, force_wait=True).run(migrate, state)

        assert result.success is False
        assert str(result.error) == "late boom"
        blocker.set()
        await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_early_failure_nobody_retrieved_is_captured(self, tmp_path: Path):
        path, module = _module(tmp_path, "early_failure", EARLY_FAILURE)
        state: dict = {}

        with capture_logs() as logs:
            result = await PendingWorkTracker(path, grace_period=0).run(module.migrate, state)

        assert state["task"].done()
        assert result.success is False
        assert str(result.error) == "early boom"
        assert any(e["event"] == "migration.unhandled_error" for e in logs)

    @pytest.mark.asyncio
    async def test_early_failure_handled_by_entry_point(self, tmp_path: Path):
        path, module = _module(tmp_path, "early_failure", EARLY_FAILURE)
        state: dict = {"handle": True}

        result = await PendingWorkTracker(path, grace_period=0).run(module.migrate, state)

        assert result.success is True
        assert state["handled"] == "early boom"

    @pytest.mark.asyncio
    async def test_tasks_created_outside_the_entry_point_are_ignored(self, tmp_path: Path):
        release = asyncio.Event()
        spawned: list[asyncio.Task] = []

        async def engine_work():
            await asyncio.sleep(0)
            spawned.append(asyncio.get_running_loop().create_task(release.wait()))

        sibling = asyncio.create_task(engine_work())

        async def entry(ctx):
            await asyncio.sleep(0.01)

        result = await PendingWorkTracker(tmp_path / "m.py").run(entry, None)

        assert len(spawned) == 1
        assert result.outstanding == []
        release.set()
        await sibling
        await spawned[0]

    @pytest.mark.asyncio
    async def test_concurrent_trackers_are_isolated(self, tmp_path: Path):
        path, module = _module(tmp_path, "fire_and_forget", FIRE_AND_FORGET)
        first = {"release": asyncio.Event()}
        second = {"release": asyncio.Event()}

        with capture_logs():
            results = await asyncio.gather(
                PendingWorkTracker(path).run(module.migrate, first),
                PendingWorkTracker(path).run(module.migrate, second),
            )

        assert [len(result.outstanding) for result in results] == [1, 1]
        for state in (first, second):
            state["release"].set()
            await state["task"]


class TestInstrumentation:
    @pytest.mark.asyncio
    async def test_loop_hooks_restored(self, tmp_path: Path):
        loop = asyncio.get_running_loop()
        factory = loop.get_task_factory()
        handler = loop.get_exception_handler()

        await PendingWorkTracker(tmp_path / "m.py").run(lambda ctx: None, None)

        assert loop.get_task_factory() is factory
        assert loop.get_exception_handler() is handler

    @pytest.mark.asyncio
    async def test_loop_hooks_restored_after_failure(self, tmp_path: Path):
        loop = asyncio.get_running_loop()
        factory = loop.get_task_factory()

        def entry(ctx):
            raise RuntimeError("boom")

        await PendingWorkTracker(tmp_path / "m.py").run(entry, None)

        assert loop.get_task_factory() is factory
