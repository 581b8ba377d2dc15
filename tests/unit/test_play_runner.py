"""
Tests for the play runner: ordering, isolation, conditions and fan-out.
"""

import asyncio
import time
from typing import Dict, List

import pytest

from conftest import MockConnectionFactory
from converge.engine.config import RunnerConfig
from converge.engine.errors import HandlerError, UnknownGroupError
from converge.engine.inventory import Inventory
from converge.engine.playbook import Play, Task
from converge.engine.results import ConvergenceReporter, ExecutionResult, TaskStatus
from converge.engine.scheduler import PlayRunner, run_play_sync
from converge.modules.base import ModuleRegistry


class FakeHost:
    """In-memory host state the test handlers converge."""

    def __init__(self):
        self.packages = set()
        self.users = set()


def make_registry(state: Dict[str, FakeHost], calls: List[tuple]) -> ModuleRegistry:
    """Idempotent package/user handlers over FakeHost state."""
    registry = ModuleRegistry()

    @registry.module("package")
    async def package(params, conn):
        calls.append(("package", conn.host.name, params["name"]))
        host = state[conn.host.name]
        if params["name"] in host.packages:
            return {"changed": False}
        host.packages.add(params["name"])
        return {"changed": True}

    @registry.module("user")
    async def user(params, conn):
        calls.append(("user", conn.host.name, params["name"]))
        host = state[conn.host.name]
        if params["name"] in host.users:
            return {"changed": False}
        host.users.add(params["name"])
        return {"changed": True}

    @registry.module("fail_on")
    async def fail_on(params, conn):
        calls.append(("fail_on", conn.host.name, None))
        if conn.host.name in params["hosts"]:
            raise HandlerError("forced failure")
        return {"changed": False}

    @registry.module("sleep")
    async def sleep(params, conn):
        calls.append(("sleep", conn.host.name, None))
        await asyncio.sleep(params["seconds"])
        return {"changed": False}

    return registry


@pytest.fixture
def state() -> Dict[str, FakeHost]:
    return {"h1": FakeHost(), "h2": FakeHost(), "h3": FakeHost()}


@pytest.fixture
def calls() -> List[tuple]:
    return []


@pytest.fixture
def runner_for(state, calls):
    def build(**config) -> PlayRunner:
        return PlayRunner(
            RunnerConfig(**config),
            registry=make_registry(state, calls),
            connection_factory=MockConnectionFactory(),
        )
    return build


def statuses(results: List[ExecutionResult], host: str) -> List[str]:
    ordered = sorted((r for r in results if r.host == host), key=lambda r: r.index)
    return [r.status.value for r in ordered]


PROVISION = Play(
    name="Provision",
    hosts="web",
    tasks=(
        Task("Install nginx (Debian)", "package", {"name": "nginx"},
             condition='os_family == "Debian"'),
        Task("Install nginx (RedHat)", "package", {"name": "nginx"},
             condition='os_family == "RedHat"'),
        Task("Create deploy user", "user", {"name": "deploy"}),
    ),
)

FACTS = {"h1": {"os_family": "Debian"}, "h2": {"os_family": "RedHat"}}


class TestEndToEnd:
    """Provision a mixed Debian/RedHat fleet."""

    @pytest.mark.asyncio
    async def test_mixed_fleet(self, runner_for, two_host_inventory):
        results = await runner_for().run_play(PROVISION, two_host_inventory, FACTS)

        assert statuses(results, "h1") == ["changed", "skipped", "changed"]
        assert statuses(results, "h2") == ["skipped", "changed", "changed"]
        assert ConvergenceReporter("Provision").summarize(results).success is True

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, runner_for, two_host_inventory):
        runner = runner_for()
        await runner.run_play(PROVISION, two_host_inventory, FACTS)
        results = await runner.run_play(PROVISION, two_host_inventory, FACTS)

        assert statuses(results, "h1") == ["ok", "skipped", "ok"]
        assert statuses(results, "h2") == ["skipped", "ok", "ok"]
        assert not any(r.changed for r in results)

    @pytest.mark.asyncio
    async def test_facts_fall_back_to_inventory_vars(self, runner_for, two_host_inventory):
        # two_host_inventory carries os_family as host variables
        results = await runner_for().run_play(PROVISION, two_host_inventory)
        assert statuses(results, "h1") == ["changed", "skipped", "changed"]
        assert statuses(results, "h2") == ["skipped", "changed", "changed"]

    def test_sync_wrapper(self, state, calls, two_host_inventory):
        results = run_play_sync(
            PROVISION,
            two_host_inventory,
            FACTS,
            registry=make_registry(state, calls),
            connection_factory=MockConnectionFactory(),
        )
        assert len(results) == 6


class TestConditions:
    """Conditions filter tasks per host."""

    @pytest.mark.asyncio
    async def test_false_condition_skips_without_execution(self, runner_for, calls):
        inventory = Inventory.from_dict({"web": {"hosts": ["h2"]}})
        play = Play("p", "web", (
            Task("Debian only", "package", {"name": "nginx"}, condition='os_family == "Debian"'),
        ))
        results = await runner_for().run_play(play, inventory, {"h2": {"os_family": "RedHat"}})

        assert [r.status for r in results] == [TaskStatus.SKIPPED]
        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_fact_skips(self, runner_for, calls):
        inventory = Inventory.from_dict({"web": {"hosts": ["h3"]}})
        play = Play("p", "web", (
            Task("Debian only", "package", {"name": "nginx"}, condition='os_family == "Debian"'),
        ))
        results = await runner_for().run_play(play, inventory, {})
        assert [r.status for r in results] == [TaskStatus.SKIPPED]
        assert calls == []


class TestFailStop:
    """One bad host never blocks the fleet."""

    PLAY = Play("p", "web", (
        Task("one", "package", {"name": "a"}),
        Task("two", "fail_on", {"hosts": ["h1"]}),
        Task("three", "package", {"name": "b"}),
        Task("four", "user", {"name": "c"}),
    ))

    @pytest.mark.asyncio
    async def test_failed_host_skips_remaining_tasks(self, runner_for, two_host_inventory, calls):
        results = await runner_for().run_play(self.PLAY, two_host_inventory)

        assert statuses(results, "h1") == ["changed", "failed", "skipped", "skipped"]
        assert statuses(results, "h2") == ["changed", "ok", "changed", "changed"]
        assert ("package", "h1", "b") not in calls

        skipped = [r for r in results if r.host == "h1" and r.status == TaskStatus.SKIPPED]
        assert all(r.message == "host failed" for r in skipped)

        report = ConvergenceReporter().summarize(results)
        assert report.success is False
        assert report.host_stats["h2"].has_failures is False

    @pytest.mark.asyncio
    async def test_continue_on_error(self, runner_for, two_host_inventory):
        results = await runner_for(fail_stop=False).run_play(self.PLAY, two_host_inventory)
        assert statuses(results, "h1") == ["changed", "failed", "changed", "changed"]

    @pytest.mark.asyncio
    async def test_ignore_errors_task(self, runner_for, two_host_inventory):
        play = Play("p", "web", (
            Task("may fail", "fail_on", {"hosts": ["h1"]}, ignore_errors=True),
            Task("after", "user", {"name": "c"}),
        ))
        results = await runner_for().run_play(play, two_host_inventory)
        assert statuses(results, "h1") == ["failed", "changed"]

    @pytest.mark.asyncio
    async def test_unreachable_host_stops(self, state, calls, two_host_inventory):
        runner = PlayRunner(
            registry=make_registry(state, calls),
            connection_factory=MockConnectionFactory(unreachable={"h2"}),
        )
        results = await runner.run_play(self.PLAY, two_host_inventory)

        assert statuses(results, "h2") == ["unreachable", "skipped", "skipped", "skipped"]
        assert statuses(results, "h1")[0] == "changed"

    @pytest.mark.asyncio
    async def test_bad_connection_settings_isolated(self):
        registry = ModuleRegistry()

        @registry.module("noop")
        async def noop(params, conn):
            return {"changed": False}

        inventory = Inventory.from_dict({"web": {"hosts": {
            "bad": {"connection": "ssh", "connect_timeout": "abc"},
            "localhost": {},
        }}})
        play = Play("p", "web", (Task("one", "noop"), Task("two", "noop")))
        results = await PlayRunner(registry=registry).run_play(play, inventory)

        assert statuses(results, "bad") == ["unreachable", "skipped"]
        assert statuses(results, "localhost") == ["ok", "ok"]

    @pytest.mark.asyncio
    async def test_unexpected_error_ends_only_that_host(self, runner_for, two_host_inventory):
        runner = runner_for()
        execute = runner.executor.execute

        async def broken_on_h1(task, ctx, index=0):
            if ctx.name == "h1" and index == 1:
                raise RuntimeError("executor bug")
            return await execute(task, ctx, index)

        runner.executor.execute = broken_on_h1
        results = await runner.run_play(self.PLAY, two_host_inventory)

        assert statuses(results, "h1") == ["changed", "failed", "skipped", "skipped"]
        assert statuses(results, "h2") == ["changed", "ok", "changed", "changed"]
        failed = [r for r in results if r.host == "h1" and r.status == TaskStatus.FAILED]
        assert "executor bug" in failed[0].message

    @pytest.mark.asyncio
    async def test_exactly_one_result_per_host_and_task(self, runner_for, two_host_inventory):
        results = await runner_for().run_play(self.PLAY, two_host_inventory)
        pairs = [(r.host, r.index) for r in results]
        assert len(pairs) == len(set(pairs)) == 8


class TestTargeting:
    """Host selection."""

    @pytest.mark.asyncio
    async def test_unknown_group_produces_no_results(self, runner_for, two_host_inventory, calls):
        play = Play("p", "nosuch", (Task("t", "user", {"name": "x"}),))
        runner = runner_for()
        with pytest.raises(UnknownGroupError):
            await runner.run_play(play, two_host_inventory)
        assert calls == []

    @pytest.mark.asyncio
    async def test_empty_group(self, runner_for):
        inventory = Inventory.from_dict({"web": {}})
        play = Play("p", "web", (Task("t", "user", {"name": "x"}),))
        assert await runner_for().run_play(play, inventory) == []

    @pytest.mark.asyncio
    async def test_limit(self, runner_for, two_host_inventory):
        play = Play("p", "web", (Task("t", "user", {"name": "x"}),))
        results = await runner_for().run_play(play, two_host_inventory, limit="h2")
        assert [r.host for r in results] == ["h2"]

    @pytest.mark.asyncio
    async def test_connections_closed(self, state, calls, two_host_inventory):
        factory = MockConnectionFactory()
        runner = PlayRunner(registry=make_registry(state, calls), connection_factory=factory)
        await runner.run_play(PROVISION, two_host_inventory, FACTS)
        assert all(c.closed for c in factory.connections.values())
        assert set(factory.connections) == {"h1", "h2"}


class TestConcurrency:
    """Bounded fan-out and per-host ordering."""

    @pytest.mark.asyncio
    async def test_hosts_run_in_parallel(self, runner_for):
        inventory = Inventory.from_dict({"web": {"hosts": ["h1", "h2", "h3"]}})
        play = Play("p", "web", (Task("nap", "sleep", {"seconds": 0.2}),))

        started = time.monotonic()
        results = await runner_for(forks=3).run_play(play, inventory)
        elapsed = time.monotonic() - started

        assert len(results) == 3
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_forks_bound_fan_out(self, state, calls):
        registry = ModuleRegistry()
        active = []
        peak = []

        @registry.module("track")
        async def track(params, conn):
            active.append(conn.host.name)
            peak.append(len(active))
            await asyncio.sleep(0.02)
            active.remove(conn.host.name)
            return {"changed": False}

        inventory = Inventory.from_dict({"web": {"hosts": [f"h{i}" for i in range(6)]}})
        play = Play("p", "web", (Task("a", "track"), Task("b", "track")))
        runner = PlayRunner(
            RunnerConfig(forks=2),
            registry=registry,
            connection_factory=MockConnectionFactory(),
        )
        results = await runner.run_play(play, inventory)

        assert len(results) == 12
        assert max(peak) <= 2

    @pytest.mark.asyncio
    async def test_tasks_sequential_per_host(self, runner_for, two_host_inventory):
        play = Play("p", "web", (
            Task("nap", "sleep", {"seconds": 0.05}),
            Task("pkg", "package", {"name": "a"}),
        ))
        results = [r async for r in runner_for().run(play, two_host_inventory)]
        for host in ("h1", "h2"):
            indexes = [r.index for r in results if r.host == host]
            assert indexes == [0, 1]

    @pytest.mark.asyncio
    async def test_results_stream_as_produced(self, runner_for):
        inventory = Inventory.from_dict({"web": {"hosts": {"h1": {}, "h2": {}}}})
        play = Play("p", "h1,h2", (Task("nap", "sleep", {"seconds": 0.0}),))
        seen = []
        async for result in runner_for().run(play, inventory):
            seen.append(result.host)
        assert sorted(seen) == ["h1", "h2"]


class TestCancellation:
    """Cancelled plays still report every (host, task) pair."""

    @pytest.mark.asyncio
    async def test_cancel_skips_remaining(self, state, calls, two_host_inventory):
        registry = make_registry(state, calls)

        @registry.module("stop")
        async def stop(params, conn):
            runner.cancel()
            return {"changed": False}

        runner = PlayRunner(registry=registry, connection_factory=MockConnectionFactory())
        play = Play("p", "web", (
            Task("stop", "stop"),
            Task("pkg", "package", {"name": "a"}),
            Task("usr", "user", {"name": "b"}),
        ))
        results = await runner.run_play(play, two_host_inventory)

        assert runner.cancelled
        assert len(results) == 6
        assert statuses(results, "h1")[0] == "ok"
        later = [r for r in results if r.index > 0]
        assert all(r.status == TaskStatus.SKIPPED for r in later)
        assert all(r.message == "cancelled" for r in later)
        assert not any(c[0] in ("package", "user") for c in calls)

    @pytest.mark.asyncio
    async def test_play_timeout(self, runner_for, two_host_inventory):
        play = Play("p", "web", (
            Task("nap", "sleep", {"seconds": 0.2}),
            Task("pkg", "package", {"name": "a"}),
        ))
        results = await runner_for(play_timeout=0.05).run_play(play, two_host_inventory)

        assert statuses(results, "h1") == ["ok", "skipped"]
        assert statuses(results, "h2") == ["ok", "skipped"]
