"""
Converge Play Runner

Runs a Play across its target hosts. Hosts are processed concurrently, at
most ``forks`` at a time; within a host, tasks run strictly in declared
order. Results are streamed through a single queue as they are produced.
"""

import asyncio
import logging
from typing import AsyncIterator, Iterable, List, Mapping, Optional, Union

from converge.connections.base import ConnectionFactory, create_connection_factory
from converge.engine.config import RunnerConfig
from converge.engine.executor import HostContext, ModuleExecutor
from converge.engine.facts import FactSource
from converge.engine.inventory import Host, Inventory
from converge.engine.playbook import Play
from converge.engine.results import (
    ConvergenceReporter,
    ExecutionResult,
    PlayReport,
    TaskStatus,
)
from converge.modules.base import ModuleRegistry

logger = logging.getLogger(__name__)

FactsArg = Union[FactSource, Mapping[str, Mapping], None]

# End-of-stream marker on the result queue
_DONE = object()


class PlayRunner:
    """
    Orchestrates one play at a time.

    Uses asyncio with a semaphore to bound fan-out. Each host worker owns its
    HostContext and connection; the only shared state is the result queue.

    Per-host fail-stop: after a ``failed`` or ``unreachable`` result the
    host's remaining tasks are reported as ``skipped`` while other hosts
    carry on. With ``fail_stop`` disabled (or ``ignore_errors`` on the task) a
    failed task does not stop the host; an unreachable host always stops.
    """

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        registry: Optional[ModuleRegistry] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ):
        self.config = config or RunnerConfig()
        self.executor = ModuleExecutor(registry, task_timeout=self.config.task_timeout)
        self.connection_factory = connection_factory
        self._cancelled = asyncio.Event()

    @property
    def forks(self) -> int:
        return self.config.forks

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """
        Stop issuing new task invocations.

        In-flight handlers finish (or time out) normally; tasks that never
        started are reported as skipped.
        """
        if not self._cancelled.is_set():
            logger.info("Play cancelled; no new tasks will start")
        self._cancelled.set()

    async def run(
        self,
        play: Play,
        inventory: Inventory,
        facts: FactsArg = None,
        limit: Optional[str] = None,
    ) -> AsyncIterator[ExecutionResult]:
        """
        Run ``play`` and yield results as they complete.

        Target resolution happens before anything runs, so an unknown group
        raises UnknownGroupError and produces no results. The stream is not
        resumable; run again on fresh state to retry.
        """
        hosts = self.resolve_hosts(play, inventory, limit)
        fact_source = facts if isinstance(facts, FactSource) else FactSource(facts)
        contexts = [
            HostContext(
                host=host,
                facts=fact_source.get(host.name, default=inventory.get_host_vars(host.name)),
                connection_factory=self._factory_for(play),
            )
            for host in hosts
        ]

        timed_out = asyncio.Event()
        queue: asyncio.Queue = asyncio.Queue()
        semaphore = asyncio.Semaphore(self.forks)
        timer = None
        if self.config.play_timeout is not None:
            timer = asyncio.get_running_loop().call_later(self.config.play_timeout, timed_out.set)

        async def worker(ctx: HostContext) -> None:
            async with semaphore:
                try:
                    await self._run_host(play, ctx, queue, timed_out)
                finally:
                    await ctx.close()

        async def supervise() -> None:
            try:
                await asyncio.gather(*(worker(ctx) for ctx in contexts))
            finally:
                queue.put_nowait(_DONE)

        supervisor = asyncio.ensure_future(supervise())
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item
            # Surface unexpected errors from the workers
            await supervisor
        finally:
            if timer is not None:
                timer.cancel()
            if not supervisor.done():
                # Consumer stopped early
                timed_out.set()
                supervisor.cancel()
                try:
                    await supervisor
                except asyncio.CancelledError:
                    pass

    async def _run_host(
        self,
        play: Play,
        ctx: HostContext,
        queue: asyncio.Queue,
        timed_out: asyncio.Event,
    ) -> None:
        """Run every task of the play, in order, on one host."""
        stop_reason: Optional[str] = None

        for index, task in enumerate(play.tasks):
            if stop_reason is None and (self.cancelled or timed_out.is_set()):
                stop_reason = "cancelled"

            if stop_reason is not None:
                queue.put_nowait(self._skipped(ctx, task.name, index, stop_reason))
                continue

            try:
                # Condition is evaluated exactly once per host, before execution
                if task.condition is not None and not task.condition.evaluate(ctx.facts):
                    queue.put_nowait(
                        self._skipped(ctx, task.name, index, "Conditional check failed")
                    )
                    continue

                result = await self.executor.execute(task, ctx, index)
            except Exception as e:
                # Ends this host only
                logger.exception("Unexpected error running '%s' on %s", task.name, ctx.name)
                ctx.failed = True
                stop_reason = "host failed"
                queue.put_nowait(ExecutionResult(
                    host=ctx.name,
                    task=task.name,
                    status=TaskStatus.FAILED,
                    message=f"{type(e).__name__}: {e}",
                    index=index,
                ))
                continue

            queue.put_nowait(result)
            logger.debug("%s [%s] %s", result.status.value, ctx.name, task.name)

            if result.status == TaskStatus.UNREACHABLE:
                ctx.unreachable = True
                stop_reason = "host unreachable"
            elif result.status == TaskStatus.FAILED:
                ctx.failed = True
                if self.config.fail_stop and not task.ignore_errors:
                    stop_reason = "host failed"

    @staticmethod
    def _skipped(ctx: HostContext, task_name: str, index: int, reason: str) -> ExecutionResult:
        return ExecutionResult(
            host=ctx.name,
            task=task_name,
            status=TaskStatus.SKIPPED,
            message=reason,
            index=index,
        )

    def _factory_for(self, play: Play) -> ConnectionFactory:
        """Connections carry the play's privilege elevation and check mode."""
        if self.connection_factory is not None:
            return self.connection_factory
        return create_connection_factory(
            become=play.become,
            become_user=play.become_user,
            become_method=play.become_method,
            check_mode=self.config.check_mode,
        )

    @staticmethod
    def resolve_hosts(play: Play, inventory: Inventory, limit: Optional[str] = None) -> List[Host]:
        """Play targets, optionally intersected with a --limit selector."""
        hosts = inventory.resolve(play.hosts)
        if limit:
            allowed = {h.name for h in inventory.resolve(limit)}
            hosts = [h for h in hosts if h.name in allowed]
        return hosts

    async def run_play(
        self,
        play: Play,
        inventory: Inventory,
        facts: FactsArg = None,
        limit: Optional[str] = None,
    ) -> List[ExecutionResult]:
        """Run a play and collect every result."""
        return [result async for result in self.run(play, inventory, facts, limit)]

    async def converge(
        self,
        play: Play,
        inventory: Inventory,
        facts: FactsArg = None,
        limit: Optional[str] = None,
        on_result=None,
    ) -> PlayReport:
        """Run a play and summarize it as results arrive."""
        hosts: Iterable[str] = (h.name for h in self.resolve_hosts(play, inventory, limit))
        reporter = ConvergenceReporter(play.name, hosts)
        return await reporter.consume(self.run(play, inventory, facts, limit), on_result)


def run_play_sync(
    play: Play,
    inventory: Inventory,
    facts: FactsArg = None,
    config: Optional[RunnerConfig] = None,
    registry: Optional[ModuleRegistry] = None,
    connection_factory: Optional[ConnectionFactory] = None,
) -> List[ExecutionResult]:
    """Blocking convenience wrapper around PlayRunner.run_play()."""
    runner = PlayRunner(config, registry, connection_factory)
    return asyncio.run(runner.run_play(play, inventory, facts))
