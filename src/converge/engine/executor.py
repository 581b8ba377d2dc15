"""
Converge Module Executor

Dispatches a Task to its registered handler on one host and turns whatever
happens (change, no-op, handler error, lost connection, timeout) into an
ExecutionResult. Nothing a handler does escapes as an exception.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from converge.connections.base import Connection, ConnectionFactory, create_connection_factory
from converge.engine.errors import ConnectionError, HandlerError, TaskTimeoutError
from converge.engine.facts import EMPTY_FACTS, Facts
from converge.engine.inventory import Host
from converge.engine.playbook import Task
from converge.engine.results import ExecutionResult, TaskStatus
from converge.modules.base import Handler, ModuleRegistry, ModuleResult, default_registry

logger = logging.getLogger(__name__)


@dataclass
class HostContext:
    """Runtime state of one host during a play. Owned by a single worker."""

    host: Host
    facts: Facts = field(default_factory=lambda: EMPTY_FACTS)
    connection_factory: Optional[ConnectionFactory] = None
    connection: Optional[Connection] = None
    failed: bool = False
    unreachable: bool = False

    @property
    def name(self) -> str:
        return self.host.name

    async def ensure_connection(self) -> Connection:
        """
        Open the host's connection on first use.

        Raises:
            ConnectionError: If the connection cannot be established
        """
        if self.connection is None:
            factory = self.connection_factory or create_connection_factory()
            try:
                self.connection = await factory(self.host)
            except ConnectionError:
                raise
            except Exception as e:
                # Malformed host settings fail here too
                logger.debug("Connecting to %s raised", self.host.name, exc_info=True)
                raise ConnectionError(self.host.name, f"{type(e).__name__}: {e}")
        return self.connection

    async def close(self) -> None:
        if self.connection is not None:
            connection, self.connection = self.connection, None
            try:
                await connection.close()
            except Exception as e:
                logger.debug("Error closing connection to %s: %s", self.host.name, e)


class ModuleExecutor:
    """
    Run one Task on one host.

    Args:
        registry: Module name -> handler map (defaults to the built-ins)
        task_timeout: Default per-invocation bound in seconds; a task's own
            ``timeout`` takes precedence. None disables the bound.
    """

    def __init__(
        self,
        registry: Optional[ModuleRegistry] = None,
        task_timeout: Optional[float] = 300.0,
    ):
        self.registry = registry if registry is not None else default_registry()
        self.task_timeout = task_timeout

    async def execute(self, task: Task, ctx: HostContext, index: int = 0) -> ExecutionResult:
        """Execute ``task`` on the context's host and report the outcome."""
        started = time.monotonic()

        def result(status: TaskStatus, message: str = "") -> ExecutionResult:
            return ExecutionResult(
                host=ctx.name,
                task=task.name,
                status=status,
                message=message,
                duration=time.monotonic() - started,
                index=index,
            )

        handler = self.registry.get(task.module)
        if handler is None:
            return result(TaskStatus.FAILED, f"Unknown module: {task.module}")

        timeout = self.timeout_for(task)
        try:
            connection = await asyncio.wait_for(ctx.ensure_connection(), timeout=timeout)
        except asyncio.TimeoutError:
            message = f"Connection to {ctx.name} timed out after {timeout}s"
            logger.info("Host %s unreachable: %s", ctx.name, message)
            return result(TaskStatus.UNREACHABLE, message)
        except ConnectionError as e:
            logger.info("Host %s unreachable: %s", ctx.name, e)
            return result(TaskStatus.UNREACHABLE, str(e))

        attempts = task.retries + 1
        for attempt in range(1, attempts + 1):
            status, message = await self._invoke(handler, task, connection)
            if status != TaskStatus.FAILED or attempt == attempts:
                break
            logger.info(
                "Task '%s' failed on %s (attempt %d/%d), retrying in %gs: %s",
                task.name, ctx.name, attempt, attempts, task.delay, message,
            )
            await asyncio.sleep(task.delay)

        if attempts > 1 and status == TaskStatus.FAILED:
            message = f"{message} (after {attempts} attempts)"
        return result(status, message)

    def timeout_for(self, task: Task) -> Optional[float]:
        return task.timeout if task.timeout is not None else self.task_timeout

    async def _invoke(
        self,
        handler: Handler,
        task: Task,
        connection: Connection,
    ) -> Tuple[TaskStatus, str]:
        timeout = self.timeout_for(task)
        try:
            outcome = await asyncio.wait_for(
                self._call(handler, task.parameters, connection),
                timeout=timeout,
            )
            module_result = ModuleResult.from_outcome(outcome)
        except asyncio.TimeoutError:
            return TaskStatus.FAILED, str(TaskTimeoutError(task.name, timeout))
        except ConnectionError as e:
            return TaskStatus.UNREACHABLE, str(e)
        except HandlerError as e:
            return TaskStatus.FAILED, str(e)
        except Exception as e:
            # Handler bugs are isolated to this task on this host
            logger.debug("Handler for '%s' raised", task.module, exc_info=True)
            return TaskStatus.FAILED, f"{type(e).__name__}: {e}"

        if module_result.failed:
            return TaskStatus.FAILED, module_result.msg or "Handler reported failure"
        if module_result.changed:
            return TaskStatus.CHANGED, module_result.msg
        return TaskStatus.OK, module_result.msg

    @staticmethod
    async def _call(
        handler: Handler,
        parameters: Mapping[str, Any],
        connection: Connection,
    ) -> Any:
        """Call a handler; blocking (sync) handlers run in a worker thread."""
        if inspect.iscoroutinefunction(handler):
            return await handler(parameters, connection)
        outcome = await asyncio.to_thread(handler, parameters, connection)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome
