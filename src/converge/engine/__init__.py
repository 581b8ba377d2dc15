"""
Converge Engine Module

Core engine for parsing plays and inventories, evaluating conditions and
reporting convergence. The execution layer (executor, scheduler, runner)
depends on connections and modules and is imported from its own modules.
"""

from converge.engine.conditions import Condition, evaluate
from converge.engine.config import RunnerConfig, load_config
from converge.engine.facts import FactSource, load_facts
from converge.engine.inventory import Host, Group, Inventory
from converge.engine.playbook import PlaybookParser, Play, Task, load_plays
from converge.engine.results import (
    ConvergenceReporter,
    ExecutionResult,
    HostStats,
    PlaybookReport,
    PlayReport,
    TaskStatus,
)
from converge.engine.errors import (
    ConvergeError,
    ParseError,
    ConditionSyntaxError,
    InventoryError,
    UnknownGroupError,
    HandlerError,
    ConnectionError,
    TaskTimeoutError,
)

__all__ = [
    'Condition',
    'evaluate',
    'RunnerConfig',
    'load_config',
    'FactSource',
    'load_facts',
    'Host',
    'Group',
    'Inventory',
    'PlaybookParser',
    'Play',
    'Task',
    'load_plays',
    'ConvergenceReporter',
    'ExecutionResult',
    'HostStats',
    'PlaybookReport',
    'PlayReport',
    'TaskStatus',
    'ConvergeError',
    'ParseError',
    'ConditionSyntaxError',
    'InventoryError',
    'UnknownGroupError',
    'HandlerError',
    'ConnectionError',
    'TaskTimeoutError',
]
