# Copyright (c) 2024 Converge Contributors
# MIT License

"""
Converge: a small idempotent configuration-orchestration engine.

Plays are ordered lists of declarative tasks aimed at a host group. Each task
is dispatched to an idempotent handler, guarded by a condition over host facts,
and the per-host outcome is rolled up into a convergence report.

Features:
    - YAML plays and inventories
    - Condition evaluation over facts (unknown facts never crash a run)
    - Bounded host fan-out with strict per-host task ordering
    - Per-host fail-stop isolation and per-task timeouts
    - Local and SSH (asyncssh) connections
"""

from __future__ import annotations

from converge.release import __version__, __author__, __codename__

__all__ = [
    "__version__",
    "__author__",
    "__codename__",
]
