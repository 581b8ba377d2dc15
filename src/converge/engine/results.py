"""
Converge Result Classes

Execution results and the convergence reporter that rolls them up per host.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional


class TaskStatus(Enum):
    """Status of a task execution."""
    OK = "ok"
    CHANGED = "changed"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ExecutionResult:
    """Result of one task on one host. Never mutated after creation."""

    host: str
    task: str
    status: TaskStatus
    message: str = ""
    duration: float = 0.0
    # Position of the task within its play
    index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result = {
            "host": self.host,
            "task": self.task,
            "index": self.index,
            "status": self.status.value,
            "duration": round(self.duration, 6),
        }
        if self.message:
            result["msg"] = self.message
        return result

    @property
    def changed(self) -> bool:
        return self.status == TaskStatus.CHANGED

    @property
    def failed(self) -> bool:
        """Check if the task failed or the host was unreachable."""
        return self.status in (TaskStatus.FAILED, TaskStatus.UNREACHABLE)

    @property
    def ok(self) -> bool:
        """Check if the task succeeded (ok or changed)."""
        return self.status in (TaskStatus.OK, TaskStatus.CHANGED)


@dataclass
class HostStats:
    """Statistics for a single host across all tasks."""

    host: str
    ok: int = 0
    changed: int = 0
    failed: int = 0
    skipped: int = 0
    unreachable: int = 0

    def record(self, status: TaskStatus) -> None:
        """Record a task result status."""
        if status == TaskStatus.OK:
            self.ok += 1
        elif status == TaskStatus.CHANGED:
            self.changed += 1
        elif status == TaskStatus.FAILED:
            self.failed += 1
        elif status == TaskStatus.SKIPPED:
            self.skipped += 1
        elif status == TaskStatus.UNREACHABLE:
            self.unreachable += 1

    def merge(self, other: 'HostStats') -> None:
        """Merge another HostStats into this one."""
        self.ok += other.ok
        self.changed += other.changed
        self.failed += other.failed
        self.skipped += other.skipped
        self.unreachable += other.unreachable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "ok": self.ok,
            "changed": self.changed,
            "failed": self.failed,
            "skipped": self.skipped,
            "unreachable": self.unreachable,
        }

    @property
    def has_failures(self) -> bool:
        """Check if host has any failures."""
        return self.failed > 0 or self.unreachable > 0

    @property
    def total(self) -> int:
        return self.ok + self.changed + self.failed + self.skipped + self.unreachable


@dataclass
class PlayReport:
    """Convergence summary of a single play."""

    play_name: str
    host_stats: Dict[str, HostStats] = field(default_factory=dict)
    results: List[ExecutionResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def success(self) -> bool:
        """True iff no host has a failed or unreachable result."""
        return not any(s.has_failures for s in self.host_stats.values())

    @property
    def failures(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.failed]

    @property
    def hosts(self) -> List[str]:
        return list(self.host_stats)

    def results_for(self, host: str) -> List[ExecutionResult]:
        """Results for one host, in task order."""
        return sorted(
            (r for r in self.results if r.host == host),
            key=lambda r: r.index,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "play": self.play_name,
            "success": self.success,
            "duration": round(self.duration, 6),
            "tasks": [r.to_dict() for r in self.results],
            "stats": {h: s.to_dict() for h, s in self.host_stats.items()},
        }


@dataclass
class PlaybookReport:
    """Reports of every play in a play file."""

    playbook_path: str
    play_reports: List[PlayReport] = field(default_factory=list)

    def add_play_report(self, report: PlayReport) -> None:
        self.play_reports.append(report)

    def get_final_stats(self) -> Dict[str, HostStats]:
        """Get aggregated stats for all hosts across all plays."""
        final_stats: Dict[str, HostStats] = {}
        for report in self.play_reports:
            for host, stats in report.host_stats.items():
                if host not in final_stats:
                    final_stats[host] = HostStats(host)
                final_stats[host].merge(stats)
        return final_stats

    @property
    def duration(self) -> float:
        return sum(p.duration for p in self.play_reports)

    @property
    def success(self) -> bool:
        """Check if every play converged without failures."""
        return all(p.success for p in self.play_reports)

    @property
    def exit_code(self) -> int:
        """Get appropriate exit code."""
        return 0 if self.success else 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playbook": self.playbook_path,
            "success": self.success,
            "plays": [p.to_dict() for p in self.play_reports],
            "stats": {h: s.to_dict() for h, s in self.get_final_stats().items()},
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


class ConvergenceReporter:
    """
    Incremental aggregation of ExecutionResults into a PlayReport.

    The reporter is fed from the runner's single result queue, so its
    counters are only ever touched by one consumer.
    """

    def __init__(self, play_name: str = "", hosts: Iterable[str] = ()):
        self._report = PlayReport(play_name=play_name)
        for host in hosts:
            self._report.host_stats[host] = HostStats(host)
        self._started = time.monotonic()

    def record(self, result: ExecutionResult) -> None:
        """Fold one result into the running counters."""
        stats = self._report.host_stats.get(result.host)
        if stats is None:
            stats = self._report.host_stats[result.host] = HostStats(result.host)
        stats.record(result.status)
        self._report.results.append(result)

    @property
    def report(self) -> PlayReport:
        """Snapshot of the report so far; duration is wall clock since creation."""
        self._report.duration = time.monotonic() - self._started
        return self._report

    def summarize(self, results: Iterable[ExecutionResult]) -> PlayReport:
        """
        Aggregate a finished sequence of results.

        The sequence was produced elsewhere, so the duration is taken from the
        results themselves: the busiest host's summed task time.
        """
        for result in results:
            self.record(result)
        per_host: Dict[str, float] = {}
        for result in self._report.results:
            per_host[result.host] = per_host.get(result.host, 0.0) + result.duration
        self._report.duration = max(per_host.values(), default=0.0)
        return self._report

    async def consume(
        self,
        stream: AsyncIterator[ExecutionResult],
        on_result: Optional[Callable[[ExecutionResult], None]] = None,
    ) -> PlayReport:
        """Aggregate a result stream as it is produced."""
        async for result in stream:
            self.record(result)
            if on_result is not None:
                on_result(result)
        return self.report


def summarize(
    results: Iterable[ExecutionResult],
    play_name: str = "",
) -> PlayReport:
    """Convenience function to summarize results in one call."""
    return ConvergenceReporter(play_name).summarize(results)
