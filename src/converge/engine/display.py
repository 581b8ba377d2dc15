"""
Converge Console Output

Human-readable progress: play banners, one line per result and the final
recap. Every method is a no-op when the display is disabled (JSON mode).
"""

import sys
from typing import Dict, Optional, TextIO

from converge.engine.results import ExecutionResult, HostStats, PlayReport, TaskStatus

RESET = '\033[0m'
COLORS = {
    TaskStatus.OK: '\033[32m',           # Green
    TaskStatus.CHANGED: '\033[33m',      # Yellow
    TaskStatus.FAILED: '\033[31m',       # Red
    TaskStatus.SKIPPED: '\033[36m',      # Cyan
    TaskStatus.UNREACHABLE: '\033[31m',  # Red
}


class Display:
    """Print run progress in the familiar PLAY / TASK / RECAP layout."""

    def __init__(
        self,
        enabled: bool = True,
        color: Optional[bool] = None,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
    ):
        self.enabled = enabled
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        if color is None:
            color = hasattr(self.out, "isatty") and self.out.isatty()
        self.color = color
        self._last_task: Optional[str] = None

    def _paint(self, text: str, code: str) -> str:
        return f"{code}{text}{RESET}" if self.color else text

    def header(self, msg: str) -> None:
        if self.enabled:
            print(msg, file=self.out)

    def play(self, name: str) -> None:
        if self.enabled:
            self._last_task = None
            print(f"\nPLAY [{name}] " + "*" * 50, file=self.out)

    def task(self, name: str) -> None:
        if self.enabled:
            print(f"\nTASK [{name}] " + "-" * max(0, 60 - len(name) - 8), file=self.out)

    def result(self, result: ExecutionResult) -> None:
        """
        Print one host result.

        Hosts run concurrently, so results of different tasks interleave; a
        TASK banner is printed whenever the task changes from the last line.
        """
        if not self.enabled:
            return
        if result.task != self._last_task:
            self.task(result.task)
            self._last_task = result.task

        label = self._paint(f"{result.status.value}: [{result.host}]", COLORS[result.status])
        if result.message and result.status != TaskStatus.OK:
            print(f"{label} => {result.message}", file=self.out)
        else:
            print(label, file=self.out)

    def warning(self, msg: str) -> None:
        if self.enabled:
            print(self._paint(f"[WARNING]: {msg}", COLORS[TaskStatus.CHANGED]), file=self.err)

    def error(self, msg: str) -> None:
        # Errors go to stderr, even in JSON mode stdout stays machine-readable
        print(self._paint(msg, COLORS[TaskStatus.FAILED]), file=self.err)

    def failures(self, report: PlayReport) -> None:
        """List what went wrong in a play, after its results."""
        if not self.enabled or report.success:
            return
        print(f"\nFAILURES [{report.play_name}] " + "*" * 40, file=self.out)
        for result in report.failures:
            line = f"{result.host:20} {result.task}: {result.message}"
            print(self._paint(line, COLORS[result.status]), file=self.out)

    def recap(self, host_stats: Dict[str, HostStats]) -> None:
        """Print final recap."""
        if not self.enabled:
            return

        print("\nPLAY RECAP " + "*" * 60, file=self.out)

        for host, stats in sorted(host_stats.items()):
            status_parts = []

            if stats.ok:
                status_parts.append(self._paint(f"ok={stats.ok}", COLORS[TaskStatus.OK]))
            if stats.changed:
                status_parts.append(self._paint(f"changed={stats.changed}", COLORS[TaskStatus.CHANGED]))
            if stats.failed:
                status_parts.append(self._paint(f"failed={stats.failed}", COLORS[TaskStatus.FAILED]))
            if stats.skipped:
                status_parts.append(self._paint(f"skipped={stats.skipped}", COLORS[TaskStatus.SKIPPED]))
            if stats.unreachable:
                status_parts.append(
                    self._paint(f"unreachable={stats.unreachable}", COLORS[TaskStatus.UNREACHABLE])
                )

            status_str = "  ".join(status_parts) if status_parts else "ok=0"
            print(f"{host:40} : {status_str}", file=self.out)
