"""
Converge Local Connection

Execute commands on the control node (no remote connection).
"""

import asyncio
import os
from typing import Optional

from converge.connections.base import Connection, RunResult


class LocalConnection(Connection):
    """Local connection used for localhost targets."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._connected = False

    async def connect(self) -> None:
        """Local connection is always available."""
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    async def run(
        self,
        command: str,
        timeout: Optional[float] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        env = os.environ.copy()
        if environment:
            env.update(environment)

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return RunResult(
                rc=124,  # Standard timeout exit code
                stdout="",
                stderr="Command timed out",
            )

        return RunResult(
            rc=process.returncode or 0,
            stdout=stdout_bytes.decode('utf-8', errors='replace'),
            stderr=stderr_bytes.decode('utf-8', errors='replace'),
        )
