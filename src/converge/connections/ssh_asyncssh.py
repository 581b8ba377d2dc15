"""
Converge SSH Connection (asyncssh)

SSH connection using asyncssh for async operations.
"""

import asyncio
import os
import shlex
from typing import Optional

import asyncssh

from converge.connections.base import Connection, RunResult
from converge.engine.errors import ConnectionError


class SSHConnection(Connection):
    """
    SSH connection using asyncssh.

    Host variables:
        address, port, user           where and as whom to connect
        password, private_key_file    credentials (agent keys are used otherwise)
        host_key_checking             false disables known_hosts verification
        connect_timeout               seconds, default 30
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._conn: Optional[asyncssh.SSHClientConnection] = None

    async def connect(self) -> None:
        """Establish SSH connection."""
        connect_kwargs = {
            'host': self.host.address,
            'port': self.host.port,
            'username': self.host.user or os.getenv('USER', 'root'),
            'connect_timeout': int(self.host.get_variable('connect_timeout', 30)),
        }

        password = self.host.get_variable('password')
        if password:
            connect_kwargs['password'] = password

        private_key = self.host.get_variable('private_key_file')
        if private_key:
            connect_kwargs['client_keys'] = [private_key]

        host_key_checking = self.host.get_variable('host_key_checking', True)
        if not host_key_checking or str(host_key_checking).lower() in ('false', 'no'):
            connect_kwargs['known_hosts'] = None

        try:
            self._conn = await asyncssh.connect(**connect_kwargs)
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            raise ConnectionError(
                host=self.host.name,
                message=str(e) or type(e).__name__,
                connection_type='ssh',
            )

    async def close(self) -> None:
        if self._conn:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None

    async def run(
        self,
        command: str,
        timeout: Optional[float] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        """Run a command over SSH through /bin/sh."""
        if not self._conn:
            raise ConnectionError(self.host.name, "Not connected", connection_type='ssh')

        full_command = f"/bin/sh -c {shlex.quote(command)}"
        if environment:
            env_prefix = " ".join(
                f"{k}={shlex.quote(str(v))}" for k, v in environment.items()
            )
            full_command = f"env {env_prefix} {full_command}"

        try:
            result = await asyncio.wait_for(
                self._conn.run(full_command, check=False),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return RunResult(rc=124, stdout="", stderr="Command timed out")
        except (OSError, asyncssh.Error) as e:
            # Dropped session mid-play
            raise ConnectionError(self.host.name, str(e), connection_type='ssh')

        return RunResult(
            rc=result.exit_status if result.exit_status is not None else 255,
            stdout=str(result.stdout or ""),
            stderr=str(result.stderr or ""),
        )
