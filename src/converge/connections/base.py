"""
Converge Connection Base Class

Abstract base class for all connection types. A connection is owned by one
host worker for the length of a play; privilege elevation and check mode are
carried on the connection rather than in global state.
"""

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional

from converge.engine.inventory import Host


@dataclass
class RunResult:
    """Result of running a command on a host."""

    rc: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.rc == 0


class Connection(ABC):
    """
    Abstract base class for connections.

    All connection types (SSH, local) must implement this interface.
    """

    def __init__(
        self,
        host: Host,
        become: bool = False,
        become_user: str = "root",
        become_method: str = "sudo",
        check_mode: bool = False,
    ):
        self.host = host
        self.become = become
        self.become_user = become_user
        self.become_method = become_method
        self.check_mode = check_mode

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the connection.

        Raises:
            ConnectionError: If the host cannot be reached
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    async def run(
        self,
        command: str,
        timeout: Optional[float] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        """
        Run a shell command on the host.

        Commands are run as given; handlers call wrap_become() for commands
        that need privilege elevation.

        Args:
            command: Shell command line
            timeout: Optional timeout in seconds
            environment: Extra environment variables

        Returns:
            RunResult with rc, stdout, stderr
        """

    def wrap_become(self, cmd: str) -> str:
        """Wrap a command with privilege elevation if become is enabled."""
        if not self.become:
            return cmd

        if self.become_method == "su":
            return f"su - {self.become_user} -c {shlex.quote(cmd)}"
        return f"sudo -n -u {self.become_user} -- sh -c {shlex.quote(cmd)}"

    async def run_become(
        self,
        command: str,
        timeout: Optional[float] = None,
    ) -> RunResult:
        """Run a command with privilege elevation applied."""
        return await self.run(self.wrap_become(command), timeout=timeout)

    @property
    def connection_type(self) -> str:
        """Return the connection type name."""
        return self.__class__.__name__.replace('Connection', '').lower()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.host.name!r}, become={self.become})"


ConnectionFactory = Callable[[Host], Coroutine[Any, Any, Connection]]


def create_connection_factory(
    become: bool = False,
    become_user: str = "root",
    become_method: str = "sudo",
    check_mode: bool = False,
) -> ConnectionFactory:
    """
    Create a connection factory function.

    Returns a coroutine function that builds and connects the connection
    type named by the host's ``connection`` variable.
    """
    async def factory(host: Host) -> Connection:
        options = dict(
            become=become,
            become_user=become_user,
            become_method=become_method,
            check_mode=check_mode,
        )
        conn_type = host.connection

        if conn_type == 'local':
            from converge.connections.local import LocalConnection
            conn: Connection = LocalConnection(host, **options)
        elif conn_type == 'ssh':
            from converge.connections.ssh_asyncssh import SSHConnection
            conn = SSHConnection(host, **options)
        else:
            from converge.engine.errors import ConnectionError
            raise ConnectionError(host.name, f"Unknown connection type: {conn_type}")

        await conn.connect()
        return conn

    return factory
