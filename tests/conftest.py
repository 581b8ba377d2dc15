"""
Shared test fixtures.

MockConnection stands in for a host: it answers shell commands from a table
of canned results and records everything it was asked to run.
"""

from typing import Callable, Dict, List, Optional, Union

import pytest

from converge.connections.base import Connection, RunResult
from converge.engine.inventory import Host, Inventory

Response = Union[RunResult, Callable[[str], RunResult]]


class MockConnection(Connection):
    """
    Connection that never touches a real host.

    ``responses`` maps a command fragment to a RunResult (or a callable taking
    the command). The longest fragment found in the command wins; unmatched
    commands succeed with empty output.
    """

    def __init__(self, host: Optional[Host] = None, responses: Optional[Dict[str, Response]] = None, **kwargs):
        super().__init__(host or Host("mock"), **kwargs)
        self.responses: Dict[str, Response] = dict(responses or {})
        self.commands: List[str] = []
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def run(self, command, timeout=None, environment=None) -> RunResult:
        self.commands.append(command)
        matches = [p for p in self.responses if p in command]
        if not matches:
            return RunResult(rc=0, stdout="", stderr="")
        response = self.responses[max(matches, key=len)]
        return response(command) if callable(response) else response

    def ran(self, fragment: str) -> bool:
        """True if any recorded command contains ``fragment``."""
        return any(fragment in c for c in self.commands)


def ok(stdout: str = "") -> RunResult:
    return RunResult(rc=0, stdout=stdout, stderr="")


def fail(rc: int = 1, stderr: str = "") -> RunResult:
    return RunResult(rc=rc, stdout="", stderr=stderr)


class MockConnectionFactory:
    """Connection factory handing out (and remembering) MockConnections."""

    def __init__(self, responses: Optional[Dict[str, Response]] = None, unreachable=()):
        self.responses = responses or {}
        self.unreachable = set(unreachable)
        self.connections: Dict[str, MockConnection] = {}

    async def __call__(self, host: Host) -> MockConnection:
        from converge.engine.errors import ConnectionError

        if host.name in self.unreachable:
            raise ConnectionError(host.name, "No route to host")
        conn = MockConnection(host, self.responses)
        await conn.connect()
        self.connections[host.name] = conn
        return conn


@pytest.fixture
def mock_connection() -> MockConnection:
    return MockConnection()


@pytest.fixture
def connection_factory() -> MockConnectionFactory:
    return MockConnectionFactory()


@pytest.fixture
def two_host_inventory() -> Inventory:
    """h1 (Debian) and h2 (RedHat) in group 'web'."""
    return Inventory.from_dict({
        "web": {
            "hosts": {
                "h1": {"os_family": "Debian"},
                "h2": {"os_family": "RedHat"},
            },
        },
    })
