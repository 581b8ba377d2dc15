"""
Tests for connections and privilege elevation.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from conftest import MockConnection
from converge.connections import LocalConnection, create_connection_factory
from converge.connections.base import RunResult
from converge.connections.ssh_asyncssh import SSHConnection
from converge.engine.errors import ConnectionError
from converge.engine.inventory import Host


class TestBecome:
    """Command wrapping for privilege elevation."""

    def test_no_become(self):
        assert MockConnection().wrap_become("id") == "id"

    def test_sudo(self):
        conn = MockConnection(become=True, become_user="app")
        assert conn.wrap_become("id -u") == "sudo -n -u app -- sh -c 'id -u'"

    def test_su(self):
        conn = MockConnection(become=True, become_method="su")
        assert conn.wrap_become("whoami") == "su - root -c whoami"

    @pytest.mark.asyncio
    async def test_run_become(self):
        conn = MockConnection(become=True)
        await conn.run_become("whoami")
        assert conn.commands == ["sudo -n -u root -- sh -c whoami"]

    def test_run_result_success(self):
        assert RunResult(0, "", "").success
        assert not RunResult(1, "", "").success


class TestLocalConnection:
    """Commands on the control node."""

    @pytest.mark.asyncio
    async def test_run(self):
        conn = LocalConnection(Host("localhost"))
        await conn.connect()
        result = await conn.run("echo hello")
        assert result.rc == 0
        assert result.stdout.strip() == "hello"
        await conn.close()

    @pytest.mark.asyncio
    async def test_exit_code_and_stderr(self):
        conn = LocalConnection(Host("localhost"))
        result = await conn.run("echo oops >&2; exit 3")
        assert result.rc == 3
        assert "oops" in result.stderr

    @pytest.mark.asyncio
    async def test_environment(self):
        conn = LocalConnection(Host("localhost"))
        result = await conn.run("echo $CONVERGE_TEST", environment={"CONVERGE_TEST": "42"})
        assert result.stdout.strip() == "42"

    @pytest.mark.asyncio
    async def test_timeout(self):
        conn = LocalConnection(Host("localhost"))
        result = await conn.run("sleep 5", timeout=0.1)
        assert result.rc == 124

    def test_connection_type(self):
        assert LocalConnection(Host("localhost")).connection_type == "local"


class TestConnectionFactory:
    """Building connections from host variables."""

    @pytest.mark.asyncio
    async def test_local_for_localhost(self):
        factory = create_connection_factory(become=True, check_mode=True)
        conn = await factory(Host("localhost"))
        assert isinstance(conn, LocalConnection)
        assert conn.become is True
        assert conn.check_mode is True
        await conn.close()

    @pytest.mark.asyncio
    async def test_unknown_type(self):
        factory = create_connection_factory()
        with pytest.raises(ConnectionError, match="Unknown connection type"):
            await factory(Host("box", {"connection": "telnet"}))

    @pytest.mark.asyncio
    async def test_ssh_refused(self):
        factory = create_connection_factory()
        host = Host("box", {"address": "127.0.0.1", "port": 1, "connect_timeout": 5})
        with pytest.raises(ConnectionError) as exc_info:
            await factory(host)
        assert exc_info.value.connection_type == "ssh"


class TestSSHConnection:
    """SSH connection against a mocked asyncssh client."""

    def make_host(self, **variables):
        return Host("web1", {"address": "10.0.0.5", "user": "deploy", **variables})

    @pytest.mark.asyncio
    async def test_connect_arguments(self):
        host = self.make_host(private_key_file="/keys/id", host_key_checking="false")
        with patch("asyncssh.connect", new=AsyncMock(return_value=MagicMock())) as mock_connect:
            await SSHConnection(host).connect()

        kwargs = mock_connect.call_args.kwargs
        assert kwargs["host"] == "10.0.0.5"
        assert kwargs["username"] == "deploy"
        assert kwargs["client_keys"] == ["/keys/id"]
        assert kwargs["known_hosts"] is None

    @pytest.mark.asyncio
    async def test_connect_failure_is_connection_error(self):
        failing = AsyncMock(side_effect=asyncssh.DisconnectError(14, "auth failed"))
        with patch("asyncssh.connect", new=failing):
            with pytest.raises(ConnectionError) as exc_info:
                await SSHConnection(self.make_host()).connect()
        assert exc_info.value.host == "web1"

    @pytest.mark.asyncio
    async def test_run(self):
        client = MagicMock()
        client.run = AsyncMock(return_value=MagicMock(exit_status=0, stdout="ok\n", stderr=""))
        with patch("asyncssh.connect", new=AsyncMock(return_value=client)):
            conn = SSHConnection(self.make_host())
            await conn.connect()
            result = await conn.run("uptime", environment={"LANG": "C"})

        assert result.rc == 0
        assert result.stdout == "ok\n"
        command = client.run.call_args.args[0]
        assert command == "env LANG=C /bin/sh -c uptime"

    @pytest.mark.asyncio
    async def test_missing_exit_status(self):
        client = MagicMock()
        client.run = AsyncMock(return_value=MagicMock(exit_status=None, stdout=None, stderr=None))
        with patch("asyncssh.connect", new=AsyncMock(return_value=client)):
            conn = SSHConnection(self.make_host())
            await conn.connect()
            result = await conn.run("reboot")
        assert result.rc == 255
        assert result.stdout == ""

    @pytest.mark.asyncio
    async def test_dropped_session(self):
        client = MagicMock()
        client.run = AsyncMock(side_effect=asyncssh.ConnectionLost("reset"))
        with patch("asyncssh.connect", new=AsyncMock(return_value=client)):
            conn = SSHConnection(self.make_host())
            await conn.connect()
            with pytest.raises(ConnectionError):
                await conn.run("uptime")

    @pytest.mark.asyncio
    async def test_run_without_connect(self):
        with pytest.raises(ConnectionError, match="Not connected"):
            await SSHConnection(self.make_host()).run("uptime")
