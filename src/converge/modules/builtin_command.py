"""
Converge command module

Run a shell command. Commands are not idempotent by themselves; the
``creates`` and ``removes`` guards make them so.
"""

import shlex

from converge.engine.errors import HandlerError
from converge.modules.base import Module, ModuleResult, register_module


@register_module
class CommandModule(Module):
    """
    Run a command on the host.

    The command runs (and reports ``changed``) unless a guard says the
    work is already done:

    - ``creates``: skip if this path already exists
    - ``removes``: skip if this path does not exist
    """

    name = "command"
    optional_args = {
        "cmd": None,
        "chdir": None,
        "creates": None,
        "removes": None,
    }

    async def run(self) -> ModuleResult:
        command = self.get_arg("cmd") or self.get_arg("_raw_params")
        if not command:
            raise HandlerError("No command given (use 'cmd' or a free-form string)")

        creates = self.get_arg("creates")
        if creates and await self._exists(creates):
            return ModuleResult(changed=False, msg=f"skipped, since {creates} exists")

        removes = self.get_arg("removes")
        if removes and not await self._exists(removes):
            return ModuleResult(changed=False, msg=f"skipped, since {removes} does not exist")

        if self.check_mode:
            return ModuleResult(changed=True, msg=f"Would run: {command}")

        chdir = self.get_arg("chdir")
        if chdir:
            command = f"cd {shlex.quote(chdir)} && {command}"

        result = await self.connection.run(self.connection.wrap_become(command))
        if not result.success:
            raise HandlerError(
                f"Command exited with {result.rc}",
                rc=result.rc,
                stderr=result.stderr,
            )
        return ModuleResult(
            changed=True,
            rc=result.rc,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    async def _exists(self, path: str) -> bool:
        result = await self.connection.run(f"test -e {shlex.quote(path)}")
        return result.rc == 0
