"""
Converge file module

Ensure a path is a directory, an existing file, or absent.
"""

import shlex
from typing import Optional

from converge.engine.errors import HandlerError
from converge.modules.base import Module, ModuleResult, register_module


@register_module
class FileModule(Module):
    """
    Manage path state.

    States:
        directory  create the directory (and parents) if missing
        touch      create an empty file if missing
        file       require the file to exist; only its mode is managed
        absent     remove the path if present
    """

    name = "file"
    required_args = ["path"]
    optional_args = {
        "state": "file",
        "mode": None,
    }

    async def run(self) -> ModuleResult:
        path = str(self.args["path"])
        state = self.get_arg("state")
        quoted = shlex.quote(path)

        if state == "absent":
            if not await self._test("-e", path) and not await self._test("-L", path):
                return ModuleResult(changed=False, msg=f"{path} is absent")
            return await self._apply(f"rm -rf {quoted}", f"Removed {path}")

        if state == "directory":
            if await self._test("-d", path):
                return await self._ensure_mode(path, changed=False)
            if await self._test("-e", path):
                raise HandlerError(f"{path} exists and is not a directory")
            result = await self._apply(f"mkdir -p {quoted}", f"Created directory {path}")
            return await self._ensure_mode(path, changed=result.changed, msg=result.msg)

        if state == "touch":
            if await self._test("-e", path):
                return await self._ensure_mode(path, changed=False)
            result = await self._apply(f"touch {quoted}", f"Created {path}")
            return await self._ensure_mode(path, changed=result.changed, msg=result.msg)

        if state == "file":
            if not await self._test("-f", path):
                raise HandlerError(f"{path} does not exist (use state=touch to create it)")
            return await self._ensure_mode(path, changed=False)

        raise HandlerError(f"Unknown state: {state}. Valid: absent, directory, file, touch")

    async def _test(self, flag: str, path: str) -> bool:
        result = await self.connection.run(f"test {flag} {shlex.quote(path)}")
        return result.rc == 0

    async def _apply(self, command: str, msg: str) -> ModuleResult:
        if not self.check_mode:
            await self.run_checked(command)
        return ModuleResult(changed=True, msg=msg)

    async def _ensure_mode(self, path: str, changed: bool, msg: str = "") -> ModuleResult:
        mode = self.get_arg("mode")
        if mode is None:
            return ModuleResult(changed=changed, msg=msg)

        wanted = self._normalize_mode(mode)
        current: Optional[str] = None
        if not (self.check_mode and changed):
            result = await self.connection.run(f"stat -c %a {shlex.quote(path)}")
            if result.success:
                current = self._normalize_mode(result.stdout.strip())

        if current == wanted:
            return ModuleResult(changed=changed, msg=msg)

        result = await self._apply(
            f"chmod {wanted} {shlex.quote(path)}",
            f"{msg}; mode {wanted}" if msg else f"Set mode {wanted} on {path}",
        )
        return result

    @staticmethod
    def _normalize_mode(mode) -> str:
        """'0755', '755' and 0o755 all normalize to '755'."""
        if isinstance(mode, int):
            return format(mode, 'o')
        return str(mode).lstrip('0') or '0'
