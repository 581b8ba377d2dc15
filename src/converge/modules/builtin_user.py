"""
Converge user module

Manage user accounts on Linux/Unix systems.
"""

import shlex
from typing import Dict, List, Optional

from converge.engine.errors import HandlerError
from converge.modules.base import Module, ModuleResult, register_module


@register_module
class UserModule(Module):
    """Create, modify or remove a user account."""

    name = "user"
    required_args = ["name"]
    optional_args = {
        "state": "present",     # present, absent
        "uid": None,
        "group": None,          # Primary group
        "groups": None,         # Secondary groups (comma-separated or list)
        "home": None,
        "shell": None,
        "comment": None,        # GECOS field
        "system": False,
        "remove": False,        # Remove home directory when state=absent
    }

    async def run(self) -> ModuleResult:
        name = str(self.args["name"])
        state = self.get_arg("state")

        info = await self._get_user_info(name)

        if state == "absent":
            if info is None:
                return ModuleResult(changed=False, msg=f"User '{name}' does not exist")
            if self.check_mode:
                return ModuleResult(changed=True, msg=f"Would remove user '{name}'")
            flags = "-r " if self.get_arg("remove") else ""
            await self.run_checked(f"userdel {flags}{shlex.quote(name)}")
            return ModuleResult(changed=True, msg=f"Removed user '{name}'")

        if state != "present":
            raise HandlerError(f"Unknown state: {state}. Valid: present, absent")

        if info is None:
            if self.check_mode:
                return ModuleResult(changed=True, msg=f"Would create user '{name}'")
            await self.run_checked(self._useradd_command(name))
            return ModuleResult(changed=True, msg=f"Created user '{name}'")

        options = self._usermod_options(info)
        if not options:
            return ModuleResult(changed=False, msg=f"User '{name}' is up to date")
        if self.check_mode:
            return ModuleResult(changed=True, msg=f"Would modify user '{name}'")
        await self.run_checked(f"usermod {' '.join(options)} {shlex.quote(name)}")
        return ModuleResult(changed=True, msg=f"Modified user '{name}'")

    async def _get_user_info(self, name: str) -> Optional[Dict[str, str]]:
        """Current passwd entry, or None if the user does not exist."""
        result = await self.connection.run(f"getent passwd {shlex.quote(name)}")
        if result.rc != 0:
            return None

        parts = result.stdout.strip().split(":")
        if len(parts) < 7:
            return None
        return {
            "uid": parts[2],
            "comment": parts[4],
            "home": parts[5],
            "shell": parts[6],
        }

    def _common_options(self) -> List[str]:
        options = []
        for arg, flag in (("uid", "-u"), ("group", "-g"), ("home", "-d"),
                          ("shell", "-s"), ("comment", "-c")):
            value = self.get_arg(arg)
            if value is not None:
                options.extend([flag, shlex.quote(str(value))])

        groups = self.get_arg("groups")
        if groups:
            if isinstance(groups, (list, tuple)):
                groups = ",".join(str(g) for g in groups)
            options.extend(["-G", shlex.quote(str(groups))])
        return options

    def _useradd_command(self, name: str) -> str:
        options = ["-m"] + self._common_options()
        if self.get_arg("system"):
            options.append("-r")
        return f"useradd {' '.join(options)} {shlex.quote(name)}"

    def _usermod_options(self, info: Dict[str, str]) -> List[str]:
        """usermod flags for the attributes that differ from the passwd entry."""
        options = []
        for arg, flag in (("uid", "-u"), ("home", "-d"), ("shell", "-s"), ("comment", "-c")):
            value = self.get_arg(arg)
            if value is not None and str(value) != info[arg]:
                options.extend([flag, shlex.quote(str(value))])
        return options
