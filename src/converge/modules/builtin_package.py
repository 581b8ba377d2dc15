"""
Converge package module

Install or remove OS packages through apt, dnf or yum.
"""

import shlex
from typing import List, Optional

from converge.engine.errors import HandlerError
from converge.modules.base import Module, ModuleResult, register_module


# Package manager -> (install, remove) command prefixes
PACKAGE_COMMANDS = {
    "apt": (
        "DEBIAN_FRONTEND=noninteractive apt-get install -y -q",
        "DEBIAN_FRONTEND=noninteractive apt-get remove -y -q",
    ),
    "dnf": ("dnf install -y -q", "dnf remove -y -q"),
    "yum": ("yum install -y -q", "yum remove -y -q"),
}


@register_module
class PackageModule(Module):
    """
    Generic OS package manager module.

    Only the packages that are not yet in the requested state are passed to
    the package manager, so a converged host reports ``ok``.
    """

    name = "package"
    required_args = ["name"]
    optional_args = {
        "state": "present",     # present, absent
        "use": None,            # Force specific package manager (apt, dnf, yum)
    }

    async def run(self) -> ModuleResult:
        name = self.args["name"]
        state = self.get_arg("state")
        if state not in ("present", "installed", "absent", "removed"):
            raise HandlerError(f"Unknown state: {state}. Valid: present, absent")
        installing = state in ("present", "installed")

        if isinstance(name, (list, tuple)):
            packages = [str(p) for p in name]
        else:
            packages = [p.strip() for p in str(name).split(",") if p.strip()]

        pkg_manager = self.get_arg("use") or await self._detect_package_manager()
        if pkg_manager not in PACKAGE_COMMANDS:
            raise HandlerError(
                f"Unsupported package manager: {pkg_manager}"
                if pkg_manager else "Could not detect package manager on this system"
            )

        pending: List[str] = []
        for package in packages:
            installed = await self._is_installed(pkg_manager, package)
            if installed != installing:
                pending.append(package)

        verb = "install" if installing else "remove"
        if not pending:
            return ModuleResult(changed=False, msg=f"Nothing to {verb}")

        if self.check_mode:
            return ModuleResult(
                changed=True,
                msg=f"Would {verb} {', '.join(pending)} using {pkg_manager}",
            )

        install_cmd, remove_cmd = PACKAGE_COMMANDS[pkg_manager]
        prefix = install_cmd if installing else remove_cmd
        quoted = " ".join(shlex.quote(p) for p in pending)
        stdout = await self.run_checked(f"{prefix} {quoted}")
        return ModuleResult(
            changed=True,
            msg=f"{'Installed' if installing else 'Removed'} {', '.join(pending)}",
            stdout=stdout,
        )

    async def _detect_package_manager(self) -> Optional[str]:
        for binary, manager in (("apt-get", "apt"), ("dnf", "dnf"), ("yum", "yum")):
            result = await self.connection.run(f"command -v {binary}")
            if result.rc == 0:
                return manager
        return None

    async def _is_installed(self, pkg_manager: str, package: str) -> bool:
        if pkg_manager == "apt":
            result = await self.connection.run(
                f"dpkg-query -W -f='${{Status}}' {shlex.quote(package)}"
            )
            return result.rc == 0 and "install ok installed" in result.stdout
        result = await self.connection.run(f"rpm -q {shlex.quote(package)}")
        return result.rc == 0
