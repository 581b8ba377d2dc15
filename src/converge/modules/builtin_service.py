"""
Converge service module

Manage systemd services.
"""

import shlex
from typing import List

from converge.engine.conditions import to_bool
from converge.engine.errors import HandlerError
from converge.modules.base import Module, ModuleResult, register_module


@register_module
class ServiceModule(Module):
    """Ensure a service is running/stopped and enabled/disabled at boot."""

    name = "service"
    required_args = ["name"]
    optional_args = {
        "state": None,      # started, stopped, restarted
        "enabled": None,    # True / False
    }

    async def run(self) -> ModuleResult:
        name = shlex.quote(str(self.args["name"]))
        state = self.get_arg("state")
        enabled = self.get_arg("enabled")

        if state is None and enabled is None:
            raise HandlerError("One of 'state' or 'enabled' is required")
        if state not in (None, "started", "stopped", "restarted"):
            raise HandlerError(f"Unknown state: {state}. Valid: started, stopped, restarted")

        actions: List[str] = []

        if state == "restarted":
            actions.append("restart")
        elif state is not None:
            active = (await self.connection.run(f"systemctl is-active --quiet {name}")).rc == 0
            if state == "started" and not active:
                actions.append("start")
            elif state == "stopped" and active:
                actions.append("stop")

        if enabled is not None:
            enabled = to_bool(enabled)
            is_enabled = (await self.connection.run(f"systemctl is-enabled --quiet {name}")).rc == 0
            if enabled != is_enabled:
                actions.append("enable" if enabled else "disable")

        if not actions:
            return ModuleResult(changed=False, msg=f"Service {self.args['name']} is in state")

        if not self.check_mode:
            for action in actions:
                await self.run_checked(f"systemctl {action} {name}")

        prefix = "Would " if self.check_mode else ""
        return ModuleResult(changed=True, msg=f"{prefix}{', '.join(actions)} {self.args['name']}")
