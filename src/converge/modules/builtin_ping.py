"""
Converge ping module

Verify that a host can run commands. Never reports a change.
"""

import shlex

from converge.modules.base import Module, ModuleResult, register_module


@register_module
class PingModule(Module):
    """Round-trip a trivial command through the connection."""

    name = "ping"
    optional_args = {
        "data": "pong",
    }

    async def run(self) -> ModuleResult:
        data = str(self.get_arg("data"))
        stdout = await self.run_checked(f"echo {shlex.quote(data)}", become=False)
        return ModuleResult(changed=False, msg=stdout.strip() or data)
