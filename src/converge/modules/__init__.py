"""
Converge Modules

Built-in idempotent handlers and the module registry.
"""

from converge.modules.base import (
    Handler,
    Module,
    ModuleRegistry,
    ModuleResult,
    default_registry,
    register_module,
)

__all__ = [
    'Handler',
    'Module',
    'ModuleRegistry',
    'ModuleResult',
    'default_registry',
    'register_module',
]
