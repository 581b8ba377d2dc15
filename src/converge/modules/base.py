"""
Converge Module Base

Base class for built-in modules and the registry that maps module names to
idempotent handlers.

A handler is any callable ``handler(parameters, connection)``, sync or async,
that brings the host into the requested state and reports whether it had to
change anything. It returns a ``ModuleResult``, a mapping with a ``changed``
key (and optionally ``msg``), a bool, or None for "nothing to do"; it raises
``HandlerError`` when the state cannot be reached. Handlers own idempotence:
they check current state before acting.
"""

import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

from converge.connections.base import Connection
from converge.engine.conditions import to_bool
from converge.engine.errors import HandlerError


@dataclass
class ModuleResult:
    """Outcome of one handler invocation."""

    changed: bool = False
    failed: bool = False
    msg: str = ""
    rc: int = 0
    stdout: str = ""
    stderr: str = ""

    @classmethod
    def from_outcome(cls, outcome: Any) -> 'ModuleResult':
        """Normalize whatever a handler returned into a ModuleResult."""
        if isinstance(outcome, ModuleResult):
            return outcome
        if outcome is None:
            return cls()
        if isinstance(outcome, bool):
            return cls(changed=outcome)
        if isinstance(outcome, Mapping):
            return cls(
                changed=to_bool(outcome.get('changed', False)),
                failed=to_bool(outcome.get('failed', False)),
                msg=str(outcome.get('msg', '')),
                rc=int(outcome.get('rc', 0) or 0),
                stdout=str(outcome.get('stdout', '')),
                stderr=str(outcome.get('stderr', '')),
            )
        raise HandlerError(
            f"Handler returned unsupported result type {type(outcome).__name__}"
        )


Handler = Callable[[Mapping[str, Any], Connection], Any]


class Module(ABC):
    """
    Base class for class-based handlers.

    Subclasses declare ``name``, ``required_args`` and ``optional_args`` and
    implement ``run()`` as check-then-act.
    """

    # Module name (used for registration)
    name: str = ""

    required_args: List[str] = []

    # Optional arguments with defaults
    optional_args: Dict[str, Any] = {}

    def __init__(self, args: Mapping[str, Any], connection: Connection):
        self.args = args
        self.connection = connection

    @property
    def check_mode(self) -> bool:
        return self.connection.check_mode

    def validate_args(self) -> Optional[str]:
        """
        Validate module arguments.

        Returns:
            Error message if validation fails, None otherwise
        """
        for required in self.required_args:
            if required not in self.args:
                return f"Missing required argument: {required}"
        return None

    def get_arg(self, name: str, default: Any = None) -> Any:
        """Get an argument value, falling back to the declared default."""
        if name in self.args:
            return self.args[name]
        if name in self.optional_args:
            return self.optional_args[name]
        return default

    async def run_checked(self, command: str, become: bool = True) -> str:
        """Run a command and raise HandlerError on a non-zero exit."""
        if become:
            command = self.connection.wrap_become(command)
        result = await self.connection.run(command)
        if not result.success:
            raise HandlerError(
                f"Command failed: {command}",
                rc=result.rc,
                stderr=result.stderr,
            )
        return result.stdout

    @abstractmethod
    async def run(self) -> ModuleResult:
        """Bring the host into state and report whether anything changed."""


class ModuleRegistry:
    """Map of module name -> handler."""

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> Handler:
        """Register ``handler`` under ``name``, replacing any previous one."""
        if not name:
            raise ValueError("Module name must not be empty")
        self._handlers[name] = handler
        return handler

    def module(self, name: str) -> Callable[[Handler], Handler]:
        """Decorator form of register() for plain handler functions."""
        def decorator(handler: Handler) -> Handler:
            return self.register(name, handler)
        return decorator

    def register_module(self, cls: Type[Module]) -> Type[Module]:
        """Register a Module subclass under its ``name``."""
        async def handler(parameters: Mapping[str, Any], connection: Connection) -> ModuleResult:
            module = cls(parameters, connection)
            error = module.validate_args()
            if error:
                raise HandlerError(error)
            return await module.run()

        handler.__name__ = f"{cls.__name__}.run"
        self.register(cls.name, handler)
        return cls

    def get(self, name: str) -> Optional[Handler]:
        return self._handlers.get(name)

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def copy(self) -> 'ModuleRegistry':
        registry = ModuleRegistry()
        registry._handlers = dict(self._handlers)
        return registry

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


# Registry populated by the built-in modules' @register_module decorators
_default_registry = ModuleRegistry()
_modules_imported = False

BUILTIN_MODULES = (
    'builtin_ping',
    'builtin_command',
    'builtin_package',
    'builtin_user',
    'builtin_file',
    'builtin_service',
)


def register_module(cls: Type[Module]) -> Type[Module]:
    """Decorator to register a module class in the default registry."""
    return _default_registry.register_module(cls)


def default_registry() -> ModuleRegistry:
    """The registry holding every built-in module."""
    global _modules_imported
    if not _modules_imported:
        # Importing triggers the @register_module decorators
        for name in BUILTIN_MODULES:
            importlib.import_module(f"converge.modules.{name}")
        _modules_imported = True
    return _default_registry
