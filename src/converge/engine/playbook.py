"""
Converge Play Parser

Parses YAML play files into immutable Play and Task objects.

A play file is a list of plays::

    - name: Provision web servers
      hosts: webservers
      become: true
      tasks:
        - name: Install nginx (Debian)
          package:
            name: nginx
          when: os_family == "Debian"
        - name: Create deploy user
          user:
            name: deploy
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from converge.engine.conditions import Condition
from converge.engine.errors import ConditionSyntaxError, ParseError


# Task keys that are NOT module names
TASK_KEYWORDS = {
    'name', 'when', 'ignore_errors', 'timeout', 'retries', 'delay', 'args', 'module',
}

INLINE_ARG_PATTERN = re.compile(r'(\w+)=(?:"([^"]*)"|\'([^\']*)\'|(\S+))')


@dataclass(frozen=True)
class Task:
    """One declarative change unit bound to a module."""

    name: str
    module: str
    parameters: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    condition: Optional[Condition] = None
    ignore_errors: bool = False
    # Seconds; None means the runner's default
    timeout: Optional[float] = None
    # Extra attempts after a failed (not unreachable) invocation
    retries: int = 0
    delay: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.parameters, MappingProxyType):
            object.__setattr__(self, 'parameters', MappingProxyType(dict(self.parameters)))
        if self.condition is not None and not isinstance(self.condition, Condition):
            object.__setattr__(self, 'condition', Condition.compile(self.condition))

    def __repr__(self) -> str:
        return f"Task(name={self.name!r}, module={self.module!r})"


@dataclass(frozen=True)
class Play:
    """An ordered set of Tasks aimed at a host selector."""

    name: str
    hosts: str
    tasks: Tuple[Task, ...] = ()
    become: bool = False
    become_user: str = "root"
    become_method: str = "sudo"

    def __post_init__(self) -> None:
        if not isinstance(self.tasks, tuple):
            object.__setattr__(self, 'tasks', tuple(self.tasks))

    def __repr__(self) -> str:
        return f"Play(name={self.name!r}, hosts={self.hosts!r}, tasks={len(self.tasks)})"


class PlaybookParser:
    """Parse YAML play files into Play and Task objects."""

    def __init__(self, playbook_path: Union[str, Path, None] = None):
        self.playbook_path = Path(playbook_path) if playbook_path else None

    @property
    def _file(self) -> Optional[str]:
        return str(self.playbook_path) if self.playbook_path else None

    def parse(self) -> List[Play]:
        """
        Parse the play file.

        Raises:
            ParseError: If the file is missing, is not valid YAML, or a play
                or task is malformed (including invalid conditions)
        """
        if self.playbook_path is None or not self.playbook_path.exists():
            raise ParseError(f"Play file not found: {self.playbook_path}", file_path=self._file)

        content = self.playbook_path.read_text(encoding='utf-8')
        try:
            documents = list(yaml.safe_load_all(content))
        except yaml.YAMLError as e:
            raise ParseError(f"YAML syntax error: {e}", file_path=self._file)

        all_plays: List[Any] = []
        for doc in documents:
            if doc is None:
                continue
            if isinstance(doc, list):
                all_plays.extend(doc)
            else:
                all_plays.append(doc)

        return self.parse_data(all_plays)

    def parse_data(self, data: Union[List[Any], Dict[str, Any]]) -> List[Play]:
        """Parse already-loaded play data (one play dict or a list of them)."""
        if isinstance(data, dict):
            data = [data]
        plays = []
        for play_data in data:
            if not isinstance(play_data, dict):
                raise ParseError(
                    f"Each play must be a mapping, got {type(play_data).__name__}",
                    file_path=self._file,
                )
            plays.append(self._parse_play(play_data))
        return plays

    def _parse_play(self, data: Dict[str, Any]) -> Play:
        if 'hosts' not in data:
            raise ParseError("Play missing required 'hosts' field", file_path=self._file)

        hosts = data['hosts']
        if isinstance(hosts, list):
            hosts = ','.join(str(h) for h in hosts)

        tasks_data = data.get('tasks') or []
        if not isinstance(tasks_data, list):
            raise ParseError("'tasks' must be a list", file_path=self._file)

        tasks = []
        for position, task_data in enumerate(tasks_data, 1):
            if not isinstance(task_data, dict):
                raise ParseError(f"Task #{position} must be a mapping", file_path=self._file)
            tasks.append(self._parse_task(task_data, position))

        return Play(
            name=data.get('name') or f"hosts: {hosts}",
            hosts=str(hosts),
            tasks=tuple(tasks),
            become=bool(data.get('become', False)),
            become_user=data.get('become_user', 'root'),
            become_method=data.get('become_method', 'sudo'),
        )

    def _parse_task(self, data: Dict[str, Any], position: int) -> Task:
        """Parse a single task from YAML data."""
        if 'module' in data:
            module_name = data['module']
            module_args = data.get('args')
        else:
            candidates = [k for k in data if k not in TASK_KEYWORDS]
            if len(candidates) != 1:
                raise ParseError(
                    f"Task #{position} must name exactly one module, found {candidates or 'none'}",
                    file_path=self._file,
                )
            module_name = candidates[0]
            module_args = data[module_name]

        parameters = self._normalize_args(module_args)
        if isinstance(data.get('args'), dict) and 'module' not in data:
            parameters = {**data['args'], **parameters}

        timeout = data.get('timeout')
        try:
            if timeout is not None:
                timeout = float(timeout)
            retries = int(data.get('retries', 0))
            delay = float(data.get('delay', 0))
        except (TypeError, ValueError):
            raise ParseError(
                f"Task #{position}: timeout, retries and delay must be numbers",
                file_path=self._file,
            )

        return Task(
            name=data.get('name') or f"{module_name} #{position}",
            module=str(module_name),
            parameters=parameters,
            condition=self._parse_condition(data.get('when')),
            ignore_errors=bool(data.get('ignore_errors', False)),
            timeout=timeout,
            retries=max(0, retries),
            delay=max(0.0, delay),
        )

    def _parse_condition(self, when: Any) -> Optional[Condition]:
        """A list of conditions is AND-ed together."""
        if when is None:
            return None
        if isinstance(when, list):
            when = ' and '.join(f"({w})" for w in when)
        try:
            return Condition.compile(when)
        except ConditionSyntaxError as e:
            raise ParseError(
                f"Invalid condition {e.condition!r}",
                file_path=self._file,
                details=e.details,
            )

    def _normalize_args(self, args: Any) -> Dict[str, Any]:
        """Normalize module arguments to a dictionary."""
        if args is None:
            return {}

        if isinstance(args, dict):
            return dict(args)

        if isinstance(args, str):
            # Inline args: "name=nginx state=present"
            parsed = {}
            for match in INLINE_ARG_PATTERN.finditer(args):
                parsed[match.group(1)] = match.group(2) or match.group(3) or match.group(4)
            return parsed or {'_raw_params': args}

        return {'_raw_params': str(args)}


def load_plays(path: Union[str, Path]) -> List[Play]:
    """Convenience function to parse a play file."""
    return PlaybookParser(path).parse()
