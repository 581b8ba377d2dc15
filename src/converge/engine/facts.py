"""
Converge Fact Source

Facts are discovered, read-only properties of a host (``os_family``,
``hostname``, ...) gathered before a play runs. They are frozen into a
read-only snapshot per host so no worker can alter another worker's view.
"""

import json
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from converge.engine.errors import ParseError

Facts = Mapping[str, Any]

EMPTY_FACTS: Facts = MappingProxyType({})


def freeze_facts(facts: Optional[Mapping[str, Any]]) -> Facts:
    """Return an immutable snapshot of a fact mapping."""
    if not facts:
        return EMPTY_FACTS
    if isinstance(facts, MappingProxyType):
        return facts
    return MappingProxyType(
        {str(k): _freeze_value(v) for k, v in facts.items()}
    )


def _freeze_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze_value(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze_value(v) for v in value)
    return value


class FactSource:
    """
    Read-only mapping of host name -> facts.

    Hosts with no entry fall back to ``default`` (normally the host's
    inventory variables) so conditions can still reference them.
    """

    def __init__(self, facts: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._facts: Dict[str, Facts] = {
            host: freeze_facts(host_facts)
            for host, host_facts in (facts or {}).items()
        }

    def get(self, host: str, default: Optional[Mapping[str, Any]] = None) -> Facts:
        if host in self._facts:
            return self._facts[host]
        return freeze_facts(default)

    def __contains__(self, host: object) -> bool:
        return host in self._facts

    def __len__(self) -> int:
        return len(self._facts)

    @property
    def hosts(self) -> list:
        return list(self._facts)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'FactSource':
        """Convenience wrapper around load_facts()."""
        return load_facts(path)


def load_facts(path: Union[str, Path]) -> FactSource:
    """
    Load a fact file.

    The file is YAML (or JSON) mapping each host name to its facts::

        web1:
          os_family: Debian
          hostname: web1

    Raises:
        ParseError: If the file is missing or not a mapping of mappings
    """
    fact_path = Path(path)
    if not fact_path.exists():
        raise ParseError(f"Fact file not found: {fact_path}", file_path=str(fact_path))

    content = fact_path.read_text(encoding='utf-8')
    try:
        if fact_path.suffix == '.json':
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ParseError(f"Invalid fact file: {e}", file_path=str(fact_path))

    data = data or {}
    if not isinstance(data, dict):
        raise ParseError(
            f"Fact file must map host names to facts, got {type(data).__name__}",
            file_path=str(fact_path),
        )

    for host, host_facts in data.items():
        if host_facts is not None and not isinstance(host_facts, dict):
            raise ParseError(
                f"Facts for host '{host}' must be a mapping",
                file_path=str(fact_path),
            )

    return FactSource({str(h): f or {} for h, f in data.items()})
