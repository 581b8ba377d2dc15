"""
Converge Inventory

Hosts, groups, and resolution of host selectors into ordered host lists.
Inventories are loaded from YAML/JSON structures or simple INI files.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from converge.engine.errors import InventoryError, UnknownGroupError


class Host:
    """A single target host and its connection variables."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.vars: Dict[str, Any] = variables.copy() if variables else {}
        # Ordered, de-duplicated group membership
        self._groups: Dict[str, None] = {}

    @property
    def address(self) -> str:
        """Network address to connect to (defaults to the host name)."""
        return self.vars.get('address', self.name)

    @property
    def port(self) -> int:
        return int(self.vars.get('port', 22))

    @property
    def user(self) -> Optional[str]:
        return self.vars.get('user')

    @property
    def connection(self) -> str:
        """Connection type (ssh, local)."""
        default = 'local' if self.name in ('localhost', '127.0.0.1') else 'ssh'
        return self.vars.get('connection', default)

    @property
    def groups(self) -> List[str]:
        """Return list of group names this host belongs to."""
        return list(self._groups)

    def add_group(self, group_name: str) -> None:
        self._groups.setdefault(group_name, None)

    def set_variable(self, key: str, value: Any) -> None:
        self.vars[key] = value

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self.vars.get(key, default)

    def __repr__(self) -> str:
        return f"Host({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Host):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)


class Group:
    """A named group of hosts, optionally with child groups."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.vars: Dict[str, Any] = variables.copy() if variables else {}
        self._hosts: Dict[str, None] = {}
        self._children: Dict[str, None] = {}

    @property
    def hosts(self) -> List[str]:
        """Host names directly in this group, in insertion order."""
        return list(self._hosts)

    @property
    def children(self) -> List[str]:
        return list(self._children)

    def add_host(self, host_name: str) -> None:
        self._hosts.setdefault(host_name, None)

    def add_child(self, group_name: str) -> None:
        self._children.setdefault(group_name, None)

    def set_variable(self, key: str, value: Any) -> None:
        self.vars[key] = value

    def __repr__(self) -> str:
        return f"Group({self.name!r}, hosts={len(self._hosts)})"


class Inventory:
    """
    Group -> host membership and host -> connection variables.

    Supports:
    - YAML/JSON inventory structures
    - INI format inventory files
    - Selector resolution with first-seen ordering
    """

    # Pattern for host range expansion: web[01:10].example.com
    RANGE_PATTERN = re.compile(r'\[(\d+):(\d+)\]')
    # Pattern for INI variable assignment: key=value
    VAR_PATTERN = re.compile(r'(\w+)=(?:"([^"]*)"|\'([^\']*)\'|(\S+))')
    # Separators accepted between selector terms
    SELECTOR_SPLIT = re.compile(r'[,:]')

    def __init__(self):
        self.hosts: Dict[str, Host] = {}
        self.groups: Dict[str, Group] = {'all': Group('all')}

    # Construction -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Inventory':
        """Build an inventory from the YAML structure (group -> hosts/children/vars)."""
        inventory = cls()
        inventory._parse_yaml_data(data)
        inventory._finalize()
        return inventory

    @classmethod
    def load(cls, source: Union[str, Path]) -> 'Inventory':
        """Load an inventory file (YAML, JSON or INI)."""
        inventory = cls()
        inventory.parse(source)
        return inventory

    def parse(self, source: Union[str, Path]) -> 'Inventory':
        """
        Parse an inventory file.

        Returns:
            self for chaining
        """
        source_path = Path(source)

        if not source_path.is_file():
            raise InventoryError(
                f"Inventory file does not exist: {source_path}",
                file_path=str(source_path),
            )

        content = source_path.read_text(encoding='utf-8')
        try:
            if source_path.suffix in ('.yml', '.yaml'):
                self._parse_yaml_data(yaml.safe_load(content) or {}, source_path)
            elif source_path.suffix == '.json':
                self._parse_yaml_data(json.loads(content), source_path)
            else:
                self._parse_ini_string(content, source_path)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise InventoryError(f"Invalid inventory: {e}", file_path=str(source_path))

        self._finalize()
        return self

    def add_host(self, name: str, group: Optional[str] = None, **variables: Any) -> Host:
        """Add (or update) a host programmatically."""
        host = self.hosts.get(name)
        if host is None:
            host = self.hosts[name] = Host(name)
        host.vars.update(variables)
        if group:
            self._group(group).add_host(name)
            host.add_group(group)
        self.groups['all'].add_host(name)
        host.add_group('all')
        return host

    def _group(self, name: str) -> Group:
        if name not in self.groups:
            self.groups[name] = Group(name)
        return self.groups[name]

    def _finalize(self) -> None:
        """Ensure every host is a member of 'all'."""
        for host_name, host in self.hosts.items():
            self.groups['all'].add_host(host_name)
            host.add_group('all')

    # Resolution ---------------------------------------------------------

    def resolve(self, selector: str = "all") -> List[Host]:
        """
        Expand a host selector into concrete hosts.

        A selector is a group name, a host name, or several of either
        separated by ',' or ':'. Hosts are de-duplicated and returned in
        first-seen order.

        Raises:
            UnknownGroupError: If any term names neither a group nor a host
        """
        terms = [t.strip() for t in self.SELECTOR_SPLIT.split(selector or 'all')]
        terms = [t for t in terms if t] or ['all']

        ordered: Dict[str, Host] = {}
        for term in terms:
            if term == 'all':
                names = list(self.hosts)
            elif term in self.groups:
                names = self._group_host_names(term, set())
            elif term in self.hosts:
                names = [term]
            else:
                raise UnknownGroupError(selector, term)

            for name in names:
                if name not in ordered and name in self.hosts:
                    ordered[name] = self.hosts[name]

        return list(ordered.values())

    def _group_host_names(self, group_name: str, visiting: set) -> List[str]:
        """Host names of a group and its children, depth-first."""
        if group_name in visiting:
            return []
        visiting.add(group_name)

        group = self.groups[group_name]
        names = group.hosts
        for child_name in group.children:
            if child_name in self.groups:
                names.extend(self._group_host_names(child_name, visiting))
        return names

    def get_host_vars(self, host_name: str) -> Dict[str, Any]:
        """Variables for a host, merged from its groups then the host itself."""
        if host_name not in self.hosts:
            return {}

        host = self.hosts[host_name]
        merged_vars: Dict[str, Any] = {}
        merged_vars.update(self.groups['all'].vars)
        for group_name in self._group_chain(host):
            merged_vars.update(self.groups[group_name].vars)
        merged_vars.update(host.vars)
        merged_vars['inventory_hostname'] = host.name
        return merged_vars

    def _group_chain(self, host: Host) -> List[str]:
        """Groups a host belongs to, directly or via children; parents first."""
        chain: List[str] = []
        seen: set = set()

        def visit(name: str) -> None:
            if name in seen or name == 'all' or name not in self.groups:
                return
            seen.add(name)
            for parent_name, group in self.groups.items():
                if name in group.children:
                    visit(parent_name)
            chain.append(name)

        for group_name in host.groups:
            visit(group_name)
        return chain

    # YAML -----------------------------------------------------------------

    def _parse_yaml_data(self, data: Any, source_path: Optional[Path] = None) -> None:
        if not isinstance(data, dict):
            raise InventoryError(
                "Inventory must be a mapping of groups",
                file_path=str(source_path) if source_path else None,
            )

        for group_name, group_data in data.items():
            self._parse_yaml_group(str(group_name), group_data or {})

    def _parse_yaml_group(self, name: str, data: Dict[str, Any]) -> None:
        """Parse a single group from YAML inventory."""
        group = self._group(name)

        if not isinstance(data, dict):
            return

        hosts_data = data.get('hosts') or {}
        if isinstance(hosts_data, list):
            hosts_data = {h: {} for h in hosts_data}
        for host_name, host_vars in hosts_data.items():
            host_name = str(host_name)
            host = self.hosts.get(host_name)
            if host is None:
                host = self.hosts[host_name] = Host(host_name)
            host.vars.update(host_vars or {})
            group.add_host(host_name)
            host.add_group(name)

        for key, value in (data.get('vars') or {}).items():
            group.set_variable(key, value)

        children_data = data.get('children') or {}
        if isinstance(children_data, list):
            children_data = {c: {} for c in children_data}
        for child_name, child_data in children_data.items():
            group.add_child(str(child_name))
            self._parse_yaml_group(str(child_name), child_data or {})

    # INI ------------------------------------------------------------------

    def _parse_ini_string(self, content: str, source_path: Optional[Path] = None) -> None:
        """Parse INI format inventory."""
        current_group: Optional[str] = None
        current_section: Optional[str] = None  # 'hosts', 'vars', 'children'

        for line in content.splitlines():
            line = line.strip()

            if not line or line.startswith('#') or line.startswith(';'):
                continue

            if line.startswith('[') and line.endswith(']'):
                header = line[1:-1].strip()
                if header.endswith(':vars'):
                    current_group, current_section = header[:-5].strip(), 'vars'
                elif header.endswith(':children'):
                    current_group, current_section = header[:-9].strip(), 'children'
                else:
                    current_group, current_section = header, 'hosts'
                self._group(current_group)
                continue

            if current_section == 'vars':
                key, value = self._parse_variable_line(line)
                if current_group and key:
                    self.groups[current_group].set_variable(key, value)

            elif current_section == 'children':
                self._group(line)
                self.groups[current_group].add_child(line)

            else:
                for host in self._parse_host_line(line):
                    existing = self.hosts.get(host.name)
                    if existing is None:
                        self.hosts[host.name] = existing = host
                    else:
                        existing.vars.update(host.vars)
                    if current_group:
                        self.groups[current_group].add_host(host.name)
                        existing.add_group(current_group)

    def _parse_host_line(self, line: str) -> List[Host]:
        """Parse a single host line, handling ranges and variables."""
        parts = line.split()
        host_pattern = parts[0]
        var_string = ' '.join(parts[1:])

        variables: Dict[str, Any] = {}
        for match in self.VAR_PATTERN.finditer(var_string):
            key = match.group(1)
            value = match.group(2) or match.group(3) or match.group(4)
            variables[key] = self._convert_value(value)

        return [
            Host(name, variables=variables)
            for name in self._expand_host_pattern(host_pattern)
        ]

    def _expand_host_pattern(self, pattern: str) -> List[str]:
        """Expand host patterns like web[01:03].example.com."""
        match = self.RANGE_PATTERN.search(pattern)
        if not match:
            return [pattern]

        start = int(match.group(1))
        end = int(match.group(2))
        width = len(match.group(1))

        results = []
        for i in range(start, end + 1):
            expanded = pattern[:match.start()] + str(i).zfill(width) + pattern[match.end():]
            results.extend(self._expand_host_pattern(expanded))
        return results

    def _parse_variable_line(self, line: str) -> Tuple[str, Any]:
        if '=' not in line:
            return '', None

        key, _, value = line.partition('=')
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        return key.strip(), self._convert_value(value)

    @staticmethod
    def _convert_value(value: str) -> Any:
        """Convert an INI string value to the matching Python type."""
        if value.lower() in ('true', 'yes'):
            return True
        if value.lower() in ('false', 'no'):
            return False
        if value.lower() in ('null', 'none', '~'):
            return None
        for convert in (int, float):
            try:
                return convert(value)
            except ValueError:
                pass
        return value


def resolve(selector: str, inventory: Inventory) -> List[Host]:
    """Expand ``selector`` against ``inventory``; see Inventory.resolve()."""
    return inventory.resolve(selector)
