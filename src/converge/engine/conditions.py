"""
Converge Condition Evaluator

Task conditions are boolean expressions over host facts, written in the same
expression syntax as ``when:`` clauses::

    os_family == "Debian" and (memtotal_mb >= 2048 or role in ["db", "cache"])

Expressions are parsed with Jinja2's expression parser and evaluated by a
small interpreter that understands a safe subset of the grammar. A reference
to a fact the host does not have evaluates to ``UNKNOWN``; comparisons
involving ``UNKNOWN`` are ``UNKNOWN``, ``and``/``or``/``not`` follow three-valued
logic, and an expression that is still ``UNKNOWN`` at the end is false. The
effect is that a host missing a fact is excluded from the task instead of
aborting the run.
"""

import operator
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional, Union

from jinja2 import Environment, nodes
from jinja2.exceptions import TemplateSyntaxError
from jinja2.parser import Parser

from converge.engine.errors import ConditionSyntaxError


class _Unknown:
    """Value of an undefined fact reference."""

    _instance: Optional['_Unknown'] = None

    def __new__(cls) -> '_Unknown':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


# Jinja2 Operand.op -> predicate(left, right)
_COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    'eq': operator.eq,
    'ne': operator.ne,
    'lt': operator.lt,
    'lteq': operator.le,
    'gt': operator.gt,
    'gteq': operator.ge,
    'in': lambda left, right: left in right,
    'notin': lambda left, right: left not in right,
}

_TESTS = {'defined', 'undefined', 'none'}

_ALLOWED_NODES = (
    nodes.Const, nodes.Name, nodes.List, nodes.Tuple,
    nodes.Compare, nodes.Operand, nodes.And, nodes.Or, nodes.Not,
    nodes.Neg, nodes.Pos, nodes.Getattr, nodes.Getitem, nodes.Test,
)

_environment = Environment()


def to_bool(value: Any) -> Any:
    """Truthiness of a fact value; ``UNKNOWN`` passes through."""
    if value is UNKNOWN or isinstance(value, bool):
        return value
    if isinstance(value, str):
        value_lower = value.lower().strip()
        if value_lower in ('true', 'yes', '1', 'on'):
            return True
        if value_lower in ('false', 'no', '0', 'off', ''):
            return False
        return True
    return bool(value)


@dataclass(frozen=True)
class Condition:
    """A parsed, reusable task condition."""

    source: str
    expr: nodes.Expr

    @classmethod
    def compile(cls, source: Union[str, bool]) -> 'Condition':
        """
        Parse a condition expression.

        Raises:
            ConditionSyntaxError: If the expression is malformed or uses
                anything outside the supported subset (filters, calls, ...).
        """
        if isinstance(source, bool):
            source = "true" if source else "false"
        return _compile(str(source).strip())

    def evaluate(self, facts: Mapping[str, Any]) -> bool:
        """Evaluate against one host's facts. Never raises."""
        try:
            return _Interpreter(facts).truth(self.expr) is True
        except (TypeError, ValueError, KeyError, IndexError, AttributeError):
            return False

    def __str__(self) -> str:
        return self.source


@lru_cache(maxsize=512)
def _compile(source: str) -> Condition:
    if not source:
        raise ConditionSyntaxError(source, "empty expression")

    try:
        parser = Parser(_environment, source, state="variable")
        expr = parser.parse_expression()
        if not parser.stream.eos:
            raise ConditionSyntaxError(source, "unexpected text after expression")
    except TemplateSyntaxError as e:
        raise ConditionSyntaxError(source, str(e)) from e

    for node in (expr, *expr.find_all(nodes.Node)):
        if not isinstance(node, _ALLOWED_NODES):
            raise ConditionSyntaxError(
                source, f"unsupported construct: {type(node).__name__}"
            )
        if isinstance(node, nodes.Test) and node.name not in _TESTS:
            raise ConditionSyntaxError(source, f"unsupported test: {node.name}")

    return Condition(source=source, expr=expr)


class _Interpreter:
    """Three-valued evaluation of a parsed condition."""

    def __init__(self, facts: Mapping[str, Any]):
        self.facts = facts

    def truth(self, node: nodes.Expr) -> Any:
        """Evaluate ``node`` to True, False or UNKNOWN."""
        if isinstance(node, nodes.And):
            left = self.truth(node.left)
            if left is False:
                return False
            right = self.truth(node.right)
            if right is False:
                return False
            if left is UNKNOWN or right is UNKNOWN:
                return UNKNOWN
            return True

        if isinstance(node, nodes.Or):
            left = self.truth(node.left)
            if left is True:
                return True
            right = self.truth(node.right)
            if right is True:
                return True
            if left is UNKNOWN or right is UNKNOWN:
                return UNKNOWN
            return False

        if isinstance(node, nodes.Not):
            inner = self.truth(node.node)
            return UNKNOWN if inner is UNKNOWN else not inner

        return to_bool(self.value(node))

    def value(self, node: nodes.Expr) -> Any:
        if isinstance(node, nodes.Const):
            return node.value

        if isinstance(node, nodes.Name):
            return self.facts.get(node.name, UNKNOWN)

        if isinstance(node, (nodes.List, nodes.Tuple)):
            items = [self.value(item) for item in node.items]
            return UNKNOWN if any(i is UNKNOWN for i in items) else tuple(items)

        if isinstance(node, (nodes.Neg, nodes.Pos)):
            inner = self.value(node.node)
            if inner is UNKNOWN or not isinstance(inner, (int, float)):
                return UNKNOWN
            return -inner if isinstance(node, nodes.Neg) else inner

        if isinstance(node, nodes.Getattr):
            return self._lookup(self.value(node.node), node.attr)

        if isinstance(node, nodes.Getitem):
            key = self.value(node.arg)
            if key is UNKNOWN:
                return UNKNOWN
            return self._lookup(self.value(node.node), key)

        if isinstance(node, nodes.Test):
            subject = self.value(node.node)
            if node.name == 'defined':
                return subject is not UNKNOWN
            if node.name == 'undefined':
                return subject is UNKNOWN
            if node.name == 'none':
                return UNKNOWN if subject is UNKNOWN else subject is None
            return UNKNOWN

        if isinstance(node, nodes.Compare):
            return self._compare(node)

        # And / Or / Not used as operands, e.g. ``(a or b) == true``
        return self.truth(node)

    def _compare(self, node: nodes.Compare) -> Any:
        left = self.value(node.expr)
        outcome: Any = True
        for operand in node.ops:
            right = self.value(operand.expr)
            if left is UNKNOWN or right is UNKNOWN:
                outcome = UNKNOWN
            else:
                try:
                    if not _COMPARISONS[operand.op](left, right):
                        return False
                except TypeError:
                    # Ordering between unrelated types, ``in`` on a scalar
                    outcome = UNKNOWN
            left = right
        return outcome

    @staticmethod
    def _lookup(container: Any, key: Any) -> Any:
        if container is UNKNOWN:
            return UNKNOWN
        if isinstance(container, Mapping):
            return container.get(key, UNKNOWN)
        if isinstance(container, (list, tuple)) and isinstance(key, int):
            if -len(container) <= key < len(container):
                return container[key]
        return UNKNOWN


ConditionLike = Union[str, bool, Condition, None]


def evaluate(condition: ConditionLike, facts: Mapping[str, Any]) -> bool:
    """
    Evaluate a task condition against a host's facts.

    Args:
        condition: Expression source, a compiled Condition, or None
            (no condition, always applicable)
        facts: The host's fact snapshot

    Returns:
        True if the task applies to the host. Undefined facts make the
        condition false rather than raising.

    Raises:
        ConditionSyntaxError: Only for a malformed expression string; compile
            conditions ahead of time (as the play parser does) to surface
            these before a run starts.
    """
    if condition is None:
        return True
    if not isinstance(condition, Condition):
        condition = Condition.compile(condition)
    return condition.evaluate(facts)
