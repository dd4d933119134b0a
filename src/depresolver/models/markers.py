"""Environment markers.

A marker string is parsed into a small expression tree of :class:`Comparison`,
:class:`And` and :class:`Or` nodes. Evaluation never raises: a comparison that
involves an unknown variable or an operator that can't be applied to its
operands is false, so markers written for newer tools simply don't apply.
"""

from __future__ import annotations

import dataclasses
import operator
import re
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Union, overload

from packaging.specifiers import InvalidSpecifier, Specifier
from packaging.version import InvalidVersion, Version

from depresolver.exceptions import RequirementError
from depresolver.termui import logger
from depresolver.utils import normalize_name

if TYPE_CHECKING:
    from depresolver.models.environment import EnvironmentContext

MARKER_VARIABLES = frozenset(
    {
        "python_version",
        "python_full_version",
        "os_name",
        "sys_platform",
        "platform",
        "platform_release",
        "platform_system",
        "platform_version",
        "platform_machine",
        "platform_python_implementation",
        "implementation_name",
        "implementation_version",
        "extra",
    }
)
VERSION_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "~=", "==="})
_STRING_OPERATORS: dict[str, Callable[[str, str], bool]] = {
    "in": lambda lhs, rhs: lhs in rhs,
    "not in": lambda lhs, rhs: lhs not in rhs,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
    ">=": operator.ge,
    ">": operator.gt,
}


class InvalidMarker(RequirementError):
    pass


@dataclasses.dataclass(frozen=True)
class Variable:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclasses.dataclass(frozen=True)
class Literal:
    value: str

    def __str__(self) -> str:
        return f'"{self.value}"'


Operand = Union[Variable, Literal]


@dataclasses.dataclass(frozen=True)
class Comparison:
    lhs: Operand
    op: str
    rhs: Operand

    def __str__(self) -> str:
        return f"{self.lhs} {self.op} {self.rhs}"


@dataclasses.dataclass(frozen=True)
class And:
    children: tuple[Node, ...]

    def __str__(self) -> str:
        return " and ".join(f"({c})" if isinstance(c, Or) else str(c) for c in self.children)


@dataclasses.dataclass(frozen=True)
class Or:
    children: tuple[Node, ...]

    def __str__(self) -> str:
        return " or ".join(str(c) for c in self.children)


Node = Union[Comparison, And, Or]


def _join(cls: type[And] | type[Or], nodes: Iterable[Node]) -> Node:
    flat: list[Node] = []
    for node in nodes:
        if isinstance(node, cls):
            flat.extend(node.children)
        elif node not in flat:
            flat.append(node)
    if len(flat) == 1:
        return flat[0]
    return cls(tuple(flat))


class MarkerVisitor:
    """Walk a marker tree, dispatching on the node type."""

    def visit(self, node: Node) -> Any:
        method = getattr(self, f"visit_{type(node).__name__.lower()}")
        return method(node)

    def visit_comparison(self, node: Comparison) -> Any:
        raise NotImplementedError

    def visit_and(self, node: And) -> Any:
        return [self.visit(child) for child in node.children]

    def visit_or(self, node: Or) -> Any:
        return [self.visit(child) for child in node.children]


class Evaluator(MarkerVisitor):
    def __init__(self, environment: Mapping[str, str], extras: Iterable[str] = ()) -> None:
        self.environment = environment
        self.extras = frozenset(normalize_name(e) for e in extras)

    def visit_and(self, node: And) -> bool:
        return all(self.visit(child) for child in node.children)

    def visit_or(self, node: Or) -> bool:
        return any(self.visit(child) for child in node.children)

    def visit_comparison(self, node: Comparison) -> bool:
        if Variable("extra") in (node.lhs, node.rhs):
            return self._compare_extra(node)
        lhs = self._resolve(node.lhs)
        rhs = self._resolve(node.rhs)
        if lhs is None or rhs is None:
            logger.debug("Unknown marker variable in %s, treated as false", node)
            return False
        return _eval_op(lhs, node.op, rhs)

    def _resolve(self, operand: Operand) -> str | None:
        if isinstance(operand, Literal):
            return operand.value
        return self.environment.get(operand.name)

    def _compare_extra(self, node: Comparison) -> bool:
        other = node.rhs if node.lhs == Variable("extra") else node.lhs
        if not isinstance(other, Literal):
            return False
        wanted = normalize_name(other.value)
        if node.op == "==":
            return wanted in self.extras
        if node.op == "!=":
            return wanted not in self.extras
        return False


class VariableCollector(MarkerVisitor):
    def visit_comparison(self, node: Comparison) -> set[str]:
        return {o.name for o in (node.lhs, node.rhs) if isinstance(o, Variable)}

    def visit_and(self, node: And) -> set[str]:
        return set().union(*(self.visit(child) for child in node.children))

    visit_or = visit_and  # type: ignore[assignment]


def _eval_op(lhs: str, op: str, rhs: str) -> bool:
    if op in VERSION_OPERATORS:
        try:
            spec = Specifier(f"{op}{rhs}")
            Version(lhs)
        except (InvalidSpecifier, InvalidVersion):
            pass
        else:
            return spec.contains(lhs, prereleases=True)
    oper = _STRING_OPERATORS.get(op)
    if oper is None:
        logger.debug("Can't apply operator %s to %r and %r, treated as false", op, lhs, rhs)
        return False
    return oper(lhs, rhs)


_TOKENS = [
    ("WS", r"\s+"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("STRING", r"'[^']*'|\"[^\"]*\""),
    ("OP", r"===|==|!=|<=|>=|~=|<|>|not\s+in\b|in\b"),
    ("BOOL", r"and\b|or\b"),
    ("NAME", r"[A-Za-z_][A-Za-z0-9_.]*"),
]
_token_re = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKENS))


def _tokenize(text: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(text):
        match = _token_re.match(text, pos)
        if match is None:
            raise InvalidMarker(f"Unexpected character at position {pos} in marker {text!r}")
        kind = match.lastgroup
        assert kind is not None
        if kind != "WS":
            value = match.group()
            if kind == "OP" and value.startswith("not"):
                value = "not in"
            tokens.append((kind, value))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self, expected: str) -> str:
        token = self._peek()
        if token is None or token[0] != expected:
            found = token[1] if token else "end of marker"
            raise InvalidMarker(f"Expected {expected} but got {found!r} in marker {self.text!r}")
        self.pos += 1
        return token[1]

    def parse(self) -> Node:
        if not self.tokens:
            raise InvalidMarker("Empty marker")
        node = self._parse_or()
        if self._peek() is not None:
            raise InvalidMarker(f"Unexpected {self._peek()[1]!r} in marker {self.text!r}")  # type: ignore[index]
        return node

    def _parse_or(self) -> Node:
        nodes = [self._parse_and()]
        while self._peek() == ("BOOL", "or"):
            self.pos += 1
            nodes.append(self._parse_and())
        return _join(Or, nodes)

    def _parse_and(self) -> Node:
        nodes = [self._parse_atom()]
        while self._peek() == ("BOOL", "and"):
            self.pos += 1
            nodes.append(self._parse_atom())
        return _join(And, nodes)

    def _parse_atom(self) -> Node:
        if self._peek() == ("LPAREN", "("):
            self.pos += 1
            node = self._parse_or()
            self._next("RPAREN")
            return node
        lhs = self._parse_operand()
        op = self._next("OP")
        rhs = self._parse_operand()
        return Comparison(lhs, op, rhs)

    def _parse_operand(self) -> Operand:
        token = self._peek()
        if token is not None and token[0] == "STRING":
            self.pos += 1
            return Literal(token[1][1:-1])
        name = self._next("NAME")
        # Legacy dotted names such as `os.name` and `sys.platform`
        return Variable(name.replace(".", "_"))


@lru_cache(maxsize=1024)
def parse_marker(text: str) -> Node:
    return _Parser(text).parse()


@dataclasses.dataclass(frozen=True, repr=False)
class Marker:
    inner: Node

    def __and__(self, other: Any) -> Marker:
        if other is None:
            return self
        if not isinstance(other, Marker):
            return NotImplemented
        return type(self)(_join(And, [self.inner, other.inner]))

    def __rand__(self, other: Any) -> Marker:
        if other is None:
            return self
        return NotImplemented

    def __or__(self, other: Any) -> Marker:
        if not isinstance(other, Marker):
            return NotImplemented
        return type(self)(_join(Or, [self.inner, other.inner]))

    def __str__(self) -> str:
        return str(self.inner)

    def __repr__(self) -> str:
        return f"<Marker {self.inner}>"

    @property
    def variables(self) -> frozenset[str]:
        return frozenset(VariableCollector().visit(self.inner))

    def has_extras(self) -> bool:
        return "extra" in self.variables

    def evaluate(
        self, environment: EnvironmentContext | Mapping[str, str] | None = None, extras: Iterable[str] = ()
    ) -> bool:
        if environment is None:
            env: Mapping[str, str] = {}
        elif isinstance(environment, Mapping):
            env = environment
        else:
            env = environment.markers()
        return Evaluator(env, extras).visit(self.inner)


@overload
def get_marker(marker: None) -> None: ...


@overload
def get_marker(marker: Marker | str) -> Marker: ...


def get_marker(marker: Marker | str | None) -> Marker | None:
    if marker is None:
        return None
    if isinstance(marker, Marker):
        return marker
    try:
        return Marker(parse_marker(marker.strip()))
    except InvalidMarker as e:
        raise RequirementError(f"Invalid marker {marker}: {e}") from e


def evaluate(
    marker: Marker | str | None, context: EnvironmentContext | Mapping[str, str], extras: Iterable[str] = ()
) -> bool:
    """Decide whether a marker applies to the given context.

    A missing marker always applies. Markers that can't be parsed don't apply.
    """
    if marker is None:
        return True
    try:
        parsed = get_marker(marker)
    except RequirementError as e:
        logger.debug("Ignoring unparsable marker %r: %s", marker, e)
        return False
    return parsed.evaluate(context, extras)
