from __future__ import annotations

from typing import TYPE_CHECKING, AbstractSet, Iterable, Iterator, TypeVar

from depresolver.exceptions import CycleDetectedError, RequirementError
from depresolver.models.markers import evaluate
from depresolver.models.requirements import parse_requirement
from depresolver.termui import logger

if TYPE_CHECKING:
    from depresolver.models.environment import EnvironmentContext
    from depresolver.resolver.base import ResolvedSet

T = TypeVar("T")


class OrderedSet(AbstractSet[T]):
    """Set with deterministic ordering."""

    def __init__(self, iterable: Iterable[T] = ()) -> None:
        self._data = list(dict.fromkeys(iterable))

    def __hash__(self) -> int:
        return self._hash()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self})"

    def __str__(self) -> str:
        return f"{{{', '.join(map(repr, self._data))}}}"

    def __contains__(self, obj: object) -> bool:
        return obj in self._data

    def __iter__(self) -> Iterator[T]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)


def dependency_graph(mapping: ResolvedSet, environment: EnvironmentContext | None = None) -> dict[str, OrderedSet[str]]:
    """Map each package of the set to the packages of the set it depends on.

    Edges recorded by the resolver are used when present. Otherwise they are
    read from the declared dependencies of the candidate, filtered by markers
    when an environment is given.
    """
    graph: dict[str, OrderedSet[str]] = {}
    for key, candidate in mapping.items():
        recorded = mapping.dependencies_of(key)
        if recorded is not None:
            graph[key] = OrderedSet(k for k in recorded if k in mapping)
            continue
        children: list[str] = []
        for line in candidate.dependencies:
            try:
                req = parse_requirement(line)
            except RequirementError as e:
                logger.debug("Ignoring invalid dependency %r of %s: %s", line, key, e)
                continue
            if environment is not None and not evaluate(req.marker, environment):
                continue
            if req.key in mapping and req.key != key:
                children.append(req.key)
        graph[key] = OrderedSet(children)
    return graph


def find_cycle(graph: dict[str, OrderedSet[str]]) -> tuple[str, ...] | None:
    """Return the first cycle found walking the graph in order, as a closed path."""
    try:
        _walk(graph, strict=True)
    except CycleDetectedError as e:
        return tuple(e.path)
    return None


def _walk(graph: dict[str, OrderedSet[str]], strict: bool) -> list[str]:
    order: list[str] = []
    done: set[str] = set()
    for root in graph:
        if root in done:
            continue
        # Iterative DFS, the stack holds (node, iterator over its children)
        path = [root]
        on_path = {root}
        stack = [(root, iter(graph.get(root, ())))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                path.pop()
                on_path.discard(node)
                done.add(node)
                order.append(node)
                continue
            if child in done:
                continue
            if child in on_path:
                cycle = path[path.index(child) :] + [child]
                if strict:
                    raise CycleDetectedError(cycle)
                logger.debug("Breaking dependency cycle %s", " -> ".join(cycle))
                continue
            path.append(child)
            on_path.add(child)
            stack.append((child, iter(graph.get(child, ()))))
    return order


def install_order(
    mapping: ResolvedSet, *, strict: bool = False, environment: EnvironmentContext | None = None
) -> list[str]:
    """Order the packages so that each one comes after its dependencies.

    Cycles are broken at the edge that closes them, following the order of
    the set, unless ``strict`` is true, in which case :class:`CycleDetectedError`
    is raised with the cycle path.
    """
    return _walk(dependency_graph(mapping, environment), strict)
