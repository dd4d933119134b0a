from __future__ import annotations

import typing as t
from dataclasses import dataclass, field

from depresolver.exceptions import ResolutionImpossible
from depresolver.models.candidates import Candidate
from depresolver.utils import normalize_name

if t.TYPE_CHECKING:
    from depresolver.models.requirements import Requirement


class ResolvedSet(t.Mapping[str, Candidate]):
    """An ordered mapping of normalized package names to the chosen candidates.

    Every name appears at most once, and the requirements that named it are
    recorded along with the candidate.
    """

    def __init__(self, candidates: t.Iterable[Candidate] = ()) -> None:
        self._candidates: dict[str, Candidate] = {}
        self._requirements: dict[str, list[Requirement]] = {}
        self._edges: dict[str, list[str]] = {}
        for candidate in candidates:
            self.add(candidate)

    def add(self, candidate: Candidate, requirement: Requirement | None = None) -> None:
        key = candidate.key
        if key in self._candidates and self._candidates[key] != candidate:
            raise ValueError(f"{key} is already pinned to {self._candidates[key]}")
        self._candidates[key] = candidate
        requirements = self._requirements.setdefault(key, [])
        if requirement is not None:
            requirements.append(requirement)

    def record(self, requirement: Requirement) -> None:
        """Record another requirement of an already chosen package."""
        self._requirements[requirement.key].append(requirement)

    def requirements_for(self, name: str) -> list[Requirement]:
        return list(self._requirements.get(normalize_name(name), []))

    def record_edges(self, parent: str, children: t.Iterable[str] = ()) -> None:
        """Mark the dependencies of ``parent`` as known, even when there are none."""
        edges = self._edges.setdefault(normalize_name(parent), [])
        for child in children:
            if normalize_name(child) not in edges:
                edges.append(normalize_name(child))

    def add_edge(self, parent: str, child: str) -> None:
        """Record that ``parent`` depends on ``child``."""
        self.record_edges(parent, [child])

    def dependencies_of(self, name: str) -> list[str] | None:
        """The names ``name`` depends on, or None if no edges were recorded for it."""
        return self._edges.get(normalize_name(name))

    def versions(self) -> dict[str, str | None]:
        return {key: candidate.version for key, candidate in self._candidates.items()}

    def __getitem__(self, key: str) -> Candidate:
        return self._candidates[normalize_name(key)]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and normalize_name(key) in self._candidates

    def __iter__(self) -> t.Iterator[str]:
        return iter(self._candidates)

    def __len__(self) -> int:
        return len(self._candidates)

    def __repr__(self) -> str:
        return f"<ResolvedSet {', '.join(map(str, self._candidates.values()))}>"


class ResolutionFailure:
    """Base class of the reasons a resolution run can fail."""

    name: str

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Conflict(ResolutionFailure):
    name: str
    reason_a: str
    reason_b: str

    def describe(self) -> str:
        return f"Conflicting requirements for {self.name}: {self.reason_a} and {self.reason_b}"


@dataclass(frozen=True)
class NotFound(ResolutionFailure):
    name: str
    specifier: str

    def describe(self) -> str:
        constraint = self.specifier or "any version"
        return f"No candidate of {self.name} satisfies {constraint}"


@dataclass(frozen=True)
class CycleDetected(ResolutionFailure):
    path: tuple[str, ...]

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.path[0] if self.path else ""

    def describe(self) -> str:
        return f"Dependency cycle detected: {' -> '.join(self.path)}"


@dataclass(frozen=True)
class FetchFailure(ResolutionFailure):
    name: str
    last_cause: BaseException | None
    attempts: int

    def describe(self) -> str:
        return f"Failed to fetch metadata of {self.name} after {self.attempts} attempt(s): {self.last_cause}"


@dataclass
class Resolution:
    """The resolution result: the resolved set on success, or the reason of the failure."""

    mapping: ResolvedSet = field(default_factory=ResolvedSet)
    """The chosen candidates, complete only when the run succeeded."""
    failure: ResolutionFailure | None = None
    """Why the resolution failed."""

    @property
    def ok(self) -> bool:
        return self.failure is None

    def __bool__(self) -> bool:
        return self.ok

    def raise_for_failure(self) -> ResolvedSet:
        if self.failure is not None:
            raise ResolutionImpossible(self.failure)
        return self.mapping
