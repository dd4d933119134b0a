from __future__ import annotations

import asyncio
import collections
import dataclasses
import warnings
from typing import TYPE_CHECKING, Any, Deque, Iterable, Mapping, Tuple

from packaging.specifiers import SpecifierSet

from depresolver.exceptions import (
    CandidateNotFound,
    ExtrasWarning,
    FetchError,
    InvalidMetadata,
    RequirementError,
)
from depresolver.models.caches import DependencyCache
from depresolver.models.direct_url import ConflictDetector
from depresolver.models.markers import evaluate
from depresolver.models.requirements import parse_requirement
from depresolver.models.specifiers import contains_version, get_specifier
from depresolver.resolver.base import (
    Conflict,
    CycleDetected,
    FetchFailure,
    NotFound,
    Resolution,
    ResolutionFailure,
    ResolvedSet,
)
from depresolver.resolver.graph import dependency_graph, find_cycle
from depresolver.resolver.reporters import BaseReporter
from depresolver.termui import UI, logger
from depresolver.utils import normalize_name

if TYPE_CHECKING:
    import httpx

    from depresolver.config import Config
    from depresolver.installers import Installer
    from depresolver.models.candidates import Candidate
    from depresolver.models.caches import MetadataCache
    from depresolver.models.environment import EnvironmentContext
    from depresolver.models.requirements import Requirement
    from depresolver.resolver.selector import CandidateSelector

# A queued requirement and the candidate that asked for it, None for top-level ones
QueueItem = Tuple["Requirement", "Candidate | None"]


def _describe(requirement: Requirement, parent: Candidate | None) -> str:
    source = f"{parent.name} {parent.version}" if parent is not None else "project"
    return f"{requirement.as_line()} (from {source})"


@dataclasses.dataclass
class Resolver:
    """Resolve requirements breadth-first into a flat set of candidates.

    Each round fetches the project metadata of all queued requirements
    concurrently, then applies the requirements one by one in queue order so
    that the result doesn't depend on which response arrives first. A package
    is expanded once: a later requirement on it is only checked against the
    chosen version, and only the extras it adds are expanded.
    """

    selector: CandidateSelector
    """Picks a candidate for each new package."""
    environment: EnvironmentContext
    """The target environment that markers are evaluated against."""
    dependency_cache: DependencyCache = dataclasses.field(default_factory=DependencyCache)
    """Memo of the applicable dependencies of each package version."""
    conflict_detector: ConflictDetector = dataclasses.field(default_factory=ConflictDetector)
    """Tracks the direct references requested for each package."""
    already_installed: Mapping[str, Candidate] = dataclasses.field(default_factory=dict)
    """Candidates that can be kept without fetching, e.g. from the working set or a lockfile."""
    reporter: BaseReporter = dataclasses.field(default_factory=BaseReporter)
    """The reporter to use."""
    strict_cycles: bool = False
    """Fail with :class:`CycleDetected` when the result contains a dependency cycle."""
    constraints: Mapping[str, SpecifierSet | str] = dataclasses.field(default_factory=dict)
    """Version constraints narrowing the requirements on a package, without requesting it."""
    ui: UI | None = None
    """When given, the log records of :meth:`resolve` go to its log destination."""

    def __post_init__(self) -> None:
        self.constraints = {
            normalize_name(name): spec if isinstance(spec, SpecifierSet) else get_specifier(spec)
            for name, spec in self.constraints.items()
        }

    @classmethod
    def from_config(
        cls,
        config: Config,
        environment: EnvironmentContext,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        metadata_cache: MetadataCache | None = None,
        installer: Installer | None = None,
        reporter: BaseReporter | None = None,
        **kwargs: Any,
    ) -> Resolver:
        """Wire up the index client, fetcher, repository and selector from the configuration."""
        from depresolver.models.fetcher import ConcurrentFetcher
        from depresolver.models.repositories import PyPIRepository
        from depresolver.models.session import IndexClient
        from depresolver.resolver.selector import CandidateSelector

        client = IndexClient(config["index_url"], timeout=config["request_timeout"], transport=transport)
        fetcher = ConcurrentFetcher.from_config(config, client, metadata_cache)
        selector = CandidateSelector(
            PyPIRepository(client, fetcher),
            environment,
            installer=installer,
            strategy=config["strategy.update"],
            allow_prereleases=config["allow_prereleases"] or None,
            reporter=reporter,
        )
        if reporter is not None:
            kwargs["reporter"] = reporter
        kwargs.setdefault("ui", UI(log_dir=config["log_dir"]))
        return cls(selector, environment, **kwargs)

    def resolve(self, requirements: Iterable[Requirement]) -> Resolution:
        """Run the resolution in a new event loop.

        The index client is closed when the loop ends. Use :meth:`resolve_async`
        from a coroutine, and close the client yourself.
        """
        if self.ui is None:
            return asyncio.run(self._resolve_and_close(requirements))
        with self.ui.exit_stack, self.ui.logging("resolve"):
            return asyncio.run(self._resolve_and_close(requirements))

    async def _resolve_and_close(self, requirements: Iterable[Requirement]) -> Resolution:
        try:
            return await self.resolve_async(requirements)
        finally:
            await self.selector.repository.client.aclose()

    async def resolve_async(self, requirements: Iterable[Requirement]) -> Resolution:
        requirements = list(requirements)
        # Nothing learned in a previous run may decide this one
        self.dependency_cache.clear()
        self.conflict_detector.clear()
        self.selector.repository.clear()
        state = _State(mapping=ResolvedSet())
        self.reporter.starting(requirements)
        for req in requirements:
            if not evaluate(req.marker, self.environment, req.extras):
                logger.debug("Skipping %s, its marker doesn't match %s", req.as_line(), self.environment)
                continue
            req = self._constrain(req)
            state.queue.append((req, None))
            self.reporter.adding_requirement(req, None)

        failure = await self._run(state)
        if failure is None and self.strict_cycles:
            cycle = find_cycle(dependency_graph(state.mapping))
            if cycle is not None:
                failure = CycleDetected(cycle)
        if failure is not None:
            self.reporter.resolving_conflicts(failure)
        resolution = Resolution(state.mapping, failure)
        self.reporter.ending(resolution)
        return resolution

    async def _run(self, state: _State) -> ResolutionFailure | None:
        index = 0
        while state.queue:
            self.reporter.starting_round(index)
            batch = list(state.queue)
            state.queue.clear()
            await self._prefetch(batch, state)
            for requirement, parent in batch:
                failure = await self._apply(requirement, parent, state)
                if failure is not None:
                    # Stop here, whatever is left in the batch and the queue is dropped
                    return failure
            if state.queue:
                self.reporter.ending_round(index, state.mapping, len(state.queue))
            index += 1
        return None

    async def _prefetch(self, batch: list[QueueItem], state: _State) -> None:
        """Fetch the project documents the batch is going to need, concurrently."""
        names: dict[str, str] = {}
        for req, _ in batch:
            if not req.is_named or req.key in state.mapping or req.key in state.prefetch_errors:
                continue
            if self.selector.find_reusable(req, self.already_installed) is not None:
                continue
            names.setdefault(req.key, req.name)
        if not names:
            return
        logger.debug("Prefetching metadata of %s", ", ".join(names.values()))
        results = await asyncio.gather(
            *(self.selector.repository.get_project(name) for name in names.values()), return_exceptions=True
        )
        for key, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                state.prefetch_errors[key] = result

    async def _apply(
        self, requirement: Requirement, parent: Candidate | None, state: _State
    ) -> ResolutionFailure | None:
        key = requirement.key
        if requirement.reference is not None:
            record = self.conflict_detector.register_and_check(requirement.name, requirement.reference)
            if record is not None:
                return Conflict(key, record.first, record.second)
        if parent is not None and parent.key != key:
            state.mapping.add_edge(parent.key, key)

        if key in state.mapping:
            return self._revisit(requirement, parent, state)

        try:
            if key in state.prefetch_errors:
                raise state.prefetch_errors[key]
            candidate = await self.selector.select(requirement, self.already_installed)
        except CandidateNotFound as e:
            logger.debug("No candidate for %s: %s", requirement.as_line(), e)
            return NotFound(key, str(requirement.specifier))
        except FetchError as e:
            return FetchFailure(key, e.last_cause, e.attempts)
        except InvalidMetadata as e:
            return FetchFailure(key, e, 1)

        if candidate.version is not None and not contains_version(requirement.specifier, candidate.version):
            self.reporter.rejecting_candidate(candidate, f"it doesn't satisfy {requirement.as_line()}")
            return NotFound(key, str(requirement.specifier))

        state.mapping.add(candidate, requirement)
        state.expanded_extras[key] = set(requirement.extras)
        state.mapping.record_edges(key)
        self.reporter.pinning(candidate)
        self._check_extras(candidate, requirement.extras)
        for dep in self._get_dependencies(candidate, requirement.extras):
            self._enqueue(dep, candidate, state)
        return None

    def _revisit(self, requirement: Requirement, parent: Candidate | None, state: _State) -> ResolutionFailure | None:
        """Check a new requirement on an already chosen package, without expanding it again."""
        key = requirement.key
        chosen = state.mapping[key]
        compatible = contains_version(requirement.specifier, chosen.version)
        if compatible and requirement.reference is not None:
            compatible = chosen.same_origin(requirement.reference)
        if not compatible:
            previous = ", ".join(r.as_line() for r in state.mapping.requirements_for(key))
            pinned = f"{chosen.name} {chosen.version or chosen.reference} pinned for {previous}"
            self.reporter.rejecting_candidate(chosen, f"it doesn't satisfy {requirement.as_line()}")
            return Conflict(key, pinned, _describe(requirement, parent))
        state.mapping.record(requirement)

        expanded = state.expanded_extras.setdefault(key, set())
        new_extras = set(requirement.extras) - expanded
        if not new_extras:
            return None
        logger.debug("Expanding extras %s of %s", sorted(new_extras), chosen)
        self._check_extras(chosen, frozenset(new_extras))
        known = self._get_dependencies(chosen, frozenset(expanded))
        expanded |= new_extras
        for dep in self._get_dependencies(chosen, frozenset(expanded)):
            if dep not in known:
                self._enqueue(dep, chosen, state)
        return None

    def _constrain(self, requirement: Requirement) -> Requirement:
        """Narrow the specifier of the requirement with the constraint on its package, if any."""
        constraint = self.constraints.get(requirement.key)
        if constraint is None:
            return requirement
        return dataclasses.replace(requirement, specifier=requirement.specifier & constraint)

    def _enqueue(self, requirement: Requirement, parent: Candidate, state: _State) -> None:
        requirement = self._constrain(requirement)
        state.queue.append((requirement, parent))
        self.reporter.adding_requirement(requirement, parent)

    def _check_extras(self, candidate: Candidate, extras: Iterable[str]) -> None:
        missing = sorted(set(extras) - candidate.declared_extras)
        if missing:
            warnings.warn(ExtrasWarning(candidate.name, missing), stacklevel=2)

    def _get_dependencies(self, candidate: Candidate, extras: frozenset[str]) -> list[Requirement]:
        """The dependencies of the candidate that apply to the environment, with the given extras."""
        version = candidate.version
        if candidate.reference is not None:
            version = candidate.reference.as_url()
        cached = self.dependency_cache.get(candidate.name, version, extras)
        if cached is not None:
            return cached
        result: list[Requirement] = []
        for line in candidate.dependencies_for(extras):
            try:
                dep = parse_requirement(line)
            except RequirementError as e:
                logger.warning("Ignoring invalid dependency %r of %s: %s", line, candidate, e)
                continue
            if not evaluate(dep.marker, self.environment, extras):
                logger.debug("Dependency %s of %s doesn't apply to %s", line, candidate, self.environment)
                continue
            if dep.key == candidate.key and not dep.extras:
                continue
            result.append(dep)
        self.dependency_cache.set(candidate.name, version, result, extras)
        return result


@dataclasses.dataclass
class _State:
    mapping: ResolvedSet
    queue: Deque[QueueItem] = dataclasses.field(default_factory=collections.deque)
    expanded_extras: dict[str, set[str]] = dataclasses.field(default_factory=dict)
    prefetch_errors: dict[str, Exception] = dataclasses.field(default_factory=dict)
