"""
Some reusable fixtures for `pytest`.

To enable them in your test, add `depresolver.pytest` as a plugin.
You can do so in your root `conftest.py`:

```python title="conftest.py"
pytest_plugins = [
    ...
    "depresolver.pytest",
    ...
]
```

The fixtures serve an in-memory package index over the PyPI JSON API, so that
resolutions run against known data without touching the network.
"""

from __future__ import annotations

import asyncio
import collections
import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator, Iterable, Mapping, MutableMapping

import httpx
import pytest

from depresolver.config import Config
from depresolver.models.caches import MetadataCache
from depresolver.models.environment import EnvironmentContext
from depresolver.models.fetcher import ConcurrentFetcher
from depresolver.models.repositories import PyPIRepository
from depresolver.models.requirements import Requirement, parse_requirement
from depresolver.models.session import IndexClient
from depresolver.resolver.core import Resolver
from depresolver.resolver.selector import CandidateSelector
from depresolver.utils import normalize_name, parse_version

if TYPE_CHECKING:
    from typing import Protocol

    from depresolver.installers import Installer
    from depresolver.models.candidates import Candidate
    from depresolver.resolver.base import Resolution
    from depresolver.resolver.reporters import BaseReporter

    class ResolveFunc(Protocol):
        def __call__(
            self,
            requirements: Iterable[str | Requirement],
            *,
            environment: EnvironmentContext | None = None,
            already_installed: Mapping[str, Candidate] | None = None,
            strategy: str = "reuse",
            allow_prereleases: bool | None = None,
            strict_cycles: bool = False,
            installer: Installer | None = None,
            reporter: BaseReporter | None = None,
        ) -> Resolution: ...


TEST_INDEX_URL = "https://index.example.org/pypi"


class RepositoryData:
    """The projects of a fake index, as plain data."""

    def __init__(self) -> None:
        self.pypi_data: dict[str, dict[str, dict[str, Any]]] = {}
        self.names: dict[str, str] = {}

    def add_candidate(
        self,
        name: str,
        version: str,
        requires_python: str = "",
        summary: str = "",
        yanked: bool = False,
    ) -> None:
        key = normalize_name(name)
        self.names.setdefault(key, name)
        pypi_data = self.pypi_data.setdefault(key, {}).setdefault(version, {})
        pypi_data.update(requires_python=requires_python, summary=summary, yanked=yanked)

    def add_dependencies(
        self,
        name: str,
        version: str,
        requirements: list[str],
        extras: Mapping[str, list[str]] | None = None,
    ) -> None:
        """Add dependencies to a release, the dependencies of ``extras`` get an ``extra`` marker."""
        pypi_data = self.pypi_data[normalize_name(name)][version]
        dependencies = pypi_data.setdefault("dependencies", [])
        dependencies.extend(requirements)
        for extra, lines in (extras or {}).items():
            pypi_data.setdefault("provides_extra", []).append(extra)
            for line in lines:
                requirement, sep, marker = line.partition(";")
                extra_marker = f'extra == "{extra}"'
                if sep:
                    extra_marker = f"({marker.strip()}) and {extra_marker}"
                dependencies.append(f"{requirement.strip()}; {extra_marker}")

    def project_document(self, name: str) -> dict[str, Any] | None:
        key = normalize_name(name)
        if key not in self.pypi_data:
            return None
        releases = self.pypi_data[key]
        latest = max(releases, key=parse_version) if releases else ""
        return {
            "info": {
                "name": self.names[key],
                "version": latest,
                "summary": releases[latest].get("summary", "") if latest else "",
            },
            "releases": {
                version: [
                    {
                        "filename": f"{key.replace('-', '_')}-{version}-py3-none-any.whl",
                        "requires_python": data.get("requires_python") or None,
                        "yanked": data.get("yanked", False),
                    }
                ]
                for version, data in releases.items()
            },
        }

    def release_document(self, name: str, version: str) -> dict[str, Any] | None:
        key = normalize_name(name)
        data = self.pypi_data.get(key, {}).get(version)
        if data is None:
            return None
        return {
            "info": {
                "name": self.names[key],
                "version": version,
                "summary": data.get("summary", ""),
                "requires_python": data.get("requires_python") or None,
                "requires_dist": list(data.get("dependencies", [])) or None,
                "provides_extra": list(data.get("provides_extra", [])) or None,
            }
        }


class LocalIndexTransport(httpx.AsyncBaseTransport):
    """
    An HTTPX transport serving the PyPI JSON API from a :class:`RepositoryData`.

    Requests are counted per path. Failures can be queued for a path with
    :meth:`fail`, they are consumed one per request before the real document
    is served.
    """

    def __init__(self, repository: RepositoryData, index_url: str = TEST_INDEX_URL, delay: float = 0.0) -> None:
        super().__init__()
        self.repository = repository
        self.index_path = httpx.URL(index_url).path.rstrip("/")
        self.delay = delay
        self.requests: collections.Counter[str] = collections.Counter()
        self.failures: dict[str, collections.deque[int | Exception]] = {}
        self.active = 0
        self.max_active = 0

    @property
    def request_count(self) -> int:
        return sum(self.requests.values())

    def path_for(self, name: str, version: str | None = None) -> str:
        if version is None:
            return f"{self.index_path}/{normalize_name(name)}/json"
        return f"{self.index_path}/{normalize_name(name)}/{version}/json"

    def fail(self, name: str, *errors: int | Exception, version: str | None = None) -> None:
        """Make the next requests for the project (or release) fail with the given
        status codes or exceptions, in order.
        """
        self.failures.setdefault(self.path_for(name, version), collections.deque()).extend(errors)

    def _document(self, path: str) -> dict[str, Any] | None:
        parts = path[len(self.index_path) :].strip("/").split("/")
        if len(parts) == 2 and parts[1] == "json":
            return self.repository.project_document(parts[0])
        if len(parts) == 3 and parts[2] == "json":
            return self.repository.release_document(parts[0], parts[1])
        return None

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests[path] += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            pending = self.failures.get(path)
            if pending:
                error = pending.popleft()
                if isinstance(error, Exception):
                    raise error
                return httpx.Response(error, request=request)
            document = self._document(path)
        finally:
            self.active -= 1
        if document is None:
            return httpx.Response(404, request=request)
        return httpx.Response(
            200,
            headers={"Content-Type": "application/json"},
            content=json.dumps(document).encode("utf-8"),
            request=request,
        )


@pytest.fixture(autouse=True)
def temp_env() -> Generator[MutableMapping[str, str]]:
    old_env = os.environ.copy()
    try:
        yield os.environ
    finally:
        os.environ.clear()
        os.environ.update(old_env)


@pytest.fixture
def repository_data() -> RepositoryData:
    return RepositoryData()


@pytest.fixture
def index_transport(repository_data: RepositoryData) -> LocalIndexTransport:
    return LocalIndexTransport(repository_data)


@pytest.fixture
def environment() -> EnvironmentContext:
    """A CPython 3.11 on Linux target."""
    return EnvironmentContext(
        python_version="3.11",
        python_full_version="3.11.4",
        sys_platform="linux",
        platform_machine="x86_64",
    )


@pytest.fixture
def metadata_cache(tmp_path: Path) -> MetadataCache:
    return MetadataCache(tmp_path / "cache" / "metadata")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        index_url=TEST_INDEX_URL,
        cache_dir=str(tmp_path / "cache"),
        log_dir=str(tmp_path / "logs"),
        retry__backoff_base=0,
    )


@pytest.fixture
def index_client(index_transport: LocalIndexTransport) -> IndexClient:
    return IndexClient(TEST_INDEX_URL, transport=index_transport)


@pytest.fixture
def fetcher(index_client: IndexClient, metadata_cache: MetadataCache) -> ConcurrentFetcher:
    return ConcurrentFetcher(index_client, metadata_cache, backoff_base=0)


@pytest.fixture
def resolve(
    index_client: IndexClient, fetcher: ConcurrentFetcher, environment: EnvironmentContext
) -> ResolveFunc:
    """Return a function resolving requirement lines against the fake index.

    Calls share the fetcher, hence the metadata cache, like consecutive runs of
    the same process.
    """

    def resolve_func(
        requirements: Iterable[str | Requirement],
        *,
        environment: EnvironmentContext = environment,
        already_installed: Mapping[str, Candidate] | None = None,
        strategy: str = "reuse",
        allow_prereleases: bool | None = None,
        strict_cycles: bool = False,
        constraints: Mapping[str, str] | None = None,
        installer: Installer | None = None,
        reporter: BaseReporter | None = None,
    ) -> Resolution:
        selector = CandidateSelector(
            PyPIRepository(index_client, fetcher),
            environment,
            installer=installer,
            strategy=strategy,
            allow_prereleases=allow_prereleases,
            reporter=reporter,
        )
        resolver = Resolver(
            selector,
            environment,
            already_installed=already_installed or {},
            strict_cycles=strict_cycles,
            constraints=constraints or {},
        )
        if reporter is not None:
            resolver.reporter = reporter
        reqs = [parse_requirement(r) if isinstance(r, str) else r for r in requirements]
        return resolver.resolve(reqs)

    return resolve_func
