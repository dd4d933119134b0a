from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

from depresolver.exceptions import InvalidMetadata
from depresolver.models.candidates import Candidate, Origin
from depresolver.termui import logger
from depresolver.utils import normalize_name, safe_version

if TYPE_CHECKING:
    from depresolver.models.fetcher import ConcurrentFetcher
    from depresolver.models.session import IndexClient


@dataclasses.dataclass(frozen=True)
class ReleaseInfo:
    version: str
    requires_python: str = ""
    yanked: bool = False


@dataclasses.dataclass(frozen=True)
class ProjectInfo:
    """The list of releases of a project on the index."""

    name: str
    summary: str
    releases: dict[str, ReleaseInfo]

    @property
    def versions(self) -> list[str]:
        return list(self.releases)


def _release_info(version: str, files: list[dict[str, Any]]) -> ReleaseInfo:
    requires_python = next((f["requires_python"] for f in files if f.get("requires_python")), "")
    yanked = bool(files) and all(f.get("yanked", False) for f in files)
    return ReleaseInfo(version, requires_python or "", yanked)


class PyPIRepository:
    """Get project and release metadata from the JSON API of an index."""

    def __init__(self, client: IndexClient, fetcher: ConcurrentFetcher) -> None:
        self.client = client
        self.fetcher = fetcher
        self._projects: dict[str, ProjectInfo] = {}

    async def get_project(self, name: str) -> ProjectInfo:
        key = normalize_name(name)
        if key not in self._projects:
            self._projects[key] = await self._fetch_project(name)
        return self._projects[key]

    def clear(self) -> None:
        """Forget the project documents read so far, the next run reads them again."""
        self._projects.clear()

    async def _fetch_project(self, name: str) -> ProjectInfo:
        result = await self.fetcher.fetch(self.client.metadata_url(name))
        data = result.json()
        try:
            info = data["info"]
            releases = data.get("releases") or {}
        except (KeyError, TypeError) as e:
            raise InvalidMetadata(f"Malformed project document for {name}: missing {e}") from e
        parsed: dict[str, ReleaseInfo] = {}
        for version, files in releases.items():
            if safe_version(version) is None:
                logger.debug("Skipping invalid version %s of %s", version, name)
                continue
            parsed[version] = _release_info(version, files or [])
        if not parsed and info.get("version"):
            # An index that only reports the latest release
            parsed[info["version"]] = ReleaseInfo(info["version"], info.get("requires_python") or "")
        return ProjectInfo(name=info.get("name") or name, summary=info.get("summary") or "", releases=parsed)

    async def get_candidate(self, name: str, version: str) -> Candidate:
        """Fetch the metadata of one release."""
        result = await self.fetcher.fetch(self.client.release_url(name, version))
        data = result.json()
        try:
            info = data["info"]
        except (KeyError, TypeError) as e:
            raise InvalidMetadata(f"Malformed release document for {name} {version}: missing {e}") from e
        requirement_lines = info.get("requires_dist")
        if requirement_lines is None:
            requirement_lines = info.get("requires") or []
        return Candidate(
            name=info.get("name") or name,
            version=version,
            summary=info.get("summary") or "",
            dependencies=list(requirement_lines),
            extras={normalize_name(e): [] for e in info.get("provides_extra") or []},
            origin=Origin.INDEX,
            requires_python=info.get("requires_python") or "",
        )

