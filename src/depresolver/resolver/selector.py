from __future__ import annotations

import email.parser
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING, Mapping

from packaging.specifiers import InvalidSpecifier, SpecifierSet

from depresolver.exceptions import CandidateNotFound
from depresolver.models.candidates import Candidate, Origin
from depresolver.models.setup import Setup
from depresolver.models.specifiers import contains_version, filter_versions
from depresolver.resolver.reporters import BaseReporter
from depresolver.termui import logger

if TYPE_CHECKING:
    from depresolver.installers import Installer
    from depresolver.models.direct_url import DirectReference
    from depresolver.models.environment import EnvironmentContext
    from depresolver.models.repositories import PyPIRepository, ReleaseInfo
    from depresolver.models.requirements import Requirement

STRATEGIES = ("reuse", "all")


def _read_wheel_metadata(path: Path) -> tuple[list[str], str, str]:
    """Return the dependencies, requires-python and summary from a wheel's METADATA."""
    with zipfile.ZipFile(path) as zf:
        name = next((n for n in zf.namelist() if n.count("/") == 1 and n.endswith(".dist-info/METADATA")), None)
        if name is None:
            return [], "", ""
        text = zf.read(name).decode("utf-8", errors="replace")
    metadata = email.parser.HeaderParser().parsestr(text)
    return (
        metadata.get_all("Requires-Dist") or [],
        metadata.get("Requires-Python") or "",
        metadata.get("Summary") or "",
    )


class CandidateSelector:
    """Pick a candidate for a requirement.

    A candidate already installed is reused when it satisfies the requirement
    and comes from the same source, without touching the network. Direct
    references are read locally. Named requirements are looked up on the index.
    """

    def __init__(
        self,
        repository: PyPIRepository,
        environment: EnvironmentContext,
        *,
        installer: Installer | None = None,
        strategy: str = "reuse",
        allow_prereleases: bool | None = None,
        reporter: BaseReporter | None = None,
    ) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown update strategy {strategy!r}, expected one of {STRATEGIES}")
        self.repository = repository
        self.environment = environment
        self.installer = installer
        self.strategy = strategy
        self.allow_prereleases = allow_prereleases
        self.reporter = reporter or BaseReporter()

    def find_reusable(self, requirement: Requirement, already_installed: Mapping[str, Candidate]) -> Candidate | None:
        candidate = already_installed.get(requirement.key)
        if candidate is None:
            return None
        if not contains_version(requirement.specifier, candidate.version):
            logger.debug("Installed %s doesn't satisfy %s", candidate, requirement.as_line())
            return None
        if not candidate.same_origin(requirement.reference):
            logger.debug("Installed %s comes from another source than %s", candidate, requirement.as_line())
            return None
        return candidate

    async def select(
        self, requirement: Requirement, already_installed: Mapping[str, Candidate] | None = None
    ) -> Candidate:
        """Return the candidate to use for the requirement.

        :raises CandidateNotFound: if no candidate satisfies the requirement.
        """
        if already_installed:
            reusable = self.find_reusable(requirement, already_installed)
            if reusable is not None:
                self.reporter.reusing(reusable)
                return reusable
        if requirement.reference is not None:
            return self._materialize(requirement, requirement.reference)
        return await self._select_from_index(requirement)

    def _python_compatible(self, requires_python: str) -> bool:
        if not requires_python:
            return True
        try:
            spec = SpecifierSet(requires_python)
        except InvalidSpecifier:
            logger.debug("Ignoring invalid requires-python %r", requires_python)
            return True
        return spec.contains(self.environment.python_full_version, prereleases=True)

    def _applicable_versions(self, requirement: Requirement, releases: Mapping[str, ReleaseInfo]) -> list[str]:
        versions = []
        for version, release in releases.items():
            if release.yanked and not requirement.is_pinned:
                self.reporter.rejecting_candidate(f"{requirement.name}@{version}", "it is yanked")
                continue
            if not self._python_compatible(release.requires_python):
                self.reporter.rejecting_candidate(
                    f"{requirement.name}@{version}",
                    f"it requires Python {release.requires_python}",
                )
                continue
            versions.append(version)
        return filter_versions(requirement.specifier, versions, self.allow_prereleases)

    async def find_matches(self, requirement: Requirement) -> list[str]:
        """The versions on the index matching the requirement, most preferred first."""
        project = await self.repository.get_project(requirement.name)
        matches = self._applicable_versions(requirement, project.releases)
        if self.strategy == "reuse" and self.installer is not None:
            installed = next((v for v in matches if self.installer.is_already_installed(requirement.name, v)), None)
            if installed is not None:
                matches.remove(installed)
                matches.insert(0, installed)
        return matches

    async def _select_from_index(self, requirement: Requirement) -> Candidate:
        matches = await self.find_matches(requirement)
        if not matches:
            raise CandidateNotFound(f"No version of {requirement.name} satisfies {requirement.specifier or '*'}")
        return await self.repository.get_candidate(requirement.name, matches[0])

    def _materialize(self, requirement: Requirement, reference: DirectReference) -> Candidate:
        path = reference.local_path
        if path is None:
            # Remote sources are not downloaded, only the URL tells about them
            return Candidate(
                name=requirement.name,
                version=reference.guess_version(),
                origin=Origin.URL,
                reference=reference,
            )
        if not path.exists():
            raise CandidateNotFound(f"The local path {path} of {requirement.name} doesn't exist")
        if path.is_dir():
            setup = Setup.from_directory(path)
            if setup.name is None and setup.version is None:
                raise CandidateNotFound(f"No project metadata found in {path}")
            candidate = Candidate(
                name=requirement.name,
                version=setup.version,
                summary=setup.summary or "",
                dependencies=list(setup.install_requires),
                extras=dict(setup.extras_require),
                origin=Origin.LOCAL,
                reference=reference,
                requires_python=setup.python_requires or "",
            )
        elif path.suffix == ".whl":
            dependencies, requires_python, summary = _read_wheel_metadata(path)
            candidate = Candidate(
                name=requirement.name,
                version=reference.guess_version(),
                summary=summary,
                dependencies=dependencies,
                origin=Origin.LOCAL,
                reference=reference,
                requires_python=requires_python,
            )
        else:
            candidate = Candidate(
                name=requirement.name,
                version=reference.guess_version(),
                origin=Origin.LOCAL,
                reference=reference,
            )
        if not self._python_compatible(candidate.requires_python):
            logger.warning(
                "%s requires Python %s, which the target doesn't satisfy", candidate, candidate.requires_python
            )
        return candidate
