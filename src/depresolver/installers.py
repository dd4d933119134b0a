from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Protocol

from depresolver import termui
from depresolver.exceptions import InstallationError
from depresolver.resolver.graph import install_order

if TYPE_CHECKING:
    from depresolver.models.candidates import Candidate
    from depresolver.models.environment import EnvironmentContext
    from depresolver.resolver.base import ResolvedSet


class Installer(Protocol):
    """What the engine needs from the component that places packages on disk."""

    def install_artifact(self, candidate: Candidate) -> bool:
        """Install the candidate, return whether it succeeded."""
        ...

    def is_already_installed(self, name: str, version: str | None) -> bool: ...


@dataclasses.dataclass
class SyncSummary:
    installed: list[Candidate] = dataclasses.field(default_factory=list)
    skipped: list[Candidate] = dataclasses.field(default_factory=list)
    failed: list[Candidate] = dataclasses.field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class Synchronizer:
    """Hand a resolved set to the installer, dependencies first.

    Packages whose exact version is already installed are skipped. An
    installation failure doesn't stop the others unless ``fail_fast`` is set,
    but :class:`InstallationError` is raised at the end.
    """

    def __init__(
        self,
        candidates: ResolvedSet,
        installer: Installer,
        *,
        environment: EnvironmentContext | None = None,
        ui: termui.UI | None = None,
        fail_fast: bool = False,
    ) -> None:
        self.candidates = candidates
        self.installer = installer
        self.environment = environment
        self.ui = ui or termui.UI()
        self.fail_fast = fail_fast

    def compare_with_installed(self) -> tuple[list[str], list[str]]:
        """Split the keys into those to install and those already installed, in install order."""
        to_install: list[str] = []
        to_skip: list[str] = []
        for key in install_order(self.candidates, environment=self.environment):
            can = self.candidates[key]
            # A direct reference may point to changed code, always reinstall it
            if can.reference is None and self.installer.is_already_installed(can.name, can.version):
                to_skip.append(key)
            else:
                to_install.append(key)
        return to_install, to_skip

    def install_candidate(self, key: str) -> bool:
        can = self.candidates[key]
        termui.logger.info("Installing %s@%s...", key, can.version)
        try:
            success = self.installer.install_artifact(can)
        except Exception as e:
            termui.logger.exception("Error occurs installing %s: %s", key, e)
            success = False
        if success:
            self.ui.echo(f"  [success]{termui.Emoji.SUCC}[/] Install {can.format()} successful", err=True)
        else:
            self.ui.echo(f"  [error]{termui.Emoji.FAIL}[/] Install {can.format()} failed", err=True)
        return success

    def synchronize(self) -> SyncSummary:
        """Install the candidates that are not installed yet."""
        to_install, to_skip = self.compare_with_installed()
        summary = SyncSummary(skipped=[self.candidates[key] for key in to_skip])
        for key in to_install:
            if self.install_candidate(key):
                summary.installed.append(self.candidates[key])
                continue
            summary.failed.append(self.candidates[key])
            if self.fail_fast:
                break
        if summary.failed:
            names = ", ".join(can.name for can in summary.failed)
            raise InstallationError(f"Some packages failed to install: {names}", summary)
        termui.logger.info("Synchronization complete.")
        return summary
