from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich import get_console
from rich.live import Live
from rich.progress import Progress, SpinnerColumn, TimeElapsedColumn
from rich.theme import Theme

from depresolver.termui import DEFAULT_THEME, SPINNER, UI, Verbosity, logger

if TYPE_CHECKING:
    from rich.console import Console, ConsoleOptions, RenderResult

    from depresolver.models.candidates import Candidate
    from depresolver.models.requirements import Requirement
    from depresolver.resolver.base import Resolution, ResolutionFailure, ResolvedSet


def log_title(title: str) -> None:
    logger.info("=" * 8 + " " + title + " " + "=" * 8)


class BaseReporter:
    """Receive the progress of a resolution run. All hooks do nothing."""

    def starting(self, requirements: list[Requirement]) -> None:
        """Called before the resolution actually starts."""

    def starting_round(self, index: int) -> None:
        """Called at the start of each round, with a zero-based index."""

    def ending_round(self, index: int, mapping: ResolvedSet, pending: int) -> None:
        """Called when a round is done and another one follows."""

    def adding_requirement(self, requirement: Requirement, parent: Candidate | None) -> None:
        """Called when a requirement is queued, ``parent`` is None for the top-level ones."""

    def pinning(self, candidate: Candidate) -> None:
        """Called when adding a candidate to the resolved set."""

    def reusing(self, candidate: Candidate) -> None:
        """Called when an already installed candidate is kept."""

    def rejecting_candidate(self, candidate: Candidate | str, reason: str) -> None:
        """Called when a candidate version is skipped."""

    def resolving_conflicts(self, failure: ResolutionFailure) -> None:
        """Called when the resolution fails."""

    def ending(self, resolution: Resolution) -> None:
        """Called before the resolution ends successfully or not."""


class LockReporter(BaseReporter):
    def starting(self, requirements: list[Requirement]) -> None:
        log_title("Start resolving requirements")
        for req in requirements:
            logger.info("  %s", req.as_line())

    def starting_round(self, index: int) -> None:
        log_title(f"Starting round {index}")

    def adding_requirement(self, requirement: Requirement, parent: Candidate | None) -> None:
        parent_line = f" (from {parent.name} {parent.version})" if parent else ""
        logger.info("  Adding requirement %s%s", requirement.as_line(), parent_line)

    def pinning(self, candidate: Candidate) -> None:
        logger.info("Adding new pin: %s %s", candidate.name, candidate.version)

    def reusing(self, candidate: Candidate) -> None:
        logger.info("Reusing installed %s %s", candidate.name, candidate.version)

    def rejecting_candidate(self, candidate: Candidate | str, reason: str) -> None:
        logger.info("Candidate rejected: %s because %s", candidate, reason)

    def resolving_conflicts(self, failure: ResolutionFailure) -> None:
        logger.info("Resolution failed: %s", failure.describe())

    def ending(self, resolution: Resolution) -> None:
        log_title("Resolution Result")
        mapping = resolution.mapping
        if not resolution.ok or not mapping:
            return
        column_width = max(map(len, mapping.keys()))
        for k, can in mapping.items():
            can_info = can.reference.as_url() if can.reference is not None else can.version
            logger.info("  %s %s", k.rjust(column_width), can_info)


class RichLockReporter(LockReporter):
    """Show a spinner with the progress while logging like :class:`LockReporter`."""

    def __init__(self, ui: UI) -> None:
        self.ui = ui
        self.console = get_console()
        self._spinner = Progress(
            SpinnerColumn(SPINNER, style="primary"),
            TimeElapsedColumn(),
            "[bold]{task.description}",
            "{task.fields[info]}",
            console=self.console,
        )
        self._spinner_task = self._spinner.add_task("Resolving dependencies", info="", total=1)
        self.live = Live(self, console=self.console)

    def update(self, description: str | None = None, info: str | None = None, completed: float | None = None) -> None:
        self._spinner.update(self._spinner_task, description=description, info=info, completed=completed)
        self.live.refresh()

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:  # pragma: no cover
        yield self._spinner

    def start(self) -> None:
        """Start the progress display."""
        self.console.push_theme(Theme(DEFAULT_THEME))
        if self.ui.verbosity < Verbosity.DETAIL:
            self.live.start(refresh=True)

    def stop(self) -> None:
        """Stop the progress display."""
        self.live.stop()
        self.console.pop_theme()
        if not self.console.is_interactive:  # pragma: no cover
            self.console.print()

    def __enter__(self) -> RichLockReporter:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def ending_round(self, index: int, mapping: ResolvedSet, pending: int) -> None:
        self.update(info=f"[info]{len(mapping)}[/] resolved, [info]{pending}[/] to resolve")

    def ending(self, resolution: Resolution) -> None:
        super().ending(resolution)
        self.update(description="Resolution finished" if resolution.ok else "Resolution failed", completed=1)
