from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from depresolver.resolver.base import ResolutionFailure


class DepResolverException(Exception):
    pass


class DepResolverUsageError(DepResolverException):
    pass


class RequirementError(DepResolverUsageError, ValueError):
    pass


class NoConfigError(DepResolverUsageError, KeyError):
    def __str__(self) -> str:
        return f"No such config key: {self.args[0]!r}"


class CandidateNotFound(DepResolverException):
    pass


class PackageNotFoundError(CandidateNotFound):
    """The index has no project with the given name."""

    def __init__(self, name: str, url: str) -> None:
        self.name = name
        self.url = url
        super().__init__(f"Package [req]{name}[/] is not found on the index ({url}).")


class FetchError(DepResolverException):
    """Raised when a metadata request still fails after all retry attempts."""

    def __init__(self, key: str, last_cause: BaseException | None, attempts: int) -> None:
        self.key = key
        self.last_cause = last_cause
        self.attempts = attempts
        super().__init__(f"Failed to fetch {key} after {attempts} attempt(s): {last_cause}")


class InvalidMetadata(DepResolverException):
    pass


class CycleDetectedError(DepResolverException):
    def __init__(self, path: list[str]) -> None:
        self.path = path
        super().__init__(f"Dependency cycle detected: {' -> '.join(path)}")


class ResolutionImpossible(DepResolverException):
    def __init__(self, failure: ResolutionFailure) -> None:
        self.failure = failure
        super().__init__(failure.describe())


class InstallationError(DepResolverException):
    def __init__(self, message: str, summary: Any = None) -> None:
        super().__init__(message)
        self.summary = summary


class DepResolverWarning(Warning):
    pass


class ExtrasWarning(DepResolverWarning):
    def __init__(self, project_name: str, extras: list[str]) -> None:
        super().__init__(f"Extras not found for {project_name}: [{','.join(extras)}]")
        self.extras = tuple(extras)
