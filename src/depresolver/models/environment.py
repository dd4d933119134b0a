from __future__ import annotations

import dataclasses
from typing import Any

from depresolver.termui import logger

_PLATFORM_ALIASES = {
    "windows": "win32",
    "win": "win32",
    "macos": "darwin",
    "osx": "darwin",
}
_PLATFORM_FACTS = {
    "win32": ("nt", "Windows"),
    "cygwin": ("posix", "CYGWIN_NT"),
    "linux": ("posix", "Linux"),
    "darwin": ("posix", "Darwin"),
    "freebsd": ("posix", "FreeBSD"),
}
_IMPLEMENTATIONS = {
    "cpython": "CPython",
    "pypy": "PyPy",
    "graalpy": "GraalVM",
    "ironpython": "IronPython",
    "jython": "Jython",
}


@dataclasses.dataclass(frozen=True)
class EnvironmentContext:
    """The attributes of the target environment that markers are evaluated against.

    Build it once per resolution run, either from the running interpreter with
    :meth:`from_host` or from explicit values. :meth:`with_overrides` returns a
    new context where the given fields win over the detected ones.
    """

    python_version: str
    python_full_version: str
    sys_platform: str
    platform_machine: str
    implementation_name: str = "cpython"
    platform_python_implementation: str = "CPython"
    implementation_version: str = ""
    os_name: str = ""
    platform_system: str = ""
    platform_release: str = ""
    platform_version: str = ""

    def __post_init__(self) -> None:
        os_name, system = _PLATFORM_FACTS.get(self.sys_platform, ("", ""))
        if not self.os_name and os_name:
            object.__setattr__(self, "os_name", os_name)
        if not self.platform_system and system:
            object.__setattr__(self, "platform_system", system)
        if not self.implementation_version:
            object.__setattr__(self, "implementation_version", self.python_full_version)

    @classmethod
    def from_host(cls) -> EnvironmentContext:
        """Detect the context of the running interpreter."""
        from packaging.markers import default_environment

        env = default_environment()
        return cls(
            python_version=env["python_version"],
            python_full_version=env["python_full_version"],
            sys_platform=env["sys_platform"],
            platform_machine=env["platform_machine"],
            implementation_name=env["implementation_name"],
            platform_python_implementation=env["platform_python_implementation"],
            implementation_version=env["implementation_version"],
            os_name=env["os_name"],
            platform_system=env["platform_system"],
            platform_release=env["platform_release"],
            platform_version=env["platform_version"],
        )

    def with_overrides(
        self,
        *,
        python_version: str | None = None,
        platform: str | None = None,
        implementation: str | None = None,
        machine: str | None = None,
    ) -> EnvironmentContext:
        """Return a copy targeting another Python version, platform, implementation or
        architecture. Fields that are derived from an overridden value are
        recomputed, host-only details (release, kernel version) are dropped.
        """
        changes: dict[str, Any] = {}
        if python_version:
            parts = python_version.split(".")
            short = ".".join(parts[:2])
            full = python_version if len(parts) >= 3 else f"{short}.0"
            changes.update(python_version=short, python_full_version=full, implementation_version=full)
        if platform:
            sys_platform = _PLATFORM_ALIASES.get(platform.lower(), platform.lower())
            os_name, system = _PLATFORM_FACTS.get(sys_platform, ("", ""))
            changes.update(
                sys_platform=sys_platform,
                os_name=os_name,
                platform_system=system,
                platform_release="",
                platform_version="",
            )
        if implementation:
            name = implementation.lower()
            changes.update(
                implementation_name=name,
                platform_python_implementation=_IMPLEMENTATIONS.get(name, implementation),
            )
        if machine:
            changes["platform_machine"] = machine
        if not changes:
            return self
        logger.debug("Overriding environment context with %s", changes)
        return dataclasses.replace(self, **changes)

    def markers(self) -> dict[str, str]:
        """Return the marker variables of this context."""
        env = dataclasses.asdict(self)
        env["platform"] = self.sys_platform
        return env

    def as_dict(self) -> dict[str, str]:
        return dataclasses.asdict(self)

    def __str__(self) -> str:
        return f"{self.implementation_name}-{self.python_full_version}-{self.sys_platform}-{self.platform_machine}"
