from __future__ import annotations

import dataclasses
import enum
import re
from typing import Any

from depresolver.models.direct_url import DirectReference
from depresolver.utils import normalize_name

_extra_marker_re = re.compile(r"""\bextra\s*==\s*['"]([^'"]+)['"]""")


class Origin(str, enum.Enum):
    """Where a candidate comes from."""

    INDEX = "index"
    URL = "url"
    LOCAL = "local"

    @classmethod
    def of(cls, reference: DirectReference | None) -> Origin:
        if reference is None:
            return cls.INDEX
        return cls.LOCAL if reference.is_local else cls.URL


@dataclasses.dataclass(eq=False)
class Candidate:
    """A concrete package version that can be installed.

    A candidate comes from the index, or from the direct reference of the
    requirement itself (for file, URL or VCS requirements). The dependencies are
    the raw requirement strings declared by the package, markers included.
    """

    name: str
    version: str | None
    summary: str = ""
    dependencies: list[str] = dataclasses.field(default_factory=list)
    extras: dict[str, list[str]] = dataclasses.field(default_factory=dict)
    origin: Origin = Origin.INDEX
    reference: DirectReference | None = None
    requires_python: str = ""

    def __post_init__(self) -> None:
        if self.reference is not None and self.origin == Origin.INDEX:
            self.origin = Origin.of(self.reference)

    @property
    def key(self) -> str:
        return normalize_name(self.name)

    @property
    def editable(self) -> bool:
        return self.reference is not None and self.reference.editable

    def same_origin(self, reference: DirectReference | None) -> bool:
        """Whether this candidate comes from the source a requirement asks for:
        both from the index, or from equal direct references.
        """
        if reference is None:
            return self.origin == Origin.INDEX
        return self.reference is not None and self.reference == reference

    @property
    def declared_extras(self) -> set[str]:
        """The extras this candidate provides, including those only named in dependency markers."""
        result = {normalize_name(k) for k in self.extras}
        for line in self.dependencies:
            result.update(normalize_name(e) for e in _extra_marker_re.findall(line))
        return result

    def dependencies_for(self, extras: frozenset[str] | set[str] = frozenset()) -> list[str]:
        """The declared dependencies plus those of the given extras."""
        result = list(self.dependencies)
        declared = {normalize_name(k): v for k, v in self.extras.items()}
        for extra in sorted(extras):
            for dep in declared.get(normalize_name(extra), []):
                if dep not in result:
                    result.append(dep)
        return result

    def as_lockfile_entry(self) -> dict[str, Any]:
        """Build a lockfile entry dictionary for the candidate."""
        result: dict[str, Any] = {
            "name": self.key,
            "version": self.version,
            "summary": self.summary,
            "origin": self.origin.value,
            "requires_python": self.requires_python,
            "dependencies": list(self.dependencies),
        }
        if self.reference is not None:
            result.update(url=self.reference.as_url(), editable=self.reference.editable)
        return {k: v for k, v in result.items() if v}

    @classmethod
    def from_lockfile_entry(cls, entry: dict[str, Any]) -> Candidate:
        reference = None
        if url := entry.get("url"):
            reference = DirectReference.parse(f"-e {url}" if entry.get("editable") else url)
        return cls(
            name=entry["name"],
            version=entry.get("version"),
            summary=entry.get("summary", ""),
            dependencies=list(entry.get("dependencies", [])),
            origin=Origin(entry.get("origin", Origin.of(reference).value)),
            reference=reference,
            requires_python=entry.get("requires_python", ""),
        )

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Candidate):
            return False
        if self.reference is None:
            return self.key == other.key and self.version == other.version and other.reference is None
        return self.key == other.key and self.reference == other.reference

    def __hash__(self) -> int:
        return hash((self.key, self.version if self.reference is None else self.reference))

    def __repr__(self) -> str:
        return f"<Candidate {self}>"

    def __str__(self) -> str:
        if self.reference is None:
            return f"{self.name}@{self.version}"
        return f"{self.name}@{self.reference.as_url()}"

    def format(self) -> str:
        """Format for output."""
        return f"[req]{self.name}[/] [warning]{self.version}[/]"
