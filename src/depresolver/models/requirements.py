from __future__ import annotations

import dataclasses
import os
import re
from typing import Iterable

from packaging.requirements import InvalidRequirement
from packaging.requirements import Requirement as PackageRequirement
from packaging.specifiers import SpecifierSet

from depresolver.exceptions import RequirementError
from depresolver.models.direct_url import VCS_PREFIX_RE, DirectReference
from depresolver.models.markers import Marker, get_marker
from depresolver.models.setup import Setup
from depresolver.models.specifiers import fix_legacy_specifier
from depresolver.utils import normalize_name

_path_extras_re = re.compile(r"^(?P<path>.+?)(?:\[(?P<extras>[^\[\]]+)\])?$")
_url_marker_sep = re.compile(r"\s+;")
ALLOW_ANY = SpecifierSet()


def strip_extras(line: str) -> tuple[str, frozenset[str]]:
    match = _path_extras_re.match(line)
    assert match is not None
    return match.group("path"), _parse_extras(match.group("extras"))


def _parse_extras(extras: str | None) -> frozenset[str]:
    if not extras:
        return frozenset()
    return frozenset(normalize_name(e.strip()) for e in extras.split(",") if e.strip())


@dataclasses.dataclass(frozen=True)
class Requirement:
    """A request for a package: a name with a version constraint, optional extras,
    an optional environment marker and, for packages that don't come from the
    index, the direct reference to fetch them from.
    """

    name: str
    specifier: SpecifierSet = ALLOW_ANY
    extras: frozenset[str] = frozenset()
    marker: Marker | None = None
    reference: DirectReference | None = None

    @property
    def key(self) -> str:
        return normalize_name(self.name)

    @property
    def project_name(self) -> str:
        return self.name

    @property
    def is_named(self) -> bool:
        return self.reference is None

    @property
    def is_vcs(self) -> bool:
        return self.reference is not None and self.reference.is_vcs

    @property
    def editable(self) -> bool:
        return self.reference is not None and self.reference.editable

    @property
    def is_pinned(self) -> bool:
        if self.reference is not None:
            return True
        if len(self.specifier) != 1:
            return False
        spec = next(iter(self.specifier))
        return spec.operator == "===" or spec.operator == "==" and "*" not in spec.version

    def identify(self) -> str:
        """The key with the requested extras, e.g. ``requests[socks]``."""
        if not self.extras:
            return self.key
        return f"{self.key}[{','.join(sorted(self.extras))}]"

    def with_extras(self, extras: Iterable[str]) -> Requirement:
        return dataclasses.replace(self, extras=frozenset(normalize_name(e) for e in extras))

    def as_line(self) -> str:
        extras = f"[{','.join(sorted(self.extras))}]" if self.extras else ""
        marker = f"; {self.marker}" if self.marker is not None else ""
        if self.reference is not None:
            editable = "-e " if self.editable else ""
            # A space is required before the marker of a URL requirement
            return f"{editable}{self.name}{extras} @ {self.reference.as_url()}{' ' + marker if marker else ''}"
        return f"{self.name}{extras}{self.specifier}{marker}"

    def __str__(self) -> str:
        return self.as_line()


def _split_marker(line: str, is_url: bool) -> tuple[str, Marker | None]:
    """Separate a trailing ``; marker`` from the requirement line.

    URLs may contain semicolons, so for URL requirements the separator must be
    preceded by whitespace.
    """
    if is_url:
        parts = _url_marker_sep.split(line, maxsplit=1)
    else:
        parts = line.split(";", 1)
    if len(parts) == 1:
        return line.strip(), None
    return parts[0].strip(), get_marker(parts[1].strip())


def _looks_like_reference(line: str) -> bool:
    head = line.split(";", 1)[0]
    if VCS_PREFIX_RE.match(head) or "://" in head or head.startswith(("-e ", "file:", ".", "/", "~", "\\")):
        return True
    return os.sep in head or (os.altsep is not None and os.altsep in head)


def parse_as_pkg_requirement(line: str) -> PackageRequirement:
    """Parse a requirement line as packaging.requirement.Requirement"""
    try:
        return PackageRequirement(line)
    except InvalidRequirement:
        return PackageRequirement(fix_legacy_specifier(line))


def _from_pkg_requirement(pkg_req: PackageRequirement, marker: Marker | None = None) -> Requirement:
    if pkg_req.marker is not None:
        marker = get_marker(str(pkg_req.marker))
    return Requirement(
        name=pkg_req.name,
        specifier=pkg_req.specifier,
        extras=frozenset(normalize_name(e) for e in pkg_req.extras),
        marker=marker,
        reference=DirectReference.parse(pkg_req.url) if pkg_req.url else None,
    )


def _parse_with_marker(line: str) -> Requirement:
    """Parse the requirement part with packaging and the marker with our own parser,
    which knows more variables, such as ``platform``.
    """
    head, _, _ = line.partition(";")
    text, marker = _split_marker(line, is_url="@" in head)
    if marker is None:
        raise InvalidRequirement(f"{line}: Invalid requirement")
    return _from_pkg_requirement(parse_as_pkg_requirement(text), marker)


def _reference_name(reference: DirectReference, line: str) -> str:
    name = reference.guess_name() if not reference.is_local or reference.egg else None
    if name is None and (path := reference.local_path) is not None:
        if path.is_dir():
            name = Setup.from_directory(path).name
        else:
            name = reference.guess_name()
    if not name:
        raise RequirementError(f"{line}: Can't determine the project name, add '#egg=<name>' to the URL")
    return name


def _parse_reference(line: str) -> Requirement:
    """Parse a bare VCS URL, download URL or local path, with optional extras and marker."""
    url, marker = _split_marker(line, is_url=True)
    extras: frozenset[str] = frozenset()
    if not VCS_PREFIX_RE.match(url) and "://" not in url:
        url, extras = strip_extras(url)
    reference = DirectReference.parse(url)
    if reference.egg and "[" in reference.egg:
        extras |= strip_extras(reference.egg)[1]
    return Requirement(
        name=_reference_name(reference, line),
        extras=extras,
        marker=marker,
        reference=reference,
    )


def parse_requirement(line: str, editable: bool = False) -> Requirement:
    """Parse a requirement line.

    Accepted forms are PEP 508 lines (``name[extras]>=1.0; marker``), URL
    requirements (``name @ url``), bare VCS URLs, download URLs and local paths,
    the latter optionally with an ``#egg=name`` fragment.
    """
    line = line.strip()
    if not line:
        raise RequirementError("Empty requirement")

    try:
        req = _from_pkg_requirement(parse_as_pkg_requirement(line))
    except InvalidRequirement as e:
        try:
            req = _parse_with_marker(line)
        except InvalidRequirement:
            if not _looks_like_reference(line):
                raise RequirementError(f"{line}: {e}") from None
            req = _parse_reference(line)

    if editable:
        reference = req.reference
        path = reference.local_path if reference is not None else None
        if reference is None or not (reference.is_vcs or path is not None and path.is_dir()):
            raise RequirementError(f"{line}: Editable requirement is only supported for VCS link or local directory.")
        req = dataclasses.replace(req, reference=dataclasses.replace(reference, editable=True))
    return req


def parse_line(line: str) -> Requirement:
    if line.startswith(("-e ", "--editable ")):
        return parse_requirement(line.split(None, 1)[1].strip(), editable=True)
    return parse_requirement(line)
