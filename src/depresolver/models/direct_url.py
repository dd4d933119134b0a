from __future__ import annotations

import dataclasses
import enum
import os
import re
import urllib.parse as urlparse
from pathlib import Path

from packaging.utils import InvalidSdistFilename, InvalidWheelFilename, parse_sdist_filename, parse_wheel_filename

from depresolver.exceptions import RequirementError
from depresolver.termui import logger
from depresolver.utils import (
    add_ssh_scheme_to_git_uri,
    normalize_name,
    path_to_url,
    url_to_path,
    url_without_fragments,
)

VCS_SCHEMA = ("git", "hg", "svn", "bzr")
VCS_PREFIX_RE = re.compile(rf"^(?P<vcs>{'|'.join(VCS_SCHEMA)})\+(?P<url>.+)$", flags=re.IGNORECASE)
_editable_prefix_re = re.compile(r"^(?:-e|--editable)\s+")


class ReferenceKind(str, enum.Enum):
    GIT = "git"
    HG = "hg"
    SVN = "svn"
    BZR = "bzr"
    FILE = "file"
    URL = "url"

    @property
    def is_vcs(self) -> bool:
        return self.value in VCS_SCHEMA


@dataclasses.dataclass(frozen=True)
class DirectReference:
    """A package source that is not the index: a VCS repository, a local path or a
    download URL.

    Two references are equal when they point to the same source, that is the same
    kind, canonical URL, revision and subdirectory. Whether it is installed in
    editable mode doesn't change the source.
    """

    kind: ReferenceKind
    url: str
    revision: str | None = None
    subdirectory: str | None = None
    editable: bool = dataclasses.field(default=False, compare=False)
    egg: str | None = dataclasses.field(default=None, compare=False)

    @classmethod
    def parse(cls, url: str) -> DirectReference:
        """Parse a direct URL, a VCS URL or a local path.

        A leading ``-e`` marks an editable reference, ``@<rev>`` pins a VCS revision
        and ``#subdirectory=``/``#egg=`` fragments are extracted.
        """
        line = url.strip()
        editable = False
        if (m := _editable_prefix_re.match(line)) is not None:
            editable = True
            line = line[m.end() :].strip()
        if not line:
            raise RequirementError("Empty direct reference")

        fragments: dict[str, str] = {}
        if "#" in line:
            line, _, fragment = line.partition("#")
            fragments = dict(urlparse.parse_qsl(fragment))
        subdirectory = fragments.get("subdirectory") or None
        egg = urlparse.unquote(fragments["egg"]) if "egg" in fragments else None

        if (m := VCS_PREFIX_RE.match(line)) is not None:
            vcs = m.group("vcs").lower()
            repo, revision = cls._split_revision(m.group("url"))
            return cls(ReferenceKind(vcs), f"{vcs}+{repo}", revision, subdirectory, editable, egg)

        parsed = urlparse.urlparse(line)
        scheme = parsed.scheme.lower()
        if scheme in VCS_SCHEMA:
            repo, revision = cls._split_revision(line)
            return cls(ReferenceKind(scheme), f"{scheme}+{repo}", revision, subdirectory, editable, egg)
        if scheme == "file":
            return cls(ReferenceKind.FILE, cls._canonical(line), None, subdirectory, editable, egg)
        if scheme and len(scheme) > 1:
            if scheme not in ("http", "https"):
                logger.debug("Treating URL with scheme %s as a plain download URL", scheme)
            return cls(ReferenceKind.URL, cls._canonical(line), None, subdirectory, editable, egg)
        # A local path, possibly with a Windows drive letter
        return cls(ReferenceKind.FILE, path_to_url(os.path.expanduser(line)), None, subdirectory, editable, egg)

    @staticmethod
    def _canonical(url: str) -> str:
        parsed = urlparse.urlparse(url_without_fragments(url))
        return urlparse.urlunparse(parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower()))

    @classmethod
    def _split_revision(cls, url: str) -> tuple[str, str | None]:
        if url.startswith("git@"):
            url = add_ssh_scheme_to_git_uri(url)
        parsed = urlparse.urlparse(url)
        path, revision = parsed.path, None
        if "@" in path:
            path, revision = path.rsplit("@", 1)
        repo = urlparse.urlunparse(
            parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower(), path=path, fragment="")
        )
        return repo, revision or None

    @property
    def is_vcs(self) -> bool:
        return self.kind.is_vcs

    @property
    def is_local(self) -> bool:
        return self.kind == ReferenceKind.FILE

    @property
    def local_path(self) -> Path | None:
        if not self.is_local:
            return None
        path = Path(url_to_path(self.url))
        if self.subdirectory:
            path = path / self.subdirectory
        return path

    @property
    def filename(self) -> str:
        path = urlparse.urlparse(self.url).path
        return os.path.basename(urlparse.unquote(path.rstrip("/")))

    def guess_name(self) -> str | None:
        """Guess the project name from the egg fragment or the URL path."""
        if self.egg:
            name = self.egg.split("[", 1)[0]
            return re.split(r"-(?=\d)", name, maxsplit=1)[0]
        filename = self.filename
        if self.is_vcs:
            return filename[:-4] if filename.endswith(".git") else filename or None
        try:
            if filename.endswith(".whl"):
                return str(parse_wheel_filename(filename)[0])
            return str(parse_sdist_filename(filename)[0])
        except (InvalidWheelFilename, InvalidSdistFilename):
            return None

    def guess_version(self) -> str | None:
        """Guess the version from an artifact filename or an ``#egg=name-version`` fragment."""
        if self.egg and (m := re.match(r"^[^\[]+?-(\d[^\[]*)", self.egg)):
            return m.group(1)
        filename = self.filename
        try:
            if filename.endswith(".whl"):
                return str(parse_wheel_filename(filename)[1])
            if not self.is_vcs:
                return str(parse_sdist_filename(filename)[1])
        except (InvalidWheelFilename, InvalidSdistFilename):
            pass
        return None

    def as_url(self) -> str:
        url = self.url
        if self.revision:
            url += f"@{self.revision}"
        if self.subdirectory:
            url += f"#subdirectory={self.subdirectory}"
        return url

    def __str__(self) -> str:
        prefix = "-e " if self.editable else ""
        return f"{prefix}{self.as_url()}"


@dataclasses.dataclass(frozen=True)
class ConflictRecord:
    """Two requirements of the same package that can't both be satisfied."""

    name: str
    first: str
    second: str
    reason: str

    def __str__(self) -> str:
        return f"{self.reason}: {self.first} vs {self.second}"


class ConflictDetector:
    """Remember the direct reference requested for each package and report
    requests of the same package from a different source.
    """

    def __init__(self) -> None:
        self._references: dict[str, DirectReference] = {}

    def register_and_check(self, name: str, reference: DirectReference) -> ConflictRecord | None:
        key = normalize_name(name)
        existing = self._references.get(key)
        if existing is None:
            self._references[key] = reference
            return None
        if existing == reference:
            return None
        logger.debug("Conflicting direct references for %s: %s vs %s", name, existing, reference)
        return ConflictRecord(
            name=key,
            first=existing.as_url(),
            second=reference.as_url(),
            reason=f"Conflicting direct references for {name}",
        )

    def get(self, name: str) -> DirectReference | None:
        return self._references.get(normalize_name(name))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._references

    def __len__(self) -> int:
        return len(self._references)

    def clear(self) -> None:
        self._references.clear()
