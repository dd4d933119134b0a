"""
Utility functions
"""

from __future__ import annotations

import contextlib
import functools
import json
import os
import re
import shutil
import sys
import tempfile
import urllib.parse as parse
from pathlib import Path
from typing import TYPE_CHECKING

from packaging.version import InvalidVersion, Version

if TYPE_CHECKING:
    from typing import IO, Iterator

    from depresolver.compat import Distribution


@functools.lru_cache(maxsize=1024)
def parse_version(version: str) -> Version:
    return Version(version)


def safe_version(version: str) -> Version | None:
    """Parse a version, returning None for legacy or malformed strings."""
    try:
        return parse_version(version)
    except InvalidVersion:
        return None


@functools.lru_cache
def normalize_name(name: str, lowercase: bool = True) -> str:
    name = re.sub(r"[^A-Za-z0-9]+", "-", name)
    return name.lower() if lowercase else name


def url_without_fragments(url: str) -> str:
    return parse.urlunparse(parse.urlparse(url)._replace(fragment=""))


def add_ssh_scheme_to_git_uri(uri: str) -> str:
    """Turn an scp-like location such as ``git@github.com:owner/repo.git`` into an ``ssh://`` URL."""
    if "://" in uri:
        return uri
    parsed = parse.urlparse(f"ssh://{uri}")
    host, sep, path_start = parsed.netloc.rpartition(":")
    if not sep:
        return f"ssh://{uri}"
    return parse.urlunparse(parsed._replace(netloc=host, path=f"/{path_start}{parsed.path}"))


@contextlib.contextmanager
def atomic_open_for_write(filename: str | Path, *, mode: str = "w", encoding: str = "utf-8") -> Iterator[IO]:
    """Open a temporary file beside ``filename`` that replaces it when the block succeeds.

    The content is copied over the target, so the target keeps the default file mode.
    """
    target = Path(filename).absolute()
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".write-", dir=target.parent)
    try:
        with open(fd, mode, encoding=None if "b" in mode else encoding) as fp:
            yield fp
        with contextlib.suppress(OSError):
            target.unlink()
        shutil.copyfile(tmp_name, target)
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)


def url_to_path(url: str) -> str:
    """Convert a ``file:`` URL to a local path.

    A URL with a host is only accepted on Windows, where it names a UNC share.
    """
    from urllib.request import url2pathname

    if not url.startswith("file:"):
        raise ValueError(f"Not a file: URL: {url!r}")
    _, netloc, path, _, _ = parse.urlsplit(url)
    if netloc in ("", "localhost"):
        netloc = ""
    elif sys.platform == "win32":
        netloc = f"\\\\{netloc}"
    else:
        raise ValueError(f"Can't convert a URL of remote host {netloc!r} to a path: {url!r}")

    path = url2pathname(netloc + path)
    # "/C:/Users" on Windows
    if sys.platform == "win32" and not netloc and re.match(r"^/[A-Za-z]:(/|$)", path):
        path = path[1:]
    return path


def path_to_url(path: str | Path) -> str:
    """The absolute ``file:`` URL of a path, with quoted parts."""
    from urllib.request import pathname2url

    return parse.urljoin("file:", pathname2url(os.path.normpath(os.path.abspath(path))))


def is_egg_link(dist: Distribution) -> bool:
    """Check if the distribution is an egg-link install"""
    return getattr(dist, "link_file", None) is not None


def read_direct_url(dist: Distribution) -> dict | None:
    """Return the parsed ``direct_url.json`` of a distribution, if any."""
    text = dist.read_text("direct_url.json")
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None
