from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

import tomlkit

from depresolver.__version__ import __version__
from depresolver.compat import tomllib
from depresolver.exceptions import DepResolverUsageError
from depresolver.models.candidates import Candidate
from depresolver.resolver.base import ResolvedSet
from depresolver.termui import logger
from depresolver.utils import atomic_open_for_write, parse_version, safe_version

if TYPE_CHECKING:
    from depresolver.models.environment import EnvironmentContext

LOCK_VERSION = "1.0"


def make_array(data: list, multiline: bool = False) -> list:
    if not data:
        return []
    array = cast(list, tomlkit.array().multiline(multiline))
    array.extend(data)
    return array


def format_lockfile(mapping: ResolvedSet, context: EnvironmentContext | None = None) -> tomlkit.TOMLDocument:
    """Build the TOML document of a resolved set, packages sorted by name."""
    packages = tomlkit.aot()
    for key in sorted(mapping):
        candidate = mapping[key]
        entry = candidate.as_lockfile_entry()
        base = tomlkit.table()
        dependencies = entry.pop("dependencies", [])
        base.update(entry)
        edges = mapping.dependencies_of(key)
        if edges is not None:
            base.add("requires", make_array(sorted(edges), True))
        if dependencies:
            base.add("dependencies", make_array(dependencies, True))
        packages.append(base)

    doc = tomlkit.document()
    doc.add(tomlkit.comment(f"This file is generated by depresolver {__version__}, do not edit it by hand."))
    metadata = tomlkit.table()
    metadata.add("lock_version", LOCK_VERSION)
    if context is not None:
        metadata.add("target", context.as_dict())
    doc.add("metadata", metadata)
    doc.add("package", packages)
    return doc


def write_lockfile(mapping: ResolvedSet, path: str | Path, context: EnvironmentContext | None = None) -> None:
    """Write the resolved set to ``path`` atomically."""
    doc = format_lockfile(mapping, context)
    with atomic_open_for_write(path, encoding="utf-8") as fp:
        fp.write(tomlkit.dumps(doc))
    logger.info("Lockfile written to %s", path)


def read_lockfile(path: str | Path) -> ResolvedSet:
    """Load a resolved set from a lockfile, the dependency edges included.

    The result can be passed to the resolver as ``already_installed``.
    """
    with open(path, "rb") as fp:
        try:
            data: dict[str, Any] = tomllib.load(fp)
        except tomllib.TOMLDecodeError as e:
            raise DepResolverUsageError(f"Invalid lockfile {path}: {e}") from e
    version = data.get("metadata", {}).get("lock_version", "")
    parsed = safe_version(version)
    if parsed is None or parsed.major != parse_version(LOCK_VERSION).major:
        raise DepResolverUsageError(f"Unsupported lockfile version {version!r} in {path}, expected {LOCK_VERSION}")

    result = ResolvedSet()
    for entry in data.get("package", []):
        try:
            candidate = Candidate.from_lockfile_entry(entry)
        except (KeyError, ValueError) as e:
            raise DepResolverUsageError(f"Invalid package entry in {path}: {e}") from e
        result.add(candidate)
        if "requires" in entry:
            result.record_edges(candidate.key, entry["requires"])
    logger.debug("Loaded %d packages from %s", len(result), path)
    return result
