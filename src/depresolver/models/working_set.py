from __future__ import annotations

import itertools
import sys
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from depresolver.compat import importlib_metadata as im
from depresolver.models.caches import EditableCache, EditableInfo
from depresolver.models.candidates import Candidate, Origin
from depresolver.models.direct_url import DirectReference
from depresolver.resolver.base import ResolvedSet
from depresolver.utils import is_egg_link, normalize_name, read_direct_url, url_to_path

default_context = im.DistributionFinder.Context()


class EgglinkFinder(im.DistributionFinder):
    @classmethod
    def find_distributions(cls, context: im.DistributionFinder.Context = default_context) -> Iterable[im.Distribution]:
        meta_finder = im.MetadataPathFinder()
        for link in cls._search_paths(context.name, context.path):
            with link.open("rb") as fp:
                link_pointer = Path(fp.readline().decode().strip())
            dist = next(
                iter(
                    meta_finder.find_distributions(
                        im.DistributionFinder.Context(name=link.stem, path=[str(link_pointer)])
                    )
                ),
                None,
            )
            if not dist:
                continue
            dist.link_file = link.absolute()  # type: ignore[attr-defined]
            yield dist

    @classmethod
    def _search_paths(cls, name: str | None, paths: list[str]) -> Iterable[Path]:
        for path in paths:
            if name:
                if Path(path).joinpath(f"{name}.egg-link").is_file():
                    yield Path(path).joinpath(f"{name}.egg-link")
            else:
                yield from Path(path).glob("*.egg-link")


def distributions(path: list[str]) -> Iterable[im.Distribution]:
    """Find distributions in the paths, egg-links included."""
    context = im.DistributionFinder.Context(path=path)
    resolvers = itertools.chain(
        filter(None, (getattr(finder, "find_distributions", None) for finder in sys.meta_path)),
        (EgglinkFinder.find_distributions,),
    )
    return itertools.chain.from_iterable(resolver(context) for resolver in resolvers)


class WorkingSet(Mapping[str, im.Distribution]):
    """A dictionary of currently installed distributions.

    Where an installed distribution comes from is read from its
    ``direct_url.json`` or egg-link and memoized in the editable cache.
    """

    def __init__(self, paths: list[str] | None = None, editable_cache: EditableCache | None = None) -> None:
        if paths is None:
            paths = sys.path
        self.editable_cache = editable_cache if editable_cache is not None else EditableCache()
        self._dist_map: dict[str, im.Distribution] = {}
        for dist in distributions(path=paths):
            name = dist.metadata["Name"]
            if not name:
                continue
            # The first one on the path wins, like the import system
            self._dist_map.setdefault(normalize_name(name), dist)

    def __getitem__(self, key: str) -> im.Distribution:
        return self._dist_map[normalize_name(key)]

    def __len__(self) -> int:
        return len(self._dist_map)

    def __iter__(self) -> Iterator[str]:
        return iter(self._dist_map)

    def __repr__(self) -> str:
        return repr(self._dist_map)

    def editable_info(self, name: str) -> EditableInfo:
        dist = self[name]
        version = dist.version
        cached = self.editable_cache.get(name, version)
        if cached is not None:
            return cached
        info = self._read_editable_info(name, dist)
        self.editable_cache.set(name, version, info)
        return info

    @staticmethod
    def _read_editable_info(name: str, dist: im.Distribution) -> EditableInfo:
        if is_egg_link(dist):
            link_file: Path = dist.link_file  # type: ignore[attr-defined]
            with link_file.open("rb") as fp:
                location = fp.readline().decode().strip()
            return EditableInfo(name, dist.version, location, True)
        direct_url = read_direct_url(dist)
        if direct_url is None:
            return EditableInfo(name, dist.version, None, False)
        url = direct_url.get("url", "")
        if "vcs_info" in direct_url:
            vcs_info = direct_url["vcs_info"]
            location = f"{vcs_info.get('vcs', 'git')}+{url}"
            if vcs_info.get("requested_revision"):
                location += f"@{vcs_info['requested_revision']}"
            return EditableInfo(name, dist.version, location, False)
        editable = bool(direct_url.get("dir_info", {}).get("editable", False))
        location = url_to_path(url) if url.startswith("file:") else url
        return EditableInfo(name, dist.version, location, editable)

    def as_resolved_set(self) -> ResolvedSet:
        """The installed distributions as candidates, to be reused by the resolver."""
        result = ResolvedSet()
        for key, dist in self._dist_map.items():
            info = self.editable_info(key)
            reference = None
            if info.project_location is not None:
                location = info.project_location
                reference = DirectReference.parse(f"-e {location}" if info.is_editable else location)
            requires = dist.requires or []
            result.add(
                Candidate(
                    name=dist.metadata["Name"],
                    version=dist.version,
                    summary=dist.metadata.get("Summary") or "",
                    dependencies=list(requires),
                    origin=Origin.of(reference),
                    reference=reference,
                    requires_python=dist.metadata.get("Requires-Python") or "",
                )
            )
        return result
