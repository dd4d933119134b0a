from __future__ import annotations

import re
import warnings
from functools import lru_cache
from typing import Iterable, Match

from packaging.specifiers import InvalidSpecifier, SpecifierSet

from depresolver.exceptions import RequirementError
from depresolver.utils import safe_version

_legacy_specifier_re = re.compile(r"(==|!=|<=|>=|<|>)(\s*)([^,;\s)]*)")


@lru_cache
def fix_legacy_specifier(specifier: str) -> str:
    """Since packaging 22.0, legacy specifiers like '>=4.*' are no longer
    supported. We try to normalize them to the new format.
    """

    def fix_wildcard(match: Match[str]) -> str:
        operator, _, version = match.groups()
        if operator in ("==", "!="):
            return match.group(0)
        if ".*" in version:
            warnings.warn(".* suffix can only be used with `==` or `!=` operators", FutureWarning, stacklevel=4)
            version = version.replace(".*", ".0")
            if operator in ("<", "<="):  # <4.* and <=4.* are equivalent to <4.0
                operator = "<"
            elif operator in (">", ">="):  # >4.* and >=4.* are equivalent to >=4.0
                operator = ">="
        elif "+" in version:  # Drop the local version
            warnings.warn(
                "Local version label can only be used with `==` or `!=` operators", FutureWarning, stacklevel=4
            )
            version = version.split("+")[0]
        return f"{operator}{version}"

    return _legacy_specifier_re.sub(fix_wildcard, specifier)


@lru_cache
def get_specifier(version_str: str | None) -> SpecifierSet:
    if not version_str or version_str == "*":
        return SpecifierSet()
    try:
        return SpecifierSet(version_str)
    except InvalidSpecifier:
        try:
            return SpecifierSet(fix_legacy_specifier(version_str))
        except InvalidSpecifier as e:
            raise RequirementError(f"Invalid specifier {version_str!r}: {e}") from None


def contains_version(specifier: SpecifierSet, version: str | None) -> bool:
    """Whether an already chosen version satisfies the specifier.

    Pre-releases are accepted here: once a version is picked, later requirements
    are only checked for compatibility with it. A candidate with an unknown
    version (e.g. a VCS checkout) satisfies any specifier.
    """
    if version is None:
        return True
    if not specifier:
        return True
    if safe_version(version) is None:
        return False
    return specifier.contains(version, prereleases=True)


def filter_versions(
    specifier: SpecifierSet, versions: Iterable[str], allow_prereleases: bool | None = None
) -> list[str]:
    """Return the versions matching the specifier, highest first.

    Pre-releases are only returned when allowed explicitly, when the specifier
    mentions one, or when no final release matches.
    """
    parsed = [(v, p) for v in versions if (p := safe_version(v)) is not None]
    matching = [(v, p) for v, p in parsed if specifier.contains(p, prereleases=True)]
    matching.sort(key=lambda item: item[1], reverse=True)
    if specifier.prereleases:
        allow_prereleases = True
    if not allow_prereleases:
        finals = [(v, p) for v, p in matching if not p.is_prerelease]
        if finals or allow_prereleases is False:
            matching = finals
    return [v for v, _ in matching]
