import pytest

from depresolver.exceptions import RequirementError
from depresolver.models.specifiers import contains_version, filter_versions, get_specifier


@pytest.mark.parametrize(
    "original,normalized",
    [
        ("", ""),
        ("*", ""),
        (">=1.0", ">=1.0"),
        (">=4.*", ">=4.0"),
        ("<4.*", "<4.0"),
        (">1.0+local", ">1.0"),
    ],
)
def test_get_specifier(original, normalized):
    assert str(get_specifier(original)) == normalized


def test_get_specifier_invalid():
    with pytest.raises(RequirementError):
        get_specifier(">>1.0")


def test_filter_versions_highest_first():
    assert filter_versions(get_specifier(">=1.0"), ["1.0", "2.0", "1.5", "0.9"]) == ["2.0", "1.5", "1.0"]


def test_filter_versions_skips_invalid():
    assert filter_versions(get_specifier(""), ["1.0", "not-a-version"]) == ["1.0"]


def test_filter_versions_prereleases():
    versions = ["1.0", "2.0b1"]
    assert filter_versions(get_specifier(""), versions) == ["1.0"]
    assert filter_versions(get_specifier(""), versions, allow_prereleases=True) == ["2.0b1", "1.0"]
    # Mentioned in the specifier
    assert filter_versions(get_specifier(">=2.0b1"), versions) == ["2.0b1"]
    # Only pre-releases match
    assert filter_versions(get_specifier(">1.0"), versions) == ["2.0b1"]
    assert filter_versions(get_specifier(">1.0"), versions, allow_prereleases=False) == []


@pytest.mark.parametrize(
    "specifier,version,expected",
    [
        (">=1.0", "1.5", True),
        (">=1.0", "0.9", False),
        (">=1.0", "2.0rc1", True),
        ("", "anything", True),
        (">=1.0", None, True),
        (">=1.0", "not-a-version", False),
    ],
)
def test_contains_version(specifier, version, expected):
    assert contains_version(get_specifier(specifier), version) is expected
