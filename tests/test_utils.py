import os
import sys

import pytest

from depresolver import utils


@pytest.mark.parametrize(
    "name,expected",
    [("Django", "django"), ("typing_extensions", "typing-extensions"), ("zope.interface", "zope-interface"),
     ("foo__bar", "foo-bar")],
)
def test_normalize_name(name, expected):
    assert utils.normalize_name(name) == expected


def test_normalize_name_keep_case():
    assert utils.normalize_name("Foo_Bar", lowercase=False) == "Foo-Bar"


def test_safe_version():
    assert utils.safe_version("1.0.post1") == utils.parse_version("1.0.post1")
    assert utils.safe_version("not-a-version") is None


@pytest.mark.parametrize(
    "given,expected",
    [
        ("git@github.com:test/pkg-c.git", "ssh://git@github.com/test/pkg-c.git"),
        ("git@example.org/pkg-c.git", "ssh://git@example.org/pkg-c.git"),
        ("https://github.com/test/pkg-c.git", "https://github.com/test/pkg-c.git"),
    ],
)
def test_add_ssh_scheme_to_git_uri(given, expected):
    assert utils.add_ssh_scheme_to_git_uri(given) == expected


def test_url_without_fragments():
    assert utils.url_without_fragments("https://example.org/a.zip#egg=a") == "https://example.org/a.zip"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX paths only")
def test_path_url_conversion(tmp_path):
    path = tmp_path / "with space" / "pkg"
    url = utils.path_to_url(path)
    assert url.startswith("file:///")
    assert "with%20space" in url
    assert utils.url_to_path(url) == str(path)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX paths only")
def test_url_to_path_rejects_remote_host():
    with pytest.raises(ValueError):
        utils.url_to_path("file://remote-host/share/pkg")


def test_url_to_path_rejects_other_schemes():
    with pytest.raises(ValueError, match="Not a file: URL"):
        utils.url_to_path("https://example.org/pkg.zip")


def test_atomic_open_for_write(tmp_path):
    target = tmp_path / "sub" / "file.txt"
    with utils.atomic_open_for_write(target) as fp:
        fp.write("first")
    with utils.atomic_open_for_write(target) as fp:
        fp.write("second")
    assert target.read_text() == "second"
    assert os.listdir(target.parent) == ["file.txt"]


def test_atomic_open_for_write_keeps_file_on_error(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("original")
    with pytest.raises(RuntimeError):
        with utils.atomic_open_for_write(target) as fp:
            fp.write("partial")
            raise RuntimeError("boom")
    assert target.read_text() == "original"
    assert os.listdir(tmp_path) == ["file.txt"]


def test_atomic_open_for_write_relative_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with utils.atomic_open_for_write("out.txt") as fp:
        fp.write("data")
    assert (tmp_path / "out.txt").read_text() == "data"
