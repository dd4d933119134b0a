import pytest

from depresolver.compat import tomllib
from depresolver.exceptions import DepResolverUsageError
from depresolver.models.candidates import Candidate, Origin
from depresolver.models.direct_url import DirectReference
from depresolver.resolver.base import ResolvedSet
from depresolver.resolver.lockfile import LOCK_VERSION, read_lockfile, write_lockfile


@pytest.fixture
def resolved(repository_data, resolve, make_project):
    repository_data.add_candidate("requests", "2.31.0", summary="HTTP for Humans")
    repository_data.add_candidate("idna", "3.4")
    repository_data.add_dependencies("requests", "2.31.0", ["idna>=2.5"])
    root = make_project("local-app", "0.1.0", ["requests"])
    return resolve([f"-e {root}"]).raise_for_failure()


def test_write_lockfile(resolved, tmp_path, environment):
    path = tmp_path / "depresolver.lock"
    write_lockfile(resolved, path, environment)

    text = path.read_text()
    assert text.startswith("# This file is generated by depresolver")
    data = tomllib.loads(text)
    assert data["metadata"]["lock_version"] == LOCK_VERSION
    assert data["metadata"]["target"]["sys_platform"] == "linux"
    packages = {p["name"]: p for p in data["package"]}
    assert list(packages) == ["idna", "local-app", "requests"]
    assert packages["requests"] == {
        "name": "requests",
        "version": "2.31.0",
        "summary": "HTTP for Humans",
        "origin": "index",
        "requires": ["idna"],
        "dependencies": ["idna>=2.5"],
    }
    assert packages["local-app"]["editable"] is True
    assert packages["local-app"]["origin"] == "local"
    assert packages["idna"]["requires"] == []


def test_read_lockfile(resolved, tmp_path):
    path = tmp_path / "depresolver.lock"
    write_lockfile(resolved, path)

    loaded = read_lockfile(path)

    assert loaded.versions() == resolved.versions()
    assert loaded["local-app"] == resolved["local-app"]
    assert loaded["local-app"].editable
    assert loaded.dependencies_of("local-app") == ["requests"]
    assert loaded.dependencies_of("idna") == []


def test_lockfile_packages_are_reused(resolved, tmp_path, resolve, index_transport):
    path = tmp_path / "depresolver.lock"
    write_lockfile(resolved, path)
    count = index_transport.request_count

    result = resolve(["requests"], already_installed=read_lockfile(path))

    assert result.mapping.versions() == {"requests": "2.31.0", "idna": "3.4"}
    assert index_transport.request_count == count


def test_lockfile_without_edges(tmp_path):
    mapping = ResolvedSet([Candidate("foo", "1.0", reference=DirectReference.parse("https://example.org/foo-1.0.zip"))])
    path = tmp_path / "nested" / "depresolver.lock"
    write_lockfile(mapping, path)
    loaded = read_lockfile(path)
    assert loaded["foo"].origin == Origin.URL
    assert loaded.dependencies_of("foo") is None


@pytest.mark.parametrize(
    "content,message",
    [
        ("[metadata\n", "Invalid lockfile"),
        ('[metadata]\nlock_version = "2.0"\n', "Unsupported lockfile version"),
        ("[metadata]\n", "Unsupported lockfile version"),
        ('[metadata]\nlock_version = "1.0"\n[[package]]\nversion = "1.0"\n', "Invalid package entry"),
        ('[metadata]\nlock_version = "1.0"\n[[package]]\nname = "a"\norigin = "ftp"\n', "Invalid package entry"),
    ],
)
def test_invalid_lockfile(tmp_path, content, message):
    path = tmp_path / "depresolver.lock"
    path.write_text(content)
    with pytest.raises(DepResolverUsageError, match=message):
        read_lockfile(path)
