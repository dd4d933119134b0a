import asyncio
import zipfile

import pytest

from depresolver.exceptions import CandidateNotFound
from depresolver.models.candidates import Candidate, Origin
from depresolver.models.direct_url import DirectReference
from depresolver.models.repositories import PyPIRepository
from depresolver.models.requirements import parse_requirement
from depresolver.resolver.selector import CandidateSelector
from depresolver.utils import path_to_url


class FakeInstaller:
    def __init__(self, installed=()):
        self.installed = set(installed)

    def install_artifact(self, candidate):
        return True

    def is_already_installed(self, name, version):
        return (name, version) in self.installed


@pytest.fixture
def make_selector(index_client, fetcher, environment):
    def make(**kwargs):
        return CandidateSelector(PyPIRepository(index_client, fetcher), environment, **kwargs)

    return make


@pytest.fixture
def index(repository_data):
    repository_data.add_candidate("pkg", "1.0")
    repository_data.add_candidate("pkg", "2.0")
    return repository_data


def select(selector, line, already_installed=None):
    return asyncio.run(selector.select(parse_requirement(line), already_installed))


def test_unknown_strategy(make_selector):
    with pytest.raises(ValueError, match="Unknown update strategy"):
        make_selector(strategy="eager")


def test_find_reusable(make_selector, tmp_path):
    selector = make_selector()
    git = DirectReference.parse("git+https://github.com/test/pkg.git@v1")
    installed = {"pkg": Candidate("pkg", "1.0"), "vcs": Candidate("vcs", None, reference=git)}
    assert selector.find_reusable(parse_requirement("PKG>=1"), installed) is installed["pkg"]
    assert selector.find_reusable(parse_requirement("pkg>1"), installed) is None
    assert selector.find_reusable(parse_requirement("other"), installed) is None
    assert selector.find_reusable(parse_requirement("vcs @ git+https://github.com/test/pkg.git@v1"), installed)
    assert selector.find_reusable(parse_requirement("vcs @ git+https://github.com/test/pkg.git@v2"), installed) is None
    assert selector.find_reusable(parse_requirement("vcs"), installed) is None


def test_select_newest(index, make_selector):
    assert select(make_selector(), "pkg").version == "2.0"
    assert select(make_selector(), "pkg<2").version == "1.0"


@pytest.mark.parametrize("strategy,expected", [("reuse", "1.0"), ("all", "2.0")])
def test_update_strategy(index, make_selector, strategy, expected):
    selector = make_selector(installer=FakeInstaller([("pkg", "1.0")]), strategy=strategy)
    assert select(selector, "pkg").version == expected


def test_matches_order(index, make_selector):
    selector = make_selector(installer=FakeInstaller([("pkg", "1.0")]))
    matches = asyncio.run(selector.find_matches(parse_requirement("pkg")))
    assert matches == ["1.0", "2.0"]


def test_no_match(index, make_selector):
    with pytest.raises(CandidateNotFound, match="No version of pkg satisfies >3"):
        select(make_selector(), "pkg>3")


def test_select_local_wheel(make_selector, tmp_path):
    wheel = tmp_path / "demo-0.1.0-py3-none-any.whl"
    with zipfile.ZipFile(wheel, "w") as zf:
        zf.writestr(
            "demo-0.1.0.dist-info/METADATA",
            "Metadata-Version: 2.1\nName: demo\nVersion: 0.1.0\nSummary: A wheel\n"
            "Requires-Python: >=3.8\nRequires-Dist: idna\nRequires-Dist: pysocks; extra == 'socks'\n",
        )
        zf.writestr("demo/__init__.py", "")
    candidate = select(make_selector(), str(wheel))
    assert candidate.origin == Origin.LOCAL
    assert candidate.version == "0.1.0"
    assert candidate.summary == "A wheel"
    assert candidate.requires_python == ">=3.8"
    assert candidate.dependencies == ["idna", "pysocks; extra == 'socks'"]


def test_select_local_sdist(make_selector, tmp_path):
    sdist = tmp_path / "demo-0.2.0.tar.gz"
    sdist.write_bytes(b"")
    candidate = select(make_selector(), str(sdist))
    assert candidate.version == "0.2.0"
    assert candidate.dependencies == []


def test_select_local_directory(make_selector, make_project):
    root = make_project("demo", "1.0.0", ["idna"], requires_python=">=3.8")
    candidate = select(make_selector(), f"-e {root}")
    assert candidate.editable
    assert candidate.dependencies == ["idna"]
    assert candidate.requires_python == ">=3.8"


def test_missing_local_path(make_selector, tmp_path):
    with pytest.raises(CandidateNotFound, match="doesn't exist"):
        select(make_selector(), str(tmp_path / "demo-0.1.0.tar.gz"))


def test_local_directory_without_metadata(make_selector, tmp_path):
    with pytest.raises(CandidateNotFound, match="No project metadata"):
        select(make_selector(), f"demo @ {path_to_url(tmp_path)}")


def test_select_remote_url(make_selector, index_transport):
    candidate = select(make_selector(), "demo @ https://example.org/files/demo-1.2.tar.gz")
    assert candidate.origin == Origin.URL
    assert candidate.version == "1.2"
    assert index_transport.request_count == 0
