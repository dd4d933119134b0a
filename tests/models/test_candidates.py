from depresolver.models.candidates import Candidate, Origin
from depresolver.models.direct_url import DirectReference


def test_candidate_origin_from_reference(tmp_path):
    assert Candidate("foo", "1.0").origin == Origin.INDEX
    url = Candidate("foo", "1.0", reference=DirectReference.parse("https://example.org/foo-1.0.tar.gz"))
    assert url.origin == Origin.URL
    local = Candidate("foo", "1.0", reference=DirectReference.parse(str(tmp_path)))
    assert local.origin == Origin.LOCAL


def test_candidate_equality():
    assert Candidate("Foo", "1.0") == Candidate("foo", "1.0")
    assert Candidate("foo", "1.0") != Candidate("foo", "2.0")
    git = DirectReference.parse("git+https://github.com/test/foo.git@v1")
    assert Candidate("foo", "1.0", reference=git) != Candidate("foo", "1.0")
    assert Candidate("foo", None, reference=git) == Candidate("foo", "1.0", reference=git)
    assert len({Candidate("foo", "1.0"), Candidate("FOO", "1.0")}) == 1


def test_same_origin():
    git = DirectReference.parse("git+https://github.com/test/foo.git@v1")
    index_candidate = Candidate("foo", "1.0")
    assert index_candidate.same_origin(None)
    assert not index_candidate.same_origin(git)
    git_candidate = Candidate("foo", "1.0", reference=git)
    assert git_candidate.same_origin(DirectReference.parse("-e git+https://github.com/test/foo.git@v1"))
    assert not git_candidate.same_origin(None)


def test_dependencies_for_extras():
    candidate = Candidate(
        "foo",
        "1.0",
        dependencies=["bar>=1.0"],
        extras={"Socks": ["pysocks"], "test": ["pytest", "bar>=1.0"]},
    )
    assert candidate.dependencies_for() == ["bar>=1.0"]
    assert candidate.dependencies_for({"socks"}) == ["bar>=1.0", "pysocks"]
    assert candidate.dependencies_for({"socks", "test"}) == ["bar>=1.0", "pysocks", "pytest"]
    assert candidate.dependencies_for({"unknown"}) == ["bar>=1.0"]


def test_declared_extras():
    candidate = Candidate("foo", "1.0", dependencies=['pysocks; extra == "Socks"'], extras={"test": []})
    assert candidate.declared_extras == {"socks", "test"}


def test_lockfile_entry_round_trip():
    ref = DirectReference.parse("-e git+https://github.com/test/foo.git@v1")
    candidate = Candidate("foo", "1.0", summary="A foo", dependencies=["bar"], reference=ref)
    entry = candidate.as_lockfile_entry()
    assert entry == {
        "name": "foo",
        "version": "1.0",
        "summary": "A foo",
        "origin": "url",
        "dependencies": ["bar"],
        "url": "git+https://github.com/test/foo.git@v1",
        "editable": True,
    }
    loaded = Candidate.from_lockfile_entry(entry)
    assert loaded == candidate
    assert loaded.editable
    assert loaded.origin == Origin.URL


def test_candidate_str():
    assert str(Candidate("foo", "1.0")) == "foo@1.0"
    ref = DirectReference.parse("https://example.org/foo-1.0.tar.gz")
    assert str(Candidate("foo", "1.0", reference=ref)) == "foo@https://example.org/foo-1.0.tar.gz"
