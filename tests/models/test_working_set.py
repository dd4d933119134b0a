import json

import pytest

from depresolver.models.caches import EditableCache
from depresolver.models.candidates import Origin
from depresolver.models.working_set import WorkingSet
from depresolver.utils import path_to_url


def make_dist(site, name, version, requires=(), direct_url=None):
    dist_info = site / f"{name.replace('-', '_')}-{version}.dist-info"
    dist_info.mkdir(parents=True)
    lines = ["Metadata-Version: 2.1", f"Name: {name}", f"Version: {version}", "Summary: Installed"]
    lines.extend(f"Requires-Dist: {req}" for req in requires)
    dist_info.joinpath("METADATA").write_text("\n".join(lines) + "\n")
    if direct_url is not None:
        dist_info.joinpath("direct_url.json").write_text(json.dumps(direct_url))
    return dist_info


@pytest.fixture
def site(tmp_path):
    path = tmp_path / "site-packages"
    path.mkdir()
    return path


def test_working_set_lists_distributions(site):
    make_dist(site, "requests", "2.31.0", ["idna>=2.5"])
    make_dist(site, "idna", "3.4")
    ws = WorkingSet([str(site)])
    assert sorted(ws) == ["idna", "requests"]
    assert ws["Requests"].version == "2.31.0"
    assert len(ws) == 2


def test_editable_info(site, tmp_path):
    project = tmp_path / "projects" / "demo"
    project.mkdir(parents=True)
    make_dist(site, "demo", "0.1.0", direct_url={"url": path_to_url(project), "dir_info": {"editable": True}})
    make_dist(
        site,
        "vcs-demo",
        "1.0",
        direct_url={
            "url": "https://github.com/test/vcs-demo.git",
            "vcs_info": {"vcs": "git", "requested_revision": "v1"},
        },
    )
    make_dist(site, "plain", "1.0")
    cache = EditableCache()
    ws = WorkingSet([str(site)], editable_cache=cache)

    info = ws.editable_info("demo")
    assert info.is_editable
    assert info.project_location == str(project)
    assert ws.editable_info("demo") is info
    assert cache.stats().hits == 1

    vcs = ws.editable_info("vcs-demo")
    assert not vcs.is_editable
    assert vcs.project_location == "git+https://github.com/test/vcs-demo.git@v1"

    assert ws.editable_info("plain").project_location is None


def test_egg_link(site, tmp_path):
    project = tmp_path / "projects" / "legacy"
    make_dist(project, "legacy", "0.3")
    site.joinpath("legacy.egg-link").write_text(f"{project}\n.\n")
    ws = WorkingSet([str(site)])
    info = ws.editable_info("legacy")
    assert info.is_editable
    assert info.project_location == str(project)


def test_as_resolved_set(site, tmp_path):
    project = tmp_path / "projects" / "demo"
    project.mkdir(parents=True)
    make_dist(site, "requests", "2.31.0", ["idna>=2.5", "pysocks; extra == 'socks'"])
    make_dist(site, "demo", "0.1.0", direct_url={"url": path_to_url(project), "dir_info": {"editable": True}})

    resolved = WorkingSet([str(site)]).as_resolved_set()

    requests = resolved["requests"]
    assert requests.version == "2.31.0"
    assert requests.origin == Origin.INDEX
    assert requests.summary == "Installed"
    assert requests.declared_extras == {"socks"}
    demo = resolved["demo"]
    assert demo.origin == Origin.LOCAL
    assert demo.editable
    assert demo.reference.local_path == project
