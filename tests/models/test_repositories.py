import asyncio

import pytest

from depresolver.exceptions import InvalidMetadata
from depresolver.models.candidates import Origin
from depresolver.models.repositories import PyPIRepository


@pytest.fixture
def repository(index_client, fetcher):
    return PyPIRepository(index_client, fetcher)


def test_get_project(repository_data, repository):
    repository_data.add_candidate("Demo", "0.1.0", summary="A demo")
    repository_data.add_candidate("Demo", "0.2.0", requires_python=">=3.8")
    repository_data.add_candidate("Demo", "0.3.0", yanked=True)

    project = asyncio.run(repository.get_project("demo"))

    assert project.name == "Demo"
    assert sorted(project.versions) == ["0.1.0", "0.2.0", "0.3.0"]
    assert project.releases["0.2.0"].requires_python == ">=3.8"
    assert project.releases["0.3.0"].yanked
    assert not project.releases["0.1.0"].yanked


def test_project_is_fetched_once(repository_data, repository, index_transport):
    repository_data.add_candidate("demo", "0.1.0")

    async def main():
        await repository.get_project("demo")
        await repository.get_project("Demo")

    asyncio.run(main())
    assert index_transport.request_count == 1


def test_get_candidate(repository_data, repository):
    repository_data.add_candidate("demo", "0.1.0", summary="A demo", requires_python=">=3.7")
    repository_data.add_dependencies("demo", "0.1.0", ["idna>=2.5"], extras={"socks": ["pysocks"]})

    candidate = asyncio.run(repository.get_candidate("demo", "0.1.0"))

    assert candidate.name == "demo"
    assert candidate.version == "0.1.0"
    assert candidate.summary == "A demo"
    assert candidate.requires_python == ">=3.7"
    assert candidate.origin == Origin.INDEX
    assert candidate.dependencies == ["idna>=2.5", 'pysocks; extra == "socks"']
    assert candidate.declared_extras == {"socks"}


def test_malformed_document(repository, index_client, metadata_cache):
    metadata_cache.set(index_client.metadata_url("broken"), b'{"releases": {}}')
    with pytest.raises(InvalidMetadata):
        asyncio.run(repository.get_project("broken"))


def test_invalid_versions_are_skipped(repository, index_client, metadata_cache):
    document = b'{"info": {"name": "legacy"}, "releases": {"1.0": [], "not a version": []}}'
    metadata_cache.set(index_client.metadata_url("legacy"), document)
    project = asyncio.run(repository.get_project("legacy"))
    assert project.versions == ["1.0"]


def test_latest_only_index(repository, index_client, metadata_cache):
    document = b'{"info": {"name": "latest", "version": "2.0", "requires_python": ">=3.9"}}'
    metadata_cache.set(index_client.metadata_url("latest"), document)
    project = asyncio.run(repository.get_project("latest"))
    assert project.versions == ["2.0"]
    assert project.releases["2.0"].requires_python == ">=3.9"
