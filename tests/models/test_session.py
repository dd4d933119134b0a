import asyncio

import httpx
import pytest

from depresolver.exceptions import PackageNotFoundError
from depresolver.models.session import IndexClient
from depresolver.pytest import TEST_INDEX_URL


def test_index_urls():
    client = IndexClient("https://index.example.org/pypi/")
    assert client.metadata_url("Foo_Bar") == "https://index.example.org/pypi/foo-bar/json"
    assert client.release_url("foo", "1.0+local") == "https://index.example.org/pypi/foo/1.0%2Blocal/json"


def test_fetch_metadata(repository_data, index_client):
    repository_data.add_candidate("demo", "0.1.0", summary="A demo")

    async def main():
        async with index_client:
            return await index_client.fetch_metadata("demo"), await index_client.fetch_release("demo", "0.1.0")

    project, release = asyncio.run(main())
    assert project.url == f"{TEST_INDEX_URL}/demo/json"
    assert project.content_type == "application/json"
    assert b'"releases"' in project.body
    assert b'"summary": "A demo"' in release.body


def test_not_found_names_the_project(index_client):
    with pytest.raises(PackageNotFoundError) as excinfo:
        asyncio.run(index_client.fetch_release("missing-pkg", "1.0"))
    assert excinfo.value.name == "missing-pkg"


def test_server_error_raises_status_error(repository_data, index_client, index_transport):
    repository_data.add_candidate("demo", "0.1.0")
    index_transport.fail("demo", 500)
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(index_client.fetch_metadata("demo"))


def test_user_agent_header():
    seen = {}

    class RecordingTransport(httpx.AsyncBaseTransport):
        async def handle_async_request(self, request):
            seen.update(request.headers)
            return httpx.Response(200, content=b"{}")

    client = IndexClient(TEST_INDEX_URL, transport=RecordingTransport())
    asyncio.run(client.fetch_metadata("demo"))
    assert seen["user-agent"].startswith("depresolver/")
    assert seen["accept"] == "application/json"
