from __future__ import annotations

import asyncio
import dataclasses
import urllib.parse as parse
from typing import Any

import httpx

from depresolver.__version__ import __version__
from depresolver.config import DEFAULT_INDEX_URL
from depresolver.exceptions import PackageNotFoundError
from depresolver.termui import logger
from depresolver.utils import normalize_name

DEFAULT_TIMEOUT = 15.0


@dataclasses.dataclass(frozen=True)
class RawResponse:
    """The body of an index response, as stored in the metadata cache."""

    url: str
    body: bytes
    content_type: str


class IndexClient:
    """Talk to a metadata index serving the PyPI JSON API.

    The project document lives at ``{index}/{name}/json`` and the metadata of
    a single release at ``{index}/{name}/{version}/json``.
    """

    def __init__(
        self,
        index_url: str = DEFAULT_INDEX_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        self.index_url = index_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        kwargs.setdefault("follow_redirects", True)
        kwargs.setdefault("headers", {"User-Agent": self._make_user_agent(), "Accept": "application/json"})
        self._client_kwargs = kwargs
        self._client: httpx.AsyncClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """The HTTP client of the running event loop.

        Connections can't be shared between event loops, a new client is made
        when the loop changes, e.g. between two ``asyncio.run`` calls.
        """
        loop = asyncio.get_running_loop()
        if self._client is None or self._loop is not loop:
            self._loop = loop
            self._client = httpx.AsyncClient(transport=self.transport, timeout=self.timeout, **self._client_kwargs)
        return self._client

    def _make_user_agent(self) -> str:
        import platform

        return (
            f"depresolver/{__version__} {platform.python_implementation()}/{platform.python_version()} "
            f"{platform.system()}/{platform.release()}"
        )

    def metadata_url(self, name: str) -> str:
        return f"{self.index_url}/{parse.quote(normalize_name(name))}/json"

    def release_url(self, name: str, version: str) -> str:
        return f"{self.index_url}/{parse.quote(normalize_name(name))}/{parse.quote(version)}/json"

    def _project_of(self, url: str) -> str:
        index_path = parse.urlparse(self.index_url).path.rstrip("/")
        path = parse.urlparse(url).path
        if path.startswith(index_path):
            path = path[len(index_path) :]
        return parse.unquote(path.strip("/").split("/")[0])

    async def get(self, url: str, timeout: float | None = None) -> RawResponse:
        """Issue one GET request.

        A 404 raises :class:`PackageNotFoundError`, any other error status raises
        :class:`httpx.HTTPStatusError`.
        """
        logger.debug("Fetching %s", url)
        resp = await self.client.get(url, timeout=timeout if timeout is not None else self.timeout)
        if resp.status_code == 404:
            raise PackageNotFoundError(self._project_of(url), url)
        resp.raise_for_status()
        return RawResponse(url=url, body=resp.content, content_type=resp.headers.get("Content-Type", ""))

    async def fetch_metadata(self, name: str) -> RawResponse:
        return await self.get(self.metadata_url(name))

    async def fetch_release(self, name: str, version: str) -> RawResponse:
        return await self.get(self.release_url(name, version))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> IndexClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
