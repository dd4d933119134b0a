"""Fetch index documents concurrently.

The fetcher puts a bounded pool of permits, a per-attempt timeout and retries
with exponential backoff around :class:`~depresolver.models.session.IndexClient`,
and consults the on-disk metadata cache before any network call.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

import httpx

from depresolver.exceptions import FetchError, InvalidMetadata, PackageNotFoundError
from depresolver.models.caches import MetadataCache, NullMetadataCache
from depresolver.termui import logger

if TYPE_CHECKING:
    import threading

    from depresolver.config import Config
    from depresolver.models.session import IndexClient

DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.1


@dataclasses.dataclass(frozen=True)
class FetchResult:
    key: str
    body: bytes
    content_type: str
    from_cache: bool = False
    attempts: int = 0

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise InvalidMetadata(f"Invalid JSON document from {self.key}: {e}") from e


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


class ConcurrentFetcher:
    """Fetch documents by URL for many concurrent callers.

    At most ``max_concurrency`` requests hold a permit at any time. A failed
    attempt is retried after ``backoff_base * 2 ** (attempt - 1)`` seconds when
    the failure is transient (timeouts, transport errors and 5xx responses), up
    to ``max_attempts`` attempts in total. A 404 is reported immediately with
    :class:`PackageNotFoundError`.

    Concurrent calls for the same key share a single request.
    """

    def __init__(
        self,
        client: IndexClient,
        cache: MetadataCache | None = None,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        timeout: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.cache = cache if cache is not None else NullMetadataCache()
        self.max_concurrency = max_concurrency
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.timeout = timeout if timeout is not None else client.timeout
        self._sleep = sleep
        # Created lazily, they must belong to the running event loop
        self._loop: asyncio.AbstractEventLoop | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._inflight: dict[str, asyncio.Future[FetchResult]] = {}
        # Counters, mostly for diagnostics
        self.requests_made = 0
        self.active = 0
        self.max_active = 0
        # Set by from_config when it starts cleaning up the cache it opened
        self.cleanup_thread: threading.Thread | None = None

    @classmethod
    def from_config(cls, config: Config, client: IndexClient, cache: MetadataCache | None = None) -> ConcurrentFetcher:
        cleanup = False
        if cache is None:
            if config["cache.enabled"]:
                cache = MetadataCache(f"{config['cache_dir']}/metadata", ttl=config["cache.ttl"])
                cleanup = True
            else:
                cache = NullMetadataCache()
        fetcher = cls(
            client,
            cache,
            max_concurrency=config["max_concurrency"],
            max_attempts=config["retry.max_attempts"],
            backoff_base=config["retry.backoff_base"],
            timeout=config["request_timeout"],
        )
        if cleanup:
            fetcher.cleanup_thread = cache.cleanup_in_background()
        return fetcher

    def _bind_loop(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._loop = loop
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._inflight = {}
        return self._semaphore

    async def fetch(self, key: str) -> FetchResult:
        """Return the document at ``key``, from the cache when it is fresh."""
        self._bind_loop()
        # File reads and writes of the cache run in worker threads, off the event loop
        entry = await asyncio.to_thread(self.cache.get, key)
        if entry is not None:
            logger.debug("Using cached response for %s", key)
            return FetchResult(key, entry.value, entry.content_type, from_cache=True)

        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._fetch_remote(key))
            self._inflight[key] = future

            def _done(fut: asyncio.Future[FetchResult]) -> None:
                if self._inflight.get(key) is fut:
                    del self._inflight[key]
                if not fut.cancelled():
                    # Mark the exception as retrieved even if every waiter is gone
                    fut.exception()

            future.add_done_callback(_done)
        else:
            logger.debug("Joining the in-flight request for %s", key)
        return await asyncio.shield(future)

    async def fetch_many(self, keys: Iterable[str]) -> list[FetchResult | BaseException]:
        """Fetch all keys concurrently. Failures are returned in place of results."""
        return await asyncio.gather(*(self.fetch(key) for key in keys), return_exceptions=True)

    async def _attempt(self, key: str) -> FetchResult:
        semaphore = self._bind_loop()
        async with semaphore:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.requests_made += 1
            try:
                resp = await asyncio.wait_for(self.client.get(key, timeout=self.timeout), self.timeout)
            finally:
                self.active -= 1
        return FetchResult(key, resp.body, resp.content_type)

    async def _fetch_remote(self, key: str) -> FetchResult:
        last_cause: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self._attempt(key)
            except PackageNotFoundError:
                raise
            except (httpx.HTTPError, asyncio.TimeoutError) as e:
                if not _is_retryable(e):
                    raise FetchError(key, e, attempt) from e
                last_cause = e
                logger.debug("Attempt %d of %d to fetch %s failed: %r", attempt, self.max_attempts, key, e)
            else:
                await asyncio.to_thread(self.cache.set, key, result.body, result.content_type)
                return dataclasses.replace(result, attempts=attempt)
            if attempt < self.max_attempts:
                delay = self.backoff_base * 2 ** (attempt - 1)
                logger.debug("Retrying %s in %.2f seconds", key, delay)
                await self._sleep(delay)
        raise FetchError(key, last_cause, self.max_attempts) from last_cause
