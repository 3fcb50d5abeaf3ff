"""Deduplicating, concurrency-bounded fetchers for tile imagery.

Two providers share one contract: ``fetch(url)`` returns the response body of
a successful (2xx) GET and raises otherwise.

* :class:`NetworkProvider` blocks the calling thread. It is meant to be called
  from many worker threads at once (for example FastAPI's thread pool serving
  tile endpoints).
* :class:`AsyncNetworkProvider` suspends the calling task instead. Its state is
  confined to the event loop that drives it.

Both providers keep a table of in-flight fetches keyed by URL. The first caller
for a URL owns the transfer; callers arriving while it runs wait for the same
result. Once the result is recorded the entry lingers for ``grace_period``
seconds so that near-simultaneous duplicates reuse it, then it is evicted and
the next call for that URL performs a fresh transfer. Failures are never
retried here.

Transfers only start after acquiring one of ``max_concurrent_requests`` slots.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_REQUESTS = 6
DEFAULT_GRACE_PERIOD = 1.0
REQUEST_TIMEOUT = httpx.Timeout(60.0)


class FetchError(Exception):
    """Raised when a tile resource cannot be fetched."""


class BadResponseError(FetchError):
    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"bad response {status_code} for {url}")
        self.url = url
        self.status_code = status_code


def _validate_limits(max_concurrent_requests: int, grace_period: float) -> None:
    if int(max_concurrent_requests) <= 0:
        raise ValueError("max_concurrent_requests must be a positive integer.")
    if grace_period < 0:
        raise ValueError("grace_period cannot be negative.")


def _checked_content(url: str, response: httpx.Response) -> bytes:
    if not 200 <= response.status_code <= 299:
        raise BadResponseError(url, response.status_code)
    return response.content


class _InFlightFetch:
    def __init__(self, url: str) -> None:
        self.url = url
        self.done = threading.Event()
        self.content: bytes | None = None
        self.error: Exception | None = None
        self.eviction: threading.Timer | None = None

    def result(self) -> bytes:
        if self.error is not None:
            raise self.error.with_traceback(None)
        if self.content is None:
            raise FetchError(f"fetch for {self.url} recorded no result")
        return self.content


class NetworkProvider:
    """Thread-safe single-flight fetcher backed by :class:`httpx.Client`."""

    mode = "network_provider"

    def __init__(
        self,
        *,
        max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        client: httpx.Client | None = None,
        timeout: httpx.Timeout | float = REQUEST_TIMEOUT,
    ) -> None:
        _validate_limits(max_concurrent_requests, grace_period)
        self.max_concurrent_requests = int(max_concurrent_requests)
        self.grace_period = float(grace_period)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._slots = threading.BoundedSemaphore(self.max_concurrent_requests)
        self._lock = threading.Lock()
        self._in_flight: Dict[str, _InFlightFetch] = {}

    def __enter__(self) -> "NetworkProvider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def fetch(self, url: str) -> bytes:
        url = str(url)
        with self._lock:
            entry = self._in_flight.get(url)
            owner = entry is None
            if owner:
                entry = _InFlightFetch(url)
                self._in_flight[url] = entry

        if not owner:
            entry.done.wait()
            return entry.result()

        try:
            with self._slots:
                entry.content = self._transfer(url)
        except Exception as exc:
            entry.error = exc
        finally:
            if entry.content is None and entry.error is None:
                entry.error = FetchError(f"fetch for {url} was interrupted")
            entry.done.set()
            self._schedule_eviction(entry)

        return entry.result()

    def close(self) -> None:
        with self._lock:
            entries = list(self._in_flight.values())
            self._in_flight.clear()
        for entry in entries:
            if entry.eviction is not None:
                entry.eviction.cancel()
        if self._owns_client:
            self._client.close()

    def _transfer(self, url: str) -> bytes:
        logger.debug("Fetching %s", url)
        try:
            response = self._client.get(url)
            return _checked_content(url, response)
        except (httpx.HTTPError, FetchError) as exc:
            logger.warning("Tile fetch failed for %s: %s", url, exc)
            raise

    def _schedule_eviction(self, entry: _InFlightFetch) -> None:
        if self.grace_period <= 0:
            self._evict(entry)
            return
        timer = threading.Timer(self.grace_period, self._evict, args=(entry,))
        timer.daemon = True
        entry.eviction = timer
        timer.start()

    def _evict(self, entry: _InFlightFetch) -> None:
        with self._lock:
            if self._in_flight.get(entry.url) is entry:
                del self._in_flight[entry.url]


class AsyncNetworkProvider:
    """Single-flight fetcher for asyncio code backed by :class:`httpx.AsyncClient`.

    The in-flight table is only touched from the owning event loop and never
    across an ``await`` between lookup and insert, so it needs no lock.
    """

    mode = "async_network_provider"

    def __init__(
        self,
        *,
        max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | float = REQUEST_TIMEOUT,
    ) -> None:
        _validate_limits(max_concurrent_requests, grace_period)
        self.max_concurrent_requests = int(max_concurrent_requests)
        self.grace_period = float(grace_period)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._slots = asyncio.Semaphore(self.max_concurrent_requests)
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._evictions: Dict[str, asyncio.TimerHandle] = {}

    async def __aenter__(self) -> "AsyncNetworkProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def fetch(self, url: str) -> bytes:
        url = str(url)
        future = self._in_flight.get(url)
        if future is not None:
            # A waiter that gets cancelled must not cancel the shared transfer.
            return await asyncio.shield(future)

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._in_flight[url] = future

        try:
            async with self._slots:
                content = await self._transfer(url)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(content)
        finally:
            if not future.done():
                future.set_exception(FetchError(f"fetch for {url} was interrupted"))
                future.exception()
            self._schedule_eviction(loop, url, future)

        return future.result()

    async def aclose(self) -> None:
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        self._in_flight.clear()
        if self._owns_client:
            await self._client.aclose()

    async def _transfer(self, url: str) -> bytes:
        logger.debug("Fetching %s", url)
        try:
            response = await self._client.get(url)
            return _checked_content(url, response)
        except (httpx.HTTPError, FetchError) as exc:
            logger.warning("Tile fetch failed for %s: %s", url, exc)
            raise

    def _schedule_eviction(
        self, loop: asyncio.AbstractEventLoop, url: str, future: asyncio.Future
    ) -> None:
        if self.grace_period <= 0:
            self._evict(url, future)
            return
        self._evictions[url] = loop.call_later(self.grace_period, self._evict, url, future)

    def _evict(self, url: str, future: asyncio.Future) -> None:
        if self._in_flight.get(url) is future:
            del self._in_flight[url]
            self._evictions.pop(url, None)
