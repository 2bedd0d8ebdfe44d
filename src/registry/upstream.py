"""Asynchronous upstream client for archive index downloads."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Set

import aiohttp

from common.errors import FetchError, TransactionInProgressError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from constants import Constants

logger = logging.getLogger(__name__)


class DownloadTracker:
    """The set of archives with downloads in flight.

    Only one download cycle per archive may run at a time; entering a second
    one raises ``TransactionInProgressError``.
    """

    def __init__(self) -> None:
        self._in_progress: Set[str] = set()

    @property
    def in_progress(self) -> frozenset:
        return frozenset(self._in_progress)

    def busy(self, archive: Optional[str] = None) -> bool:
        if archive is None:
            return bool(self._in_progress)
        return archive in self._in_progress

    def ensure_idle(self, archives) -> None:
        for archive in archives:
            if archive in self._in_progress:
                raise TransactionInProgressError(archive)

    @contextmanager
    def track(self, archive: str) -> Iterator[None]:
        if archive in self._in_progress:
            raise TransactionInProgressError(archive)
        self._in_progress.add(archive)
        try:
            yield
        finally:
            self._in_progress.discard(archive)


class UpstreamClient:
    """Client for fetching files from remote archives."""

    def __init__(
        self,
        timeout: int = Constants.REQUEST_TIMEOUT,
        max_bytes: int = Constants.MAX_INDEX_BYTES,
    ):
        """Initialize the upstream client.

        Args:
            timeout: Request timeout in seconds.
            max_bytes: Largest response body accepted.
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_bytes = max_bytes
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=16)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                headers={"User-Agent": Constants.USER_AGENT},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "UpstreamClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def fetch(self, url: str, *, archive: str, allow_missing: bool = False) -> Optional[bytes]:
        """Fetch ``url`` and return its body.

        Returns None for HTTP 404 when ``allow_missing`` is set.

        Raises:
            FetchError: On network failure, timeout, error status or oversize body.
        """
        if self._session is None:
            await self.start()
        safe_target = safe_url(url)
        with Timer() as t:
            try:
                async with self._session.get(url) as response:
                    if response.status == 404 and allow_missing:
                        return None
                    if response.status >= 400:
                        raise FetchError(
                            f"HTTP {response.status} for {safe_target}",
                            archive=archive,
                            url=safe_target,
                            status=response.status,
                        )
                    if response.content_length and response.content_length > self._max_bytes:
                        raise FetchError(f"Response too large for {safe_target}", archive=archive, url=safe_target)
                    body = await response.content.read(self._max_bytes + 1)
                    if len(body) > self._max_bytes:
                        raise FetchError(f"Response too large for {safe_target}", archive=archive, url=safe_target)
            except asyncio.TimeoutError as exc:
                raise FetchError(f"Timed out fetching {safe_target}", archive=archive, url=safe_target) from exc
            except aiohttp.ClientError as exc:
                raise FetchError(f"Error fetching {safe_target}: {exc}", archive=archive, url=safe_target) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "Upstream fetch ok",
                extra=extra_context(
                    event="http_response",
                    component="upstream",
                    action="GET",
                    target=safe_target,
                    duration_ms=t.duration_ms(),
                    size=len(body),
                ),
            )
        return body
