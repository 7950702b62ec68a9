"""Download and cache screenshots before their signed URLs expire.

TestFlight screenshot URLs are only valid for a short window, while filing an
issue can happen much later (rate-limit waits, duplicate-search backoff). The
acquirer runs right after each screenshot record is fetched and stores the raw
bytes on :attr:`ImageRef.cached_data`; every later consumer prefers those
bytes over the URL.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Iterable, Optional

import httpx

from ..common.http import BROWSER_HEADERS, http_client
from ..common.logging import get_logger
from ..errors import AssetError
from ..models import ImageRef, utcnow
from ..retry import BackoffPolicy, RetryError, SleepFn, last_exception

LOGGER = get_logger(__name__)


class _TransientDownloadError(AssetError):
    """5xx or transport failure; worth another attempt."""


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, _TransientDownloadError)


DOWNLOAD_POLICY = BackoffPolicy(
    max_attempts=3,
    base_delay=2.0,
    retryable=_is_transient,
    name="screenshot-download",
)


class ScreenshotAcquirer:
    """Fetches signed-URL images with retry and caches their bytes in place."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        policy: BackoffPolicy = DOWNLOAD_POLICY,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client or http_client(timeout=timeout, headers=dict(BROWSER_HEADERS))
        self._policy = policy
        self._sleep = sleep
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    async def acquire(self, images: Iterable[ImageRef]) -> int:
        """Populate ``cached_data`` on every image that can still be fetched.

        Failures are logged and leave ``cached_data`` unset; the image stays in
        the caller's list. Returns the number of images holding bytes afterwards.
        """
        cached = 0
        for image in images:
            if image.is_cached:
                cached += 1
                continue
            try:
                data = await self.download(image)
            except AssetError as exc:
                LOGGER.warning("Failed to pre-download screenshot", file_name=image.file_name, error=str(exc))
                continue
            if data is not None:
                image.cached_data = data
                cached += 1
                LOGGER.info("Cached screenshot", file_name=image.file_name, size=len(data))
        return cached

    async def download(self, image: ImageRef) -> Optional[bytes]:
        """Download one image, or return ``None`` when its URL has expired.

        Raises:
            AssetError: 4xx (not retried) or retries exhausted on 5xx/network
        """
        if image.is_expired(self._clock()):
            LOGGER.warning("Screenshot URL expired, skipping", file_name=image.file_name, expires_at=image.expires_at.isoformat())
            return None

        try:
            async for attempt in self._policy.retrying(sleep=self._sleep, file_name=image.file_name):
                with attempt:
                    data = await self._fetch_once(image)
                    if image.file_size > 0 and len(data) != image.file_size:
                        LOGGER.warning(
                            "Screenshot size mismatch",
                            file_name=image.file_name,
                            expected=image.file_size,
                            actual=len(data),
                        )
                    return data
        except RetryError as exc:
            last = last_exception(exc)
            raise AssetError(
                f"Failed to download {image.file_name} after {self._policy.max_attempts} attempts: {last}",
                status=getattr(last, "status", None),
            ) from last
        return None  # pragma: no cover

    async def _fetch_once(self, image: ImageRef) -> bytes:
        try:
            response = await self._client.get(image.url, headers=BROWSER_HEADERS)
        except httpx.TransportError as exc:
            raise _TransientDownloadError(f"{type(exc).__name__}: {exc}") from exc

        if response.is_success:
            return response.content

        reason = f"{response.status_code} {response.reason_phrase}"
        if response.status_code >= 500:
            raise _TransientDownloadError(reason, status=response.status_code)
        raise AssetError(f"Screenshot download rejected: {reason}", status=response.status_code)


__all__ = ["DOWNLOAD_POLICY", "ScreenshotAcquirer"]
