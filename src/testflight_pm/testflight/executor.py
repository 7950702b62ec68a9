"""Rate-limited, retrying executor for App Store Connect GET requests.

Every call to the source API goes through :meth:`RequestExecutor.execute`:

- blocks until the rate-limit window resets when few requests remain
- injects a fresh bearer token and a fixed timeout
- classifies failures (auth / client / retryable) from status and body
- retries retryable failures with exponential backoff plus jitter
- refreshes the rate-limit snapshot from every response, good or bad
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import httpx

from ..common.config import Settings
from ..common.http import build_headers, http_client
from ..common.logging import get_logger
from ..errors import AuthError, ClientError, RequestError, RetryableTransportError
from ..models import RateLimitSnapshot, utcnow
from ..retry import BackoffPolicy, RetryError, SleepFn, last_exception
from .auth import TokenProvider

LOGGER = get_logger(__name__)

RETRYABLE_MESSAGE_MARKERS = (
    "timeout",
    "network",
    "temporarily unavailable",
    "service unavailable",
)


@dataclass
class QueryParams:
    """JSON:API query parameters understood by App Store Connect."""

    limit: Optional[int] = None
    sort: Optional[str] = None
    include: Optional[str] = None
    filter: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def coerce(cls, params: Union["QueryParams", Mapping[str, Any], None]) -> "QueryParams":
        if params is None:
            return cls()
        if isinstance(params, QueryParams):
            return params
        return cls(
            limit=params.get("limit"),
            sort=params.get("sort"),
            include=params.get("include"),
            filter=dict(params.get("filter") or {}),
            fields=dict(params.get("fields") or {}),
        )

    def merged(self, **overrides: Any) -> "QueryParams":
        values = {
            "limit": self.limit,
            "sort": self.sort,
            "include": self.include,
            "filter": dict(self.filter),
            "fields": dict(self.fields),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return QueryParams(**values)

    def to_query(self) -> List[Tuple[str, str]]:
        query: List[Tuple[str, str]] = []
        if self.limit:
            query.append(("limit", str(self.limit)))
        if self.sort:
            query.append(("sort", self.sort))
        if self.include:
            query.append(("include", self.include))
        for key, value in self.filter.items():
            query.append((f"filter[{key}]", value))
        for key, value in self.fields.items():
            query.append((f"fields[{key}]", value))
        return query


@dataclass
class RequestOptions:
    max_attempts: Optional[int] = None
    retry_delay: Optional[float] = None
    timeout: Optional[float] = None


def is_retryable_failure(status: Optional[int], message: str) -> bool:
    """Decide whether a failed response is worth another attempt."""
    if status in (401, 403):
        return False
    if status == 429:
        return True
    if status is not None and status >= 500:
        return True
    lowered = message.lower()
    return any(marker in lowered for marker in RETRYABLE_MESSAGE_MARKERS)


def classify_failure(status: Optional[int], message: str) -> RequestError:
    if status in (401, 403):
        return AuthError(message, status)
    if is_retryable_failure(status, message):
        return RetryableTransportError(message, status)
    return ClientError(message, status)


def _retry_transport_errors(exc: BaseException) -> bool:
    return isinstance(exc, RetryableTransportError)


class RequestExecutor:
    """Executes authenticated App Store Connect requests."""

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = "https://api.appstoreconnect.apple.com/v1",
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        rate_limit_floor: int = 5,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._token_provider = token_provider
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._rate_limit_floor = rate_limit_floor
        self._client = client or http_client(timeout=timeout, headers=build_headers())
        self._sleep = sleep
        self._clock = clock
        self._rate_limit: Optional[RateLimitSnapshot] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        token_provider: TokenProvider,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> "RequestExecutor":
        return cls(
            token_provider=token_provider,
            base_url=settings.app_store_connect_base_url,
            timeout=settings.testflight_timeout,
            max_attempts=settings.testflight_max_attempts,
            retry_delay=settings.testflight_retry_delay,
            rate_limit_floor=settings.rate_limit_floor,
            client=client,
            sleep=sleep,
        )

    @property
    def rate_limit(self) -> Optional[RateLimitSnapshot]:
        return self._rate_limit

    @property
    def token_provider(self) -> TokenProvider:
        return self._token_provider

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RequestExecutor":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def build_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    async def execute(
        self,
        endpoint: str,
        params: Union[QueryParams, Mapping[str, Any], None] = None,
        options: Optional[RequestOptions] = None,
    ) -> Dict[str, Any]:
        """GET ``endpoint`` and return the decoded JSON body.

        Raises:
            AuthError: 401/403 or a token that cannot be obtained (no retry)
            ClientError: any other 4xx (no retry)
            RetryableTransportError: retryable failures on every attempt
        """
        options = options or RequestOptions()
        query = QueryParams.coerce(params).to_query()
        timeout = options.timeout or self._timeout
        policy = BackoffPolicy(
            max_attempts=options.max_attempts or self._max_attempts,
            base_delay=options.retry_delay if options.retry_delay is not None else self._retry_delay,
            jitter_ratio=0.1,
            retryable=_retry_transport_errors,
            name="app-store-connect-request",
        )
        history: List[str] = []

        try:
            async for attempt in policy.retrying(sleep=self._sleep, endpoint=endpoint):
                with attempt:
                    try:
                        return await self._dispatch(endpoint, query, timeout, attempt.retry_state.attempt_number, policy.max_attempts)
                    except RequestError as exc:
                        history.append(str(exc))
                        if not exc.retryable:
                            self._log_non_retryable(endpoint, exc)
                        raise
        except RetryError as exc:
            last = last_exception(exc)
            status = getattr(last, "status", None)
            message = getattr(last, "message", str(last))
            LOGGER.error(
                "Request failed after all attempts",
                endpoint=endpoint,
                attempts=policy.max_attempts,
                status=status,
                error=message,
            )
            raise RetryableTransportError(
                f"Request failed after {policy.max_attempts} attempts: {message}",
                status=status,
                attempts=policy.max_attempts,
                history=history,
            ) from last

        raise RetryableTransportError(f"Request to {endpoint} made no attempts")  # pragma: no cover

    async def _dispatch(
        self,
        endpoint: str,
        query: List[Tuple[str, str]],
        timeout: float,
        attempt: int,
        max_attempts: int,
    ) -> Dict[str, Any]:
        await self._wait_for_rate_limit()

        try:
            token = await self._token_provider.get_valid_token()
        except RequestError:
            raise
        except Exception as exc:
            raise AuthError(f"Failed to obtain App Store Connect token: {exc}") from exc

        url = self.build_url(endpoint)
        LOGGER.debug("API request", url=url, attempt=attempt, max_attempts=max_attempts)
        try:
            response = await self._client.get(
                url,
                params=query,
                headers=build_headers(bearer_token=token),
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            raise RetryableTransportError(f"Request timeout for {endpoint}: {exc}") from exc
        except httpx.TransportError as exc:
            raise RetryableTransportError(f"network error for {endpoint}: {exc}") from exc

        self._update_rate_limit(response)

        if response.is_success:
            return response.json()

        message = self._error_message(response)
        raise classify_failure(response.status_code, message)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
            errors = payload["errors"]
            details = "; ".join(f"{e.get('title', '')}: {e.get('detail', '')}" for e in errors)
        except (ValueError, KeyError, TypeError, AttributeError):
            return f"HTTP {response.status_code}: {response.reason_phrase}"
        return f"API Error: {details}"

    def _log_non_retryable(self, endpoint: str, exc: RequestError) -> None:
        if isinstance(exc, AuthError):
            LOGGER.error("Authentication error, not retrying", endpoint=endpoint, error=str(exc))
            return
        LOGGER.error("Client error, not retrying", endpoint=endpoint, status=exc.status, error=str(exc))
        if exc.status == 404 or "does not exist" in exc.message:
            LOGGER.error(
                "Resource not found; check the app id / bundle id and API key permissions",
                endpoint=endpoint,
            )

    def _update_rate_limit(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        limit = response.headers.get("X-RateLimit-Limit")
        if not (remaining and reset and limit):
            return
        try:
            self._rate_limit = RateLimitSnapshot(
                remaining=int(remaining),
                reset=datetime.fromtimestamp(int(reset), tz=timezone.utc),
                limit=int(limit),
            )
        except ValueError:
            LOGGER.debug("Ignoring malformed rate-limit headers", remaining=remaining, reset=reset, limit=limit)

    async def _wait_for_rate_limit(self) -> None:
        snapshot = self._rate_limit
        if snapshot is None or snapshot.remaining > self._rate_limit_floor:
            return
        wait_seconds = (snapshot.reset - self._clock()).total_seconds()
        if wait_seconds > 0:
            LOGGER.info(
                "Rate limit approaching, waiting for reset",
                remaining=snapshot.remaining,
                wait_seconds=round(wait_seconds, 1),
            )
            await self._sleep(wait_seconds)


__all__ = [
    "QueryParams",
    "RequestExecutor",
    "RequestOptions",
    "classify_failure",
    "is_retryable_failure",
]
