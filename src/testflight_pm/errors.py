"""Error taxonomy shared by the TestFlight fetcher and the Linear filer."""

from __future__ import annotations

from typing import Any, List, Optional


class TestFlightPMError(Exception):
    """Base class for every error raised by this package."""

    __test__ = False  # keep pytest from collecting the class


class ConfigurationError(TestFlightPMError):
    """Missing or inconsistent app identity or credentials. Never retried."""


class RequestError(TestFlightPMError):
    """An outbound App Store Connect request failed."""

    retryable = False

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is not None and f"HTTP {self.status}" not in self.message:
            return f"{self.message} (HTTP {self.status})"
        return self.message


class AuthError(RequestError):
    """401/403 from the source API, or a token that cannot be minted."""


class ClientError(RequestError):
    """Any other 4xx: the request itself is wrong."""


class RetryableTransportError(RequestError):
    """429, 5xx, timeouts and transient network failures.

    Once retries are exhausted the final instance carries the attempt count
    and the per-attempt messages in ``history``.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        attempts: int = 1,
        history: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message, status)
        self.attempts = attempts
        self.history = list(history or [])


class DuplicateCheckError(TestFlightPMError):
    """Every duplicate-search attempt failed; issue creation must not proceed."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class AssetError(TestFlightPMError):
    """A screenshot could not be downloaded or uploaded."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class UploadUnavailableError(AssetError):
    """Linear refused to hand out upload targets at all (401/403), so no image can be uploaded."""


class LabelResolutionError(TestFlightPMError):
    """Label names could not be mapped to Linear label ids."""


class TrackerError(TestFlightPMError):
    """Linear GraphQL call failed at the transport or GraphQL level."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[Any]] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors or []
        self.status = status


class IssueCreationError(TestFlightPMError):
    """The create call reported failure or returned no issue."""


__all__ = [
    "AssetError",
    "AuthError",
    "ClientError",
    "ConfigurationError",
    "DuplicateCheckError",
    "IssueCreationError",
    "LabelResolutionError",
    "RequestError",
    "RetryableTransportError",
    "TestFlightPMError",
    "TrackerError",
    "UploadUnavailableError",
]
