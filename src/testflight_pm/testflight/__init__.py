"""App Store Connect side: auth, request execution, fetch and normalization."""

from .auth import AppStoreConnectTokenProvider, StaticTokenProvider, TokenProvider
from .client import TestFlightClient
from .executor import QueryParams, RequestExecutor, RequestOptions
from .screenshots import ScreenshotAcquirer

__all__ = [
    "AppStoreConnectTokenProvider",
    "QueryParams",
    "RequestExecutor",
    "RequestOptions",
    "ScreenshotAcquirer",
    "StaticTokenProvider",
    "TestFlightClient",
    "TokenProvider",
]
