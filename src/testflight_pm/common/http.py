"""HTTP client and header helpers shared by the App Store Connect and Linear clients."""

from __future__ import annotations

from typing import Dict, Optional

import httpx

USER_AGENT = "TestFlight-PM/1.0"

# Apple's signed screenshot URLs reject some non-browser agents.
BROWSER_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


def build_headers(
    bearer_token: Optional[str] = None,
    api_key: Optional[str] = None,
    accept: str = "application/json",
) -> Dict[str, str]:
    headers: Dict[str, str] = {"User-Agent": USER_AGENT, "Accept": accept}
    if bearer_token:
        headers["Authorization"] = f"Bearer {bearer_token}"
    if api_key:
        # Linear personal API keys go in Authorization without a scheme.
        headers["Authorization"] = api_key
    return headers


def http_client(
    base_url: str = "",
    timeout: float = 30.0,
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Provide a configured async HTTP client.

    ``transport`` lets tests swap in ``httpx.MockTransport``.
    """

    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        headers=headers or {"User-Agent": USER_AGENT},
        transport=transport,
        follow_redirects=True,
    )


__all__ = ["BROWSER_HEADERS", "USER_AGENT", "build_headers", "http_client"]
