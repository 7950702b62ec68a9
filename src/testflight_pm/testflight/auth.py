"""App Store Connect bearer tokens.

The request executor only needs something with ``get_valid_token()``; the
default provider mints ES256 JWTs from an API key the way Apple documents.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from jose import jwt
from jose.exceptions import JOSEError

from ..common.config import Settings
from ..common.logging import get_logger
from ..errors import AuthError, ConfigurationError

LOGGER = get_logger(__name__)

AUDIENCE = "appstoreconnect-v1"
REFRESH_MARGIN_SECONDS = 60


@runtime_checkable
class TokenProvider(Protocol):
    async def get_valid_token(self) -> str:
        ...


class StaticTokenProvider:
    """Hands out a pre-minted token (tests, CI secrets)."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_valid_token(self) -> str:
        if not self._token:
            raise AuthError("No App Store Connect token configured")
        return self._token


class AppStoreConnectTokenProvider:
    """Mint and cache ES256 JWTs for the App Store Connect API."""

    def __init__(
        self,
        key_id: str,
        issuer_id: str,
        private_key: str,
        ttl_seconds: int = 1200,
    ) -> None:
        self._key_id = key_id
        self._issuer_id = issuer_id
        self._private_key = private_key
        self._ttl = min(ttl_seconds, 1200)
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppStoreConnectTokenProvider":
        private_key = settings.app_store_connect_private_key
        if not private_key and settings.app_store_connect_private_key_path:
            path = Path(settings.app_store_connect_private_key_path)
            try:
                private_key = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigurationError(f"Cannot read App Store Connect key {path}: {exc}") from exc

        missing = [
            name
            for name, value in (
                ("APP_STORE_CONNECT_KEY_ID", settings.app_store_connect_key_id),
                ("APP_STORE_CONNECT_ISSUER_ID", settings.app_store_connect_issuer_id),
                ("APP_STORE_CONNECT_PRIVATE_KEY", private_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing App Store Connect credentials: {', '.join(missing)}")

        return cls(
            key_id=settings.app_store_connect_key_id,  # type: ignore[arg-type]
            issuer_id=settings.app_store_connect_issuer_id,  # type: ignore[arg-type]
            private_key=private_key,  # type: ignore[arg-type]
            ttl_seconds=settings.app_store_connect_token_ttl_seconds,
        )

    async def get_valid_token(self) -> str:
        now = time.time()
        if self._token and now < self._expires_at - REFRESH_MARGIN_SECONDS:
            return self._token

        claims = {
            "iss": self._issuer_id,
            "iat": int(now),
            "exp": int(now) + self._ttl,
            "aud": AUDIENCE,
        }
        try:
            token = jwt.encode(
                claims,
                self._private_key,
                algorithm="ES256",
                headers={"kid": self._key_id, "typ": "JWT"},
            )
        except (JOSEError, ValueError) as exc:
            raise AuthError(f"Failed to sign App Store Connect token: {exc}") from exc

        self._token = token
        self._expires_at = now + self._ttl
        LOGGER.debug("Minted App Store Connect token", key_id=self._key_id, ttl=self._ttl)
        return token


__all__ = ["AppStoreConnectTokenProvider", "StaticTokenProvider", "TokenProvider"]
