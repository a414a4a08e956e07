from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from maps_explorer.errors import MissingTokenPrerequisiteError, TokenExchangeError

logger = logging.getLogger("uvicorn.error")

DEFAULT_EXPIRES_IN_SECONDS = 3599
_ERROR_BODY_PREVIEW_CHARS = 500


@dataclass(frozen=True, slots=True)
class CachedToken:
    access_token: str
    expires_at: float


class TokenCache:
    """Single-slot holder for the most recent bearer token.

    ``set`` replaces the slot wholesale; concurrent writers simply race and the
    last one wins.
    """

    def __init__(
        self,
        *,
        refresh_margin_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._slot: CachedToken | None = None
        self._refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def get(self) -> CachedToken | None:
        return self._slot

    def set(self, token: CachedToken) -> None:
        self._slot = token

    def clear(self) -> None:
        self._slot = None

    def is_valid(self) -> bool:
        token = self._slot
        if token is None or not token.access_token:
            return False
        return token.expires_at > self._clock() + self._refresh_margin_seconds


@dataclass(slots=True)
class ClientCredentialsConfig:
    tenant_id: str | None
    client_id: str | None
    client_secret: str | None
    scope: str
    authority_host: str = "https://login.microsoftonline.com"

    def token_url(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"


class EntraTokenProvider:
    """Client-credentials token source backed by a :class:`TokenCache`."""

    def __init__(
        self,
        *,
        config: ClientCredentialsConfig,
        cache: TokenCache,
        client_getter: Callable[[], httpx.AsyncClient],
        timeout_seconds: float = 20.0,
    ) -> None:
        self._config = config
        self._cache = cache
        self._client_getter = client_getter
        self._timeout_seconds = timeout_seconds
        self._refresh_lock = asyncio.Lock()

    @property
    def cache(self) -> TokenCache:
        return self._cache

    async def get_token(self) -> str:
        cached = self._cache.get()
        if cached is not None and self._cache.is_valid():
            return cached.access_token

        async with self._refresh_lock:
            # Another waiter may have refreshed while this one was queued.
            cached = self._cache.get()
            if cached is not None and self._cache.is_valid():
                return cached.access_token
            token = await self.exchange()
            self._cache.set(token)
            return token.access_token

    async def exchange(self) -> CachedToken:
        config = self._config
        if not config.tenant_id:
            raise MissingTokenPrerequisiteError("tenant_id")
        if not config.client_id:
            raise MissingTokenPrerequisiteError("client_id")
        if not config.client_secret:
            raise MissingTokenPrerequisiteError("client_secret")

        logger.info("token_exchange_start tenant=%s", config.tenant_id)
        response = await self._client_getter().post(
            config.token_url(),
            data={
                "grant_type": "client_credentials",
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "scope": config.scope,
            },
            headers={"Accept": "application/json"},
            timeout=self._timeout_seconds,
        )

        if not response.is_success:
            preview = response.text[:_ERROR_BODY_PREVIEW_CHARS]
            logger.warning("token_exchange_error status=%d", response.status_code)
            raise TokenExchangeError(f"token_error:{response.status_code}:{preview}")

        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("token_exchange_error reason=invalid_json")
            raise TokenExchangeError("token_error:invalid_json") from exc

        raw_access = payload.get("access_token") if isinstance(payload, dict) else None
        access_token = str(raw_access).strip() if raw_access is not None else ""
        if not access_token:
            logger.warning("token_exchange_error reason=missing_access_token")
            raise TokenExchangeError("token_error:missing_access_token")

        expires_in = _coerce_expires_in(payload.get("expires_in"))
        token = CachedToken(
            access_token=access_token,
            expires_at=self._cache.now() + expires_in,
        )
        logger.info("token_exchange_success expires_in=%d", expires_in)
        return token


def _coerce_expires_in(value: object) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS
