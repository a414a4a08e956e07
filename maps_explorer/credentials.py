from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol

import httpx

from maps_explorer.errors import (
    TOKEN_ERROR_FALLBACK,
    CredentialError,
    ErrorCode,
    MissingTokenPrerequisiteError,
    TokenExchangeError,
    exception_message,
)
from maps_explorer.models import AuthOverride

logger = logging.getLogger("uvicorn.error")


class TokenSource(Protocol):
    async def get_token(self) -> str: ...


@dataclass(frozen=True, slots=True)
class KeyCredential:
    value: str = field(repr=False)
    kind: Literal["key"] = "key"


@dataclass(frozen=True, slots=True)
class BearerCredential:
    token: str = field(repr=False)
    client_header_id: str
    kind: Literal["bearer"] = "bearer"


ResolvedCredential = KeyCredential | BearerCredential


class CredentialResolver:
    def __init__(
        self,
        *,
        token_source: TokenSource,
        default_api_key: str | None = None,
        default_client_id: str | None = None,
    ) -> None:
        self._token_source = token_source
        self._default_api_key = default_api_key
        self._default_client_id = default_client_id

    async def resolve(self, auth: AuthOverride | None = None) -> ResolvedCredential:
        api_key = (auth.api_key if auth else None) or self._default_api_key
        if api_key:
            return KeyCredential(value=api_key)

        client_id = (auth.client_id if auth else None) or self._default_client_id
        if not client_id:
            raise CredentialError(
                ErrorCode.MISSING_MAPS_CLIENT_ID,
                status_text="Missing Azure Maps Client ID",
                message="AZURE_MAPS_CLIENT_ID is not set.",
            )

        try:
            token = await self._token_source.get_token()
        except MissingTokenPrerequisiteError as exc:
            logger.warning("credential_resolve_error reason=%s", exc)
            raise CredentialError(
                ErrorCode.MISSING_CREDENTIALS,
                status_text="Token Error",
                message=str(exc),
            ) from exc
        except (TokenExchangeError, httpx.HTTPError) as exc:
            logger.warning(
                "credential_resolve_error reason=token_error error_type=%s",
                exc.__class__.__name__,
            )
            raise CredentialError(
                ErrorCode.TOKEN_ERROR,
                status_text="Token Error",
                message=exception_message(exc, TOKEN_ERROR_FALLBACK),
            ) from exc

        return BearerCredential(token=token, client_header_id=client_id)
