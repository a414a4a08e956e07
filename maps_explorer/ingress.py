from __future__ import annotations

import hmac
from typing import Any

import jwt
from fastapi import Request, status
from fastapi.responses import JSONResponse
from jwt import InvalidTokenError

from maps_explorer.settings import Settings


class IngressConfigurationError(RuntimeError):
    """Raised when ingress auth is required but nothing can verify callers."""


class IngressGuard:
    """Optional bearer check in front of the /api routes.

    Callers present either one of the configured static keys or a JWT signed
    with the shared secret.
    """

    def __init__(self, settings: Settings) -> None:
        self.required = settings.ingress_auth_required
        self.api_keys = settings.ingress_api_keys_list
        self.jwt_secret = settings.ingress_jwt_secret
        self.audience = settings.ingress_jwt_audience
        self.issuer = settings.ingress_jwt_issuer
        self.algorithms = settings.ingress_jwt_algorithms_list

        if self.required and not self.api_keys and not self.jwt_secret:
            raise IngressConfigurationError(
                "Ingress auth is required, but neither INGRESS_API_KEYS nor "
                "INGRESS_JWT_SECRET is configured.",
            )

    def _matches_api_key(self, candidate: str) -> bool:
        return any(
            hmac.compare_digest(candidate.encode(), key.encode())
            for key in self.api_keys
        )

    def _verify_jwt(self, token: str) -> dict[str, Any]:
        if not self.jwt_secret:
            raise InvalidTokenError("JWT verification is not configured.")
        return jwt.decode(
            token,
            self.jwt_secret,
            algorithms=self.algorithms,
            audience=self.audience,
            issuer=self.issuer,
            options={"verify_aud": self.audience is not None},
        )

    def check(self, request: Request) -> JSONResponse | None:
        if not self.required:
            return None

        auth_header = request.headers.get("authorization", "")
        scheme, _, token = auth_header.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            return _unauthorized("Missing Bearer token.")

        if self._matches_api_key(token):
            return None
        try:
            self._verify_jwt(token)
        except InvalidTokenError:
            return _unauthorized("Invalid API key or token.")
        return None


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
        content={"message": message},
    )
