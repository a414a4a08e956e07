from __future__ import annotations

from enum import Enum

TOKEN_ERROR_FALLBACK = "token_error"
REQUEST_FAILED_FALLBACK = "request_failed"


class ErrorCode(str, Enum):
    INVALID_JSON = "invalid_json"
    INVALID_PATH = "invalid_path"
    INVALID_METHOD = "invalid_method"
    INVALID_BASE_URL = "invalid_base_url"
    MISSING_MAPS_CLIENT_ID = "missing_maps_client_id"
    MISSING_CREDENTIALS = "missing_credentials"
    TOKEN_ERROR = "token_error"
    REQUEST_FAILED = "request_failed"


class ProxyError(Exception):
    """A request that was stopped locally, before or instead of reaching upstream."""

    def __init__(
        self,
        code: ErrorCode,
        *,
        status: int,
        status_text: str,
        message: str,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.status_text = status_text
        self.message = message


class InvalidRequestError(ProxyError):
    def __init__(self, code: ErrorCode, *, status_text: str, message: str) -> None:
        super().__init__(code, status=400, status_text=status_text, message=message)


class CredentialError(ProxyError):
    def __init__(self, code: ErrorCode, *, status_text: str, message: str) -> None:
        super().__init__(code, status=500, status_text=status_text, message=message)


class TokenExchangeError(RuntimeError):
    """Raised when the identity provider does not hand out a token."""


class MissingTokenPrerequisiteError(TokenExchangeError):
    """Raised before any network call when tenant, client id or secret is unset."""

    def __init__(self, name: str) -> None:
        super().__init__(f"missing_{name}")
        self.name = name


def exception_message(exc: BaseException, fallback: str) -> str:
    message = str(exc).strip()
    return message or fallback
