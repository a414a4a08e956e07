from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from maps_explorer.credentials import BearerCredential, ResolvedCredential
from maps_explorer.errors import REQUEST_FAILED_FALLBACK, ErrorCode
from maps_explorer.validation import NormalizedRequest

SAFE_RESPONSE_HEADERS = (
    "content-type",
    "x-ms-request-id",
    "x-ms-correlation-request-id",
    "x-ms-azuremaps-tracking-id",
)

DEFAULT_TIMEOUT_SECONDS = 20.0

# httpx encodes header values as ASCII and raises InvalidURL outside its
# HTTPError tree.
UPSTREAM_FAILURES = (TimeoutError, httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError)

logger = logging.getLogger("uvicorn.error")


@dataclass(slots=True)
class ForwardResult:
    status: int
    status_text: str
    url: str
    duration_ms: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    raw: str = ""
    error_code: ErrorCode | None = None
    error_message: str | None = None

    @property
    def failed(self) -> bool:
        return self.error_code is not None


@dataclass(slots=True)
class BinaryResult:
    """Outcome of a static-map fetch.

    On success ``upstream`` is an open streaming response; whoever consumes the
    body must close it. Failed and non-2xx results never hold an open response.
    """

    status: int
    url: str
    duration_ms: int
    upstream: httpx.Response | None = None
    content_type: str | None = None
    details: str = ""
    error_message: str | None = None

    @property
    def failed(self) -> bool:
        return self.error_message is not None

    @property
    def ok(self) -> bool:
        return not self.failed and 200 <= self.status < 300


def build_upstream_url(normalized: NormalizedRequest) -> str:
    url = f"{normalized.base_url}/{normalized.path}"
    if normalized.query_string:
        url = f"{url}?{normalized.query_string}"
    return url


def build_auth_headers(credential: ResolvedCredential) -> dict[str, str]:
    if isinstance(credential, BearerCredential):
        return {
            "Authorization": f"Bearer {credential.token}",
            "x-ms-client-id": credential.client_header_id,
        }
    return {"subscription-key": credential.value}


def curate_response_headers(headers: Mapping[str, str]) -> dict[str, str]:
    curated: dict[str, str] = {}
    lowered = {name.lower(): value for name, value in headers.items()}
    for name in SAFE_RESPONSE_HEADERS:
        value = lowered.get(name)
        if value:
            curated[name] = value
    return curated


def _is_json_content_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def parse_body(raw: str, content_type: str | None) -> Any:
    if not _is_json_content_type(content_type):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _elapsed_ms(started: float) -> int:
    return max(0, math.ceil((time.monotonic() - started) * 1000.0))


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return "The upstream request timed out."
    if isinstance(exc, UnicodeEncodeError):
        # The offending text may be a credential; do not echo it.
        return "The upstream request contains characters that cannot be encoded."
    message = str(exc).strip()
    if not message:
        return REQUEST_FAILED_FALLBACK
    return f"{exc.__class__.__name__}: {message}"


class UpstreamForwarder:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def forward(
        self,
        normalized: NormalizedRequest,
        credential: ResolvedCredential,
        *,
        timeout_seconds: float | None = None,
    ) -> ForwardResult:
        url = build_upstream_url(normalized)
        headers = build_auth_headers(credential)
        content: bytes | None = None
        if normalized.has_body:
            content = json.dumps(normalized.body).encode("utf-8")
            headers["content-type"] = "application/json"

        deadline = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.client.request(
                    normalized.method,
                    url,
                    headers=headers,
                    content=content,
                ),
                timeout=deadline,
            )
        except UPSTREAM_FAILURES as exc:
            duration_ms = _elapsed_ms(started)
            logger.warning(
                "proxy_request_error method=%s path=%s error_type=%s duration_ms=%d",
                normalized.method,
                normalized.path,
                exc.__class__.__name__,
                duration_ms,
            )
            return ForwardResult(
                status=502,
                status_text="Request Failed",
                url=url,
                duration_ms=duration_ms,
                error_code=ErrorCode.REQUEST_FAILED,
                error_message=_failure_message(exc),
            )

        duration_ms = _elapsed_ms(started)
        raw = response.text
        content_type = response.headers.get("content-type")
        return ForwardResult(
            status=response.status_code,
            status_text=response.reason_phrase,
            url=url,
            duration_ms=duration_ms,
            headers=curate_response_headers(response.headers),
            body=parse_body(raw, content_type),
            raw=raw,
        )

    async def fetch_binary(
        self,
        url: str,
        credential: ResolvedCredential,
        *,
        timeout_seconds: float | None = None,
    ) -> BinaryResult:
        deadline = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        started = time.monotonic()
        try:
            request = self.client.build_request(
                "GET", url, headers=build_auth_headers(credential)
            )
            response = await asyncio.wait_for(
                self.client.send(request, stream=True),
                timeout=deadline,
            )
        except UPSTREAM_FAILURES as exc:
            duration_ms = _elapsed_ms(started)
            logger.warning(
                "static_map_error error_type=%s duration_ms=%d",
                exc.__class__.__name__,
                duration_ms,
            )
            return BinaryResult(
                status=502,
                url=url,
                duration_ms=duration_ms,
                error_message=_failure_message(exc),
            )

        content_type = response.headers.get("content-type")
        if 200 <= response.status_code < 300:
            return BinaryResult(
                status=response.status_code,
                url=url,
                duration_ms=_elapsed_ms(started),
                upstream=response,
                content_type=content_type,
            )

        try:
            await response.aread()
            details = response.text
        except httpx.HTTPError:
            details = ""
        finally:
            await response.aclose()
        return BinaryResult(
            status=response.status_code,
            url=url,
            duration_ms=_elapsed_ms(started),
            content_type=content_type,
            details=details,
        )
