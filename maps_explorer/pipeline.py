from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import pydantic

from maps_explorer.credentials import CredentialResolver
from maps_explorer.envelope import (
    envelope_from_error,
    envelope_from_result,
    invalid_json_envelope,
)
from maps_explorer.errors import CredentialError, InvalidRequestError
from maps_explorer.models import RequestDescriptor, ResponseEnvelope
from maps_explorer.proxy import UpstreamForwarder, build_upstream_url
from maps_explorer.validation import NormalizedRequest, normalize_request

logger = logging.getLogger("uvicorn.error")

AuditHook = Callable[[dict[str, Any]], None]


class MapsProxyPipeline:
    """normalize -> resolve credential -> forward -> envelope.

    ``execute`` never raises for a request-level failure; every outcome comes
    back as a :class:`ResponseEnvelope` whose ``meta.status`` is the HTTP
    status to answer with.
    """

    def __init__(
        self,
        *,
        resolver: CredentialResolver,
        forwarder: UpstreamForwarder,
        default_base_url: str,
        audit_hook: AuditHook | None = None,
    ) -> None:
        self._resolver = resolver
        self._forwarder = forwarder
        self._default_base_url = default_base_url
        self._audit_hook = audit_hook

    async def execute(self, payload: Any) -> ResponseEnvelope:
        if not isinstance(payload, dict):
            return self._finish(invalid_json_envelope(), method=None, auth_kind=None)
        try:
            descriptor = RequestDescriptor.model_validate(payload)
        except pydantic.ValidationError:
            return self._finish(invalid_json_envelope(), method=None, auth_kind=None)

        try:
            normalized = normalize_request(
                descriptor, default_base_url=self._default_base_url
            )
        except InvalidRequestError as exc:
            return self._finish(envelope_from_error(exc), method=None, auth_kind=None)

        return await self.execute_normalized(normalized)

    async def execute_normalized(self, normalized: NormalizedRequest) -> ResponseEnvelope:
        try:
            credential = await self._resolver.resolve(normalized.auth)
        except CredentialError as exc:
            return self._finish(
                envelope_from_error(exc, url=build_upstream_url(normalized)),
                method=normalized.method,
                auth_kind=None,
            )

        result = await self._forwarder.forward(normalized, credential)
        return self._finish(
            envelope_from_result(result),
            method=normalized.method,
            auth_kind=credential.kind,
        )

    def _finish(
        self,
        envelope: ResponseEnvelope,
        *,
        method: str | None,
        auth_kind: str | None,
    ) -> ResponseEnvelope:
        meta = envelope.meta
        log = logger.warning if envelope.error_code else logger.info
        log(
            "maps_proxy_request method=%s status=%d error_code=%s duration_ms=%d auth=%s",
            method,
            meta.status,
            envelope.error_code,
            meta.duration_ms,
            auth_kind,
        )
        if self._audit_hook is not None:
            self._audit_hook(
                {
                    "event": "maps_proxy_request",
                    "method": method,
                    "status": meta.status,
                    "error_code": envelope.error_code,
                    "duration_ms": meta.duration_ms,
                    # Query values can carry caller data; keep the endpoint only.
                    "url": meta.url.split("?", 1)[0],
                    "auth": auth_kind,
                }
            )
        return envelope
