from __future__ import annotations

import asyncio
from typing import Any

from maps_explorer.credentials import CredentialResolver, KeyCredential
from maps_explorer.errors import ErrorCode
from maps_explorer.pipeline import MapsProxyPipeline
from maps_explorer.proxy import ForwardResult, build_upstream_url


class StubTokenSource:
    async def get_token(self) -> str:
        raise AssertionError("token exchange must not run")


class RecordingForwarder:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, Any]] = []

    async def forward(self, normalized: Any, credential: Any) -> ForwardResult:
        self.calls.append((normalized, credential))
        return ForwardResult(
            status=200,
            status_text="OK",
            url=build_upstream_url(normalized),
            duration_ms=3,
            body={"ok": True},
            raw='{"ok": true}',
        )


def _pipeline(**resolver_kwargs: Any) -> tuple[MapsProxyPipeline, RecordingForwarder, list]:
    events: list[dict[str, Any]] = []
    forwarder = RecordingForwarder()
    pipeline = MapsProxyPipeline(
        resolver=CredentialResolver(token_source=StubTokenSource(), **resolver_kwargs),
        forwarder=forwarder,  # type: ignore[arg-type]
        default_base_url="https://atlas.microsoft.com",
        audit_hook=events.append,
    )
    return pipeline, forwarder, events


def test_successful_request_flows_through_every_stage() -> None:
    pipeline, forwarder, events = _pipeline(default_api_key="k")
    envelope = asyncio.run(
        pipeline.execute({"path": "search/fuzzy/json", "params": {"query": "cafe"}})
    )
    assert envelope.status == 200
    assert envelope.error_code is None
    (normalized, credential), = forwarder.calls
    assert normalized.query_string == "query=cafe"
    assert credential == KeyCredential(value="k")
    assert events[0]["auth"] == "key"
    assert events[0]["url"] == "https://atlas.microsoft.com/search/fuzzy/json"


def test_validation_failure_skips_credentials_and_forwarding() -> None:
    pipeline, forwarder, events = _pipeline()
    envelope = asyncio.run(pipeline.execute({"path": "https://evil.example"}))
    assert envelope.error_code == ErrorCode.INVALID_PATH.value
    assert forwarder.calls == []
    assert events[0]["status"] == 400


def test_credential_failure_skips_forwarding() -> None:
    pipeline, forwarder, _events = _pipeline()
    envelope = asyncio.run(pipeline.execute({"path": "search"}))
    assert envelope.status == 500
    assert envelope.error_code == ErrorCode.MISSING_MAPS_CLIENT_ID.value
    assert envelope.meta.url == "https://atlas.microsoft.com/search"
    assert forwarder.calls == []


def test_non_object_payload_is_invalid_json() -> None:
    pipeline, forwarder, _events = _pipeline(default_api_key="k")
    for payload in (None, [], "search", 3):
        envelope = asyncio.run(pipeline.execute(payload))
        assert envelope.error_code == ErrorCode.INVALID_JSON.value
    assert forwarder.calls == []
