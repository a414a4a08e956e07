from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx
import pydantic
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from maps_explorer.audit import JsonlAuditLogger
from maps_explorer.credentials import CredentialResolver
from maps_explorer.errors import (
    TOKEN_ERROR_FALLBACK,
    TokenExchangeError,
    exception_message,
)
from maps_explorer.ingress import IngressGuard
from maps_explorer.mock import mock_envelope
from maps_explorer.models import ResponseEnvelope, StaticMapRequest
from maps_explorer.pipeline import MapsProxyPipeline
from maps_explorer.proxy import UpstreamForwarder
from maps_explorer.settings import Settings, get_settings
from maps_explorer.static_map import (
    coerce_json_number,
    parse_query_number,
    render_static_map,
)
from maps_explorer.token_cache import (
    ClientCredentialsConfig,
    EntraTokenProvider,
    TokenCache,
)

app = FastAPI(
    title="Maps Explorer Proxy",
    description="Same-origin proxy for the Azure Maps REST APIs with key or Entra auth.",
    version="0.1.0",
)

logger = logging.getLogger("uvicorn.error")


def _build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.upstream_timeout_seconds, connect=5.0),
        limits=httpx.Limits(max_connections=128, max_keepalive_connections=32),
    )


@app.middleware("http")
async def ingress_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    if not request.url.path.startswith("/api"):
        return await call_next(request)

    guard: IngressGuard | None = getattr(app.state, "ingress_guard", None)
    if guard is not None:
        rejection = guard.check(request)
        if rejection is not None:
            return rejection

    return await call_next(request)


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    app.state.settings = settings
    app.state.ingress_guard = IngressGuard(settings)
    http_client = _build_http_client(settings)
    app.state.http_client = http_client

    token_provider = EntraTokenProvider(
        config=ClientCredentialsConfig(
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret,
            scope=settings.azure_maps_scope,
            authority_host=settings.azure_authority_host,
        ),
        cache=TokenCache(refresh_margin_seconds=settings.token_refresh_margin_seconds),
        client_getter=lambda: app.state.http_client,
        timeout_seconds=settings.token_timeout_seconds,
    )
    resolver = CredentialResolver(
        token_source=token_provider,
        default_api_key=settings.azure_maps_key,
        default_client_id=settings.azure_maps_client_id,
    )
    forwarder = UpstreamForwarder(
        http_client, timeout_seconds=settings.upstream_timeout_seconds
    )
    audit_logger = JsonlAuditLogger(
        path=settings.audit_log_path,
        enabled=settings.audit_log_enabled,
    )
    app.state.token_provider = token_provider
    app.state.credential_resolver = resolver
    app.state.forwarder = forwarder
    app.state.audit_logger = audit_logger
    app.state.pipeline = MapsProxyPipeline(
        resolver=resolver,
        forwarder=forwarder,
        default_base_url=settings.azure_maps_base_url,
        audit_hook=audit_logger.log,
    )
    logger.info(
        "startup complete base_url=%s key_configured=%s client_id_configured=%s "
        "ingress_auth_required=%s audit_log_enabled=%s",
        settings.azure_maps_base_url,
        bool(settings.azure_maps_key),
        bool(settings.azure_maps_client_id),
        settings.ingress_auth_required,
        settings.audit_log_enabled,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    http_client: httpx.AsyncClient | None = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()
    audit_logger: JsonlAuditLogger | None = getattr(app.state, "audit_logger", None)
    if audit_logger is not None:
        audit_logger.close()
    logger.info("shutdown complete")


def _envelope_response(envelope: ResponseEnvelope) -> JSONResponse:
    return JSONResponse(status_code=envelope.status, content=envelope.to_payload())


async def _json_or_none(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/maps")
async def maps_proxy(request: Request) -> JSONResponse:
    pipeline: MapsProxyPipeline = app.state.pipeline
    envelope = await pipeline.execute(await _json_or_none(request))
    return _envelope_response(envelope)


@app.get("/api/maps/token")
async def maps_token() -> JSONResponse:
    token_provider: EntraTokenProvider = app.state.token_provider
    try:
        token = await token_provider.get_token()
    except (TokenExchangeError, httpx.HTTPError) as exc:
        logger.warning("token_endpoint_error error_type=%s", exc.__class__.__name__)
        return JSONResponse(
            status_code=500,
            content={"message": exception_message(exc, TOKEN_ERROR_FALLBACK)},
        )
    return JSONResponse(content={"token": token})


@app.get("/api/maps/static")
async def static_map_get(request: Request) -> Response:
    settings: Settings = app.state.settings
    params = request.query_params
    return await render_static_map(
        lat=parse_query_number(params.get("lat")),
        lon=parse_query_number(params.get("lon")),
        zoom=parse_query_number(params.get("zoom")),
        width=parse_query_number(params.get("width")),
        height=parse_query_number(params.get("height")),
        base_url=None,
        default_base_url=settings.azure_maps_base_url,
        auth=None,
        resolver=app.state.credential_resolver,
        forwarder=app.state.forwarder,
    )


@app.post("/api/maps/static")
async def static_map_post(request: Request) -> Response:
    settings: Settings = app.state.settings
    payload = await _json_or_none(request)
    try:
        body = StaticMapRequest.model_validate(
            payload if isinstance(payload, dict) else {}
        )
    except pydantic.ValidationError:
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid static map request body."},
        )
    return await render_static_map(
        lat=coerce_json_number(body.lat),
        lon=coerce_json_number(body.lon),
        zoom=coerce_json_number(body.zoom),
        width=coerce_json_number(body.width),
        height=coerce_json_number(body.height),
        base_url=body.base_url,
        default_base_url=settings.azure_maps_base_url,
        auth=body.auth,
        resolver=app.state.credential_resolver,
        forwarder=app.state.forwarder,
    )


@app.post("/api/mock")
async def mock(request: Request) -> JSONResponse:
    settings: Settings = app.state.settings
    if not settings.mock_enabled:
        raise HTTPException(status_code=404, detail="Mock responses are disabled.")
    return _envelope_response(mock_envelope(await _json_or_none(request)))


def run() -> None:
    import uvicorn

    uvicorn.run("maps_explorer.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
