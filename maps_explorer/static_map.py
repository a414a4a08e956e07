from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from fastapi import status
from fastapi.responses import JSONResponse, Response, StreamingResponse

from maps_explorer.credentials import CredentialResolver
from maps_explorer.errors import CredentialError, InvalidRequestError
from maps_explorer.models import AuthOverride
from maps_explorer.proxy import UpstreamForwarder
from maps_explorer.validation import normalize_base_url

STATIC_MAP_API_VERSION = "2022-08-01"
DEFAULT_ZOOM = 14
DEFAULT_WIDTH = 640
DEFAULT_HEIGHT = 320
ZOOM_RANGE = (1, 20)
WIDTH_RANGE = (240, 1280)
HEIGHT_RANGE = (160, 960)

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True, slots=True)
class StaticMapQuery:
    lat: float
    lon: float
    zoom: int
    width: int
    height: int


def clamp(value: float, lower: int, upper: int) -> int:
    # Half-up rounding, matching what browsers do for the same inputs.
    rounded = math.floor(value + 0.5)
    return int(min(max(rounded, lower), upper))


def parse_query_number(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def coerce_json_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    parsed = float(value)
    return parsed if math.isfinite(parsed) else None


def build_static_map_query(
    *,
    lat: float,
    lon: float,
    zoom: float | None,
    width: float | None,
    height: float | None,
) -> StaticMapQuery:
    return StaticMapQuery(
        lat=lat,
        lon=lon,
        zoom=clamp(DEFAULT_ZOOM if zoom is None else zoom, *ZOOM_RANGE),
        width=clamp(DEFAULT_WIDTH if width is None else width, *WIDTH_RANGE),
        height=clamp(DEFAULT_HEIGHT if height is None else height, *HEIGHT_RANGE),
    )


def build_static_map_url(base_url: str, query: StaticMapQuery) -> str:
    params = {
        "api-version": STATIC_MAP_API_VERSION,
        "format": "png",
        "center": f"{query.lon},{query.lat}",
        "zoom": str(query.zoom),
        "layer": "basic",
        "style": "main",
        "width": str(query.width),
        "height": str(query.height),
    }
    return f"{base_url}/map/static/png?{urlencode(params)}"


def _message(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, **extra})


async def render_static_map(
    *,
    lat: float | None,
    lon: float | None,
    zoom: float | None,
    width: float | None,
    height: float | None,
    base_url: str | None,
    default_base_url: str,
    auth: AuthOverride | None,
    resolver: CredentialResolver,
    forwarder: UpstreamForwarder,
) -> Response:
    if lat is None or lon is None:
        return _message(
            status.HTTP_400_BAD_REQUEST, "lat and lon query params are required."
        )

    query = build_static_map_query(
        lat=lat, lon=lon, zoom=zoom, width=width, height=height
    )
    try:
        safe_base_url = normalize_base_url(
            base_url if base_url is not None else default_base_url
        )
    except InvalidRequestError:
        return _message(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "AZURE_MAPS_BASE_URL must be a valid https URL.",
        )

    try:
        credential = await resolver.resolve(auth)
    except CredentialError as exc:
        return _message(exc.status, exc.message)

    result = await forwarder.fetch_binary(
        build_static_map_url(safe_base_url, query), credential
    )
    logger.info(
        "static_map_request status=%d zoom=%d width=%d height=%d duration_ms=%d auth=%s",
        result.status,
        query.zoom,
        query.width,
        query.height,
        result.duration_ms,
        credential.kind,
    )
    if result.failed:
        return _message(
            status.HTTP_502_BAD_GATEWAY,
            "Failed to fetch map image.",
            details=result.error_message,
        )
    if not result.ok:
        return _message(
            result.status,
            "Failed to fetch map image.",
            details=result.details,
        )

    upstream = result.upstream

    async def stream_generator():
        try:
            async for chunk in upstream.aiter_bytes():
                if chunk:
                    yield chunk
        finally:
            await upstream.aclose()

    return StreamingResponse(
        content=stream_generator(),
        status_code=status.HTTP_200_OK,
        media_type=result.content_type or "image/png",
        headers={"Cache-Control": "public, max-age=60"},
    )
