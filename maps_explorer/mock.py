"""Canned geocoding responses for exploring the UI without credentials."""

from __future__ import annotations

import json
import time
from typing import Any

from maps_explorer.models import ResponseEnvelope, ResponseMeta
from maps_explorer.validation import normalize_path

DEFAULT_MOCK_PATH = "search/address/json"

_ADDRESS = {
    "streetNumber": "1",
    "streetName": "Microsoft Way",
    "municipality": "Redmond",
    "countrySubdivision": "WA",
    "postalCode": "98052",
    "countryCode": "US",
    "country": "United States",
}
_POSITION = {"lat": 47.6396, "lon": -122.1282}

SAMPLE_GEOCODE: dict[str, Any] = {
    "summary": {
        "query": "1 Microsoft Way, Redmond, WA",
        "type": "Geocode",
        "numResults": 1,
        "offset": 0,
        "totalResults": 1,
        "fuzzyLevel": 1,
    },
    "results": [
        {"type": "Point Address", "position": _POSITION, "address": _ADDRESS},
    ],
}

SAMPLE_REVERSE: dict[str, Any] = {
    "summary": {
        "query": "47.6396,-122.1282",
        "type": "Reverse Geocode",
        "numResults": 1,
        "offset": 0,
        "totalResults": 1,
    },
    "addresses": [{"address": _ADDRESS, "position": _POSITION}],
}


def mock_envelope(payload: Any) -> ResponseEnvelope:
    started = time.monotonic()
    raw_path = payload.get("path") if isinstance(payload, dict) else None
    path = normalize_path(raw_path) if isinstance(raw_path, str) else ""
    body = SAMPLE_REVERSE if "reverse" in path else SAMPLE_GEOCODE
    return ResponseEnvelope(
        meta=ResponseMeta(
            status=200,
            status_text="OK",
            headers={"content-type": "application/json"},
            duration_ms=int((time.monotonic() - started) * 1000.0),
            url=f"mock://{path or DEFAULT_MOCK_PATH}",
        ),
        body=body,
        raw=json.dumps(body, indent=2),
    )
