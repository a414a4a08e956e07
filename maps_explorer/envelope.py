from __future__ import annotations

from maps_explorer.errors import ErrorCode, ProxyError
from maps_explorer.models import ResponseEnvelope, ResponseMeta
from maps_explorer.proxy import ForwardResult


def envelope_from_error(error: ProxyError, *, url: str = "") -> ResponseEnvelope:
    """Envelope for a request stopped before any upstream call was made."""
    return ResponseEnvelope(
        meta=ResponseMeta(
            status=error.status,
            status_text=error.status_text,
            headers={},
            duration_ms=0,
            url=url,
        ),
        body={"message": error.message},
        raw="",
        error_code=error.code.value,
    )


def envelope_from_result(result: ForwardResult) -> ResponseEnvelope:
    if result.failed:
        return ResponseEnvelope(
            meta=ResponseMeta(
                status=result.status,
                status_text=result.status_text,
                headers={},
                duration_ms=result.duration_ms,
                url=result.url,
            ),
            body={"message": result.error_message},
            raw="",
            error_code=result.error_code.value if result.error_code else None,
        )
    return ResponseEnvelope(
        meta=ResponseMeta(
            status=result.status,
            status_text=result.status_text,
            headers=result.headers,
            duration_ms=result.duration_ms,
            url=result.url,
        ),
        body=result.body,
        raw=result.raw,
    )


def invalid_json_envelope() -> ResponseEnvelope:
    return envelope_from_error(
        ProxyError(
            ErrorCode.INVALID_JSON,
            status=400,
            status_text="Bad Request",
            message="Invalid JSON body.",
        )
    )
