from __future__ import annotations

import ipaddress
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote, urlencode, urlsplit

from maps_explorer.errors import ErrorCode, InvalidRequestError
from maps_explorer.models import AuthOverride, ParamValue, RequestDescriptor

ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


@dataclass(frozen=True, slots=True)
class NormalizedRequest:
    path: str
    method: str
    base_url: str
    query: tuple[tuple[str, str], ...]
    query_string: str
    body: Any = None
    auth: AuthOverride | None = None

    @property
    def has_body(self) -> bool:
        return self.body is not None and self.method != "GET"


def normalize_path(path: str | None) -> str:
    return (path or "").strip().lstrip("/")


def is_path_safe(path: str) -> bool:
    normalized = normalize_path(path)
    if not normalized:
        return False
    # Percent-encoded forms must not sneak past the checks below.
    decoded = unquote(normalized)
    for candidate in (normalized, decoded):
        if candidate.lower().startswith("http") or "://" in candidate:
            return False
        if ".." in candidate:
            return False
        if "?" in candidate or "#" in candidate:
            return False
    return True


def normalize_method(method: str | None) -> str:
    normalized = (method or "GET").strip().upper()
    if normalized not in ALLOWED_METHODS:
        raise InvalidRequestError(
            ErrorCode.INVALID_METHOD,
            status_text="Invalid Method",
            message="Unsupported HTTP method.",
        )
    return normalized


_HOST_LABEL = re.compile(r"[a-z0-9_-]+")


def _is_valid_host(host: str) -> bool:
    if ":" in host:
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return False
        return True
    try:
        ascii_host = host.encode("idna").decode("ascii").lower()
    except UnicodeError:
        return False
    labels = ascii_host.split(".")
    if all(label.isdigit() for label in labels):
        try:
            ipaddress.IPv4Address(ascii_host)
        except ValueError:
            return False
        return True
    return all(_HOST_LABEL.fullmatch(label) for label in labels)


def normalize_base_url(value: str) -> str:
    """Return ``origin + pathname`` of an https URL, without a trailing slash."""
    try:
        parsed = urlsplit(value.strip())
        host = parsed.hostname
        port = parsed.port
    except ValueError as exc:
        raise _invalid_base_url() from exc

    if parsed.scheme.lower() != "https" or not host or not _is_valid_host(host):
        raise _invalid_base_url()
    if parsed.query or parsed.fragment:
        raise _invalid_base_url()

    if ":" in host:
        host = f"[{host}]"
    origin = f"https://{host}"
    if port is not None and port != 443:
        origin = f"{origin}:{port}"

    pathname = parsed.path or "/"
    if pathname.endswith("/"):
        pathname = pathname[:-1]
    return f"{origin}{pathname}"


def _invalid_base_url() -> InvalidRequestError:
    return InvalidRequestError(
        ErrorCode.INVALID_BASE_URL,
        status_text="Invalid Base URL",
        message="Base URL must be a valid https URL without query or hash.",
    )


def _param_text(value: ParamValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def query_pairs(params: Mapping[str, ParamValue]) -> tuple[tuple[str, str], ...]:
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None or not key.strip():
            continue
        pairs.append((key, _param_text(value)))
    return tuple(pairs)


def build_query_string(params: Mapping[str, ParamValue]) -> str:
    return urlencode(query_pairs(params))


def normalize_request(
    descriptor: RequestDescriptor, *, default_base_url: str
) -> NormalizedRequest:
    path = normalize_path(descriptor.path)
    if not is_path_safe(path):
        raise InvalidRequestError(
            ErrorCode.INVALID_PATH,
            status_text="Invalid Path",
            message="Endpoint path is invalid.",
        )

    method = normalize_method(descriptor.method)
    base_url = normalize_base_url(
        descriptor.base_url if descriptor.base_url is not None else default_base_url
    )
    query = query_pairs(descriptor.params)
    return NormalizedRequest(
        path=path,
        method=method,
        base_url=base_url,
        query=query,
        query_string=urlencode(query),
        body=descriptor.body,
        auth=descriptor.auth,
    )
