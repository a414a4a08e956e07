from __future__ import annotations

from urllib.parse import parse_qsl

import pytest

from maps_explorer.errors import ErrorCode, InvalidRequestError
from maps_explorer.models import RequestDescriptor
from maps_explorer.validation import (
    build_query_string,
    is_path_safe,
    normalize_base_url,
    normalize_path,
    normalize_request,
)

DEFAULT_BASE = "https://atlas.microsoft.com"


def _normalize(**fields: object):
    return normalize_request(
        RequestDescriptor.model_validate(fields), default_base_url=DEFAULT_BASE
    )


def test_normalize_path_trims_and_strips_leading_slashes() -> None:
    assert normalize_path("  ///search/address/json ") == "search/address/json"


@pytest.mark.parametrize(
    "path",
    [
        "",
        "   ",
        "///",
        "../../etc/passwd",
        "search/../admin",
        "search/%2e%2e/admin",
        "https://evil.example/steal",
        "http://evil.example",
        "HTTPS:evil.example",
        "search/a?subscription-key=x",
        "search/a#frag",
    ],
)
def test_unsafe_paths_are_rejected(path: str) -> None:
    assert is_path_safe(path) is False
    with pytest.raises(InvalidRequestError) as excinfo:
        _normalize(path=path)
    assert excinfo.value.code == ErrorCode.INVALID_PATH
    assert excinfo.value.status == 400


def test_relative_paths_are_accepted() -> None:
    assert is_path_safe("search/address/reverse/json")
    assert is_path_safe("/route/directions/json")
    assert is_path_safe("geocode:batch")
    assert is_path_safe("reverseGeocode:batch")


@pytest.mark.parametrize("method", ["TRACE", "OPTIONS", "HEAD", "CONNECT", "FETCH"])
def test_methods_outside_allow_list_are_rejected(method: str) -> None:
    with pytest.raises(InvalidRequestError) as excinfo:
        _normalize(path="search", method=method)
    assert excinfo.value.code == ErrorCode.INVALID_METHOD


@pytest.mark.parametrize("method", ["GET", "post", "Put", "PATCH", "delete"])
def test_allowed_methods_are_upper_cased(method: str) -> None:
    assert _normalize(path="search", method=method).method == method.upper()


@pytest.mark.parametrize(
    "base_url",
    [
        "http://atlas.microsoft.com",
        "ftp://atlas.microsoft.com",
        "https://atlas.microsoft.com?x=1",
        "https://atlas.microsoft.com/#top",
        "https://atlas.microsoft.com/path?api-version=1.0",
        "atlas.microsoft.com",
        "https://",
        "https://atlas.microsoft.com:notaport",
        "not a url",
        "https://exa mple.com",
        "https://a..b.com",
        "https://atlas.microsoft.com%0d%0a",
        "https://[::zz]",
        "https://999.1.1.1",
    ],
)
def test_invalid_base_urls_are_rejected(base_url: str) -> None:
    with pytest.raises(InvalidRequestError) as excinfo:
        _normalize(path="search", baseUrl=base_url)
    assert excinfo.value.code == ErrorCode.INVALID_BASE_URL
    assert excinfo.value.status == 400


def test_base_url_is_reduced_to_origin_and_path() -> None:
    assert normalize_base_url("https://atlas.microsoft.com/") == DEFAULT_BASE
    assert normalize_base_url("https://Atlas.Microsoft.com:443") == DEFAULT_BASE
    assert (
        normalize_base_url("https://eu.atlas.microsoft.com/maps/")
        == "https://eu.atlas.microsoft.com/maps"
    )
    assert normalize_base_url("https://localhost:8443") == "https://localhost:8443"
    assert normalize_base_url("https://[::1]:8443/") == "https://[::1]:8443"
    assert normalize_base_url("https://10.0.0.4") == "https://10.0.0.4"


def test_missing_base_url_uses_configured_default() -> None:
    assert _normalize(path="search").base_url == DEFAULT_BASE


def test_query_string_omits_null_values_and_encodes_pairs() -> None:
    query = build_query_string(
        {
            "api-version": "1.0",
            "query": "1 Microsoft Way, Redmond",
            "limit": 5,
            "typeahead": True,
            "countrySet": None,
        }
    )
    assert "countrySet" not in query
    assert "query=1+Microsoft+Way%2C+Redmond" in query
    assert "typeahead=true" in query
    assert "limit=5" in query


def test_query_string_preserves_all_pairs() -> None:
    params = {
        "query": "47.6,-122.1",
        "a&b": "c=d",
        "unicode": "Zürich",
        "spaces": "  padded  ",
        "empty": "",
    }
    decoded = dict(parse_qsl(build_query_string(params), keep_blank_values=True))
    assert decoded == params


def test_normalize_is_idempotent() -> None:
    fields = {
        "path": "/search/address/json",
        "params": {"api-version": "1.0", "query": "Seattle"},
        "method": "post",
        "baseUrl": "https://atlas.microsoft.com/",
        "body": {"batchItems": [{"query": "?query=Seattle"}]},
        "auth": {"apiKey": "k"},
    }
    assert _normalize(**fields) == _normalize(**fields)


def test_body_is_only_carried_for_methods_with_a_body() -> None:
    assert _normalize(path="search", method="GET", body={"a": 1}).has_body is False
    assert _normalize(path="search", method="POST", body={"a": 1}).has_body is True
    assert _normalize(path="search", method="POST").has_body is False


def test_blank_method_defaults_to_get() -> None:
    assert _normalize(path="search", method="").method == "GET"
    assert _normalize(path="search").method == "GET"


def test_null_path_is_an_invalid_path() -> None:
    with pytest.raises(InvalidRequestError) as excinfo:
        _normalize(path=None)
    assert excinfo.value.code == ErrorCode.INVALID_PATH
