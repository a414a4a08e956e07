from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

ParamValue = str | int | float | bool | None


class AuthOverride(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(default=None, alias="apiKey")
    client_id: str | None = Field(default=None, alias="clientId")

    @field_validator("api_key", "client_id")
    @classmethod
    def _require_header_safe(cls, value: str | None) -> str | None:
        # Both values travel as upstream request headers.
        if value is None:
            return value
        if not value.isascii() or any(char in value for char in "\r\n\x00"):
            raise ValueError("must be ASCII without line breaks")
        return value


class RequestDescriptor(BaseModel):
    """Request description posted by the explorer UI. Untrusted."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: str | None = ""
    params: dict[str, ParamValue] = Field(default_factory=dict)
    method: str | None = "GET"
    base_url: str | None = Field(default=None, alias="baseUrl")
    body: Any = None
    auth: AuthOverride | None = None


class ResponseMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: int
    status_text: str = Field(alias="statusText")
    headers: dict[str, str] = Field(default_factory=dict)
    duration_ms: int = Field(default=0, alias="durationMs")
    url: str = ""


class ResponseEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    meta: ResponseMeta
    body: Any = None
    raw: str = ""
    error_code: str | None = Field(default=None, alias="errorCode")

    @property
    def status(self) -> int:
        return self.meta.status

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True, mode="json")
        if payload.get("errorCode") is None:
            payload.pop("errorCode", None)
        return payload


class StaticMapRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    lat: Any = None
    lon: Any = None
    zoom: Any = None
    width: Any = None
    height: Any = None
    base_url: str | None = Field(default=None, alias="baseUrl")
    auth: AuthOverride | None = None
