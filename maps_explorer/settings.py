from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://atlas.microsoft.com"
DEFAULT_MAPS_SCOPE = "https://atlas.microsoft.com/.default"


class Settings(BaseSettings):
    azure_maps_base_url: str = DEFAULT_BASE_URL
    azure_maps_key: str | None = None
    azure_maps_client_id: str | None = None
    # Client-credentials exchange; process-wide only, never taken from a request.
    azure_tenant_id: str | None = None
    azure_client_id: str | None = None
    azure_client_secret: str | None = None
    azure_maps_scope: str = DEFAULT_MAPS_SCOPE
    azure_authority_host: str = "https://login.microsoftonline.com"
    upstream_timeout_seconds: float = 20.0
    token_timeout_seconds: float = 20.0
    token_refresh_margin_seconds: float = 60.0
    mock_enabled: bool = True
    ingress_auth_required: bool = False
    ingress_api_keys: str = ""
    ingress_jwt_secret: str | None = None
    ingress_jwt_audience: str | None = None
    ingress_jwt_issuer: str | None = None
    ingress_jwt_algorithms: str = "HS256"
    audit_log_enabled: bool = False
    audit_log_path: str = "logs/maps_proxy.jsonl"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def ingress_api_keys_list(self) -> list[str]:
        return _split_csv(self.ingress_api_keys)

    @property
    def ingress_jwt_algorithms_list(self) -> list[str]:
        values = _split_csv(self.ingress_jwt_algorithms)
        return values or ["HS256"]


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
