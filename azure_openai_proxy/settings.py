from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    azure_openai_proxy_address: str = "0.0.0.0:8080"
    azure_openai_apiversion: str = "2023-03-15-preview"
    azure_openai_endpoint: str = ""
    azure_openai_model_mapper: str = ""
    azure_openai_token: str | None = None
    openai_token: str | None = None
    openai_endpoint: str = "https://api.openai.com"
    upstream_timeout_seconds: float = 120.0
    upstream_connect_timeout_seconds: float = 5.0
    log_level: str = "info"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def model_mapper_entries(self) -> list[str]:
        return _split_entries(self.azure_openai_model_mapper)


def _split_entries(value: str | None) -> list[str]:
    # Blank entries are kept so that a stray comma fails mapper parsing.
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",")]


@lru_cache
def get_settings() -> Settings:
    return Settings()
