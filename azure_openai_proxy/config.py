from __future__ import annotations

from types import MappingProxyType
from typing import Mapping
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from azure_openai_proxy.settings import Settings

DEFAULT_MODEL_MAPPING: Mapping[str, str] = MappingProxyType(
    {
        "gpt-3.5-turbo": "gpt-35-turbo",
        "gpt-3.5-turbo-0301": "gpt-35-turbo-0301",
    }
)


class ConfigError(RuntimeError):
    """Raised when the proxy cannot start with the configured environment."""


class ProxyConfig(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    listen_address: str = "0.0.0.0:8080"
    api_version: str = "2023-03-15-preview"
    azure_endpoint: str = ""
    azure_scheme: str = "https"
    azure_host: str = ""
    model_mapping: Mapping[str, str] = Field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_MODEL_MAPPING))
    )
    azure_token: str | None = None
    openai_token: str | None = None
    openai_endpoint: str = "https://api.openai.com"

    @field_validator("model_mapping", mode="after")
    @classmethod
    def _freeze_mapping(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        if isinstance(value, MappingProxyType):
            return value
        return MappingProxyType(dict(value))

    @field_validator("azure_token", "openai_token", mode="before")
    @classmethod
    def _blank_token_is_unset(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = str(value).strip()
        return normalized or None

    @field_validator("openai_endpoint", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def static_token(self, wants_azure: bool) -> str | None:
        return self.azure_token if wants_azure else self.openai_token

    @classmethod
    def from_settings(cls, settings: Settings) -> ProxyConfig:
        mapping = dict(DEFAULT_MODEL_MAPPING)
        mapping.update(parse_model_mapper(settings.model_mapper_entries))
        scheme, host = parse_endpoint(settings.azure_openai_endpoint)
        openai_scheme, openai_host = parse_endpoint(settings.openai_endpoint)
        if not openai_host:
            raise ConfigError("OPENAI_ENDPOINT must not be empty")
        parse_listen_address(settings.azure_openai_proxy_address)
        return cls(
            listen_address=settings.azure_openai_proxy_address,
            api_version=settings.azure_openai_apiversion,
            azure_endpoint=settings.azure_openai_endpoint,
            azure_scheme=scheme,
            azure_host=host,
            model_mapping=mapping,
            azure_token=settings.azure_openai_token,
            openai_token=settings.openai_token,
            openai_endpoint=f"{openai_scheme}://{openai_host}",
        )


def parse_model_mapper(entries: list[str]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for pair in entries:
        info = pair.split("=")
        if len(info) != 2 or not info[0].strip() or not info[1].strip():
            raise ConfigError(
                f"error parsing AZURE_OPENAI_MODEL_MAPPER, invalid value {pair}"
            )
        mapping[info[0].strip()] = info[1].strip()
    return mapping


def parse_endpoint(endpoint: str) -> tuple[str, str]:
    """Return ``(scheme, host)`` for an endpoint URL.

    An empty endpoint is allowed and yields ``("https", "")``; requests then
    need a host override carried in a compound token.
    """
    normalized = endpoint.strip()
    if not normalized:
        return "https", ""
    try:
        parts = urlsplit(normalized)
        _ = parts.port
    except ValueError as exc:
        raise ConfigError(f"error parse endpoint: {endpoint}") from exc
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise ConfigError(f"error parse endpoint: {endpoint}")
    return parts.scheme, parts.netloc


def parse_listen_address(address: str) -> tuple[str, int]:
    host, sep, port = address.strip().rpartition(":")
    if not sep:
        raise ConfigError(f"invalid AZURE_OPENAI_PROXY_ADDRESS: {address}")
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ConfigError(f"invalid AZURE_OPENAI_PROXY_ADDRESS: {address}") from exc
    if port_number < 0 or port_number > 65535:
        raise ConfigError(f"invalid AZURE_OPENAI_PROXY_ADDRESS: {address}")
    return host.strip("[]") or "0.0.0.0", port_number
