from __future__ import annotations

import json
import posixpath
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import quote, urlencode

from azure_openai_proxy.config import ProxyConfig
from azure_openai_proxy.credentials import resolve_credential
from azure_openai_proxy.model_mapper import resolve_deployment
from azure_openai_proxy.routing import RouteCategory

HOP_BY_HOP_REQUEST_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

_PATH_SAFE_CHARS = "/:@!$&'()*+,;="


@dataclass(frozen=True, slots=True)
class InboundRequest:
    method: str
    path: str
    query: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def origin_url(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path


@dataclass(frozen=True, slots=True)
class BackendTarget:
    scheme: str
    host: str
    path: str
    query: str = ""

    @property
    def url(self) -> str:
        rendered = f"{self.scheme}://{self.host}{quote(self.path, safe=_PATH_SAFE_CHARS)}"
        if self.query:
            rendered = f"{rendered}?{self.query}"
        return rendered


@dataclass(frozen=True, slots=True)
class OutboundRequest:
    method: str
    target: BackendTarget
    headers: dict[str, str]
    body: bytes
    model: str = ""
    deployment: str | None = None

    @property
    def url(self) -> str:
        return self.target.url


def extract_model(body: bytes) -> str:
    if not body:
        return ""
    try:
        payload = json.loads(body)
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    model = payload.get("model")
    return model if isinstance(model, str) else ""


def azure_deployment_path(deployment: str, original_path: str) -> str:
    suffix = original_path.replace("/v1/", "/", 1)
    joined = f"/openai/deployments/{deployment}/{suffix.lstrip('/')}"
    return posixpath.normpath(joined)


def append_query_param(query: str, name: str, value: str) -> str:
    param = urlencode({name: value})
    if not query:
        return param
    return f"{query}&{param}"


def _forwardable_headers(headers: Mapping[str, str]) -> dict[str, str]:
    forwarded: dict[str, str] = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower in HOP_BY_HOP_REQUEST_HEADERS:
            continue
        if lower in {"host", "content-length", "authorization"}:
            continue
        forwarded[name] = value
    return forwarded


def rewrite(
    inbound: InboundRequest,
    category: RouteCategory,
    config: ProxyConfig,
) -> OutboundRequest:
    if category == RouteCategory.COMPLETION:
        return _rewrite_for_azure(inbound, config)
    if category == RouteCategory.PASSTHROUGH:
        return _rewrite_for_openai(inbound, config)
    raise ValueError(f"{category.value} requests are served locally, not proxied")


def _rewrite_for_azure(inbound: InboundRequest, config: ProxyConfig) -> OutboundRequest:
    model = extract_model(inbound.body)
    deployment = resolve_deployment(model, config.model_mapping)
    credential = resolve_credential(config, inbound.headers, wants_azure=True)
    if credential.deployment_override:
        deployment = credential.deployment_override

    headers = _forwardable_headers(inbound.headers)
    headers["api-key"] = credential.token

    target = BackendTarget(
        scheme=config.azure_scheme,
        host=credential.host_override or config.azure_host,
        path=azure_deployment_path(deployment, inbound.path),
        query=append_query_param(inbound.query, "api-version", config.api_version),
    )
    return OutboundRequest(
        method=inbound.method,
        target=target,
        headers=headers,
        body=inbound.body,
        model=model,
        deployment=deployment,
    )


def _rewrite_for_openai(inbound: InboundRequest, config: ProxyConfig) -> OutboundRequest:
    credential = resolve_credential(config, inbound.headers, wants_azure=False)
    scheme, _, host = config.openai_endpoint.partition("://")

    headers = _forwardable_headers(inbound.headers)
    headers["Authorization"] = f"Bearer {credential.token}"

    target = BackendTarget(
        scheme=scheme,
        host=host,
        path=inbound.path,
        query=inbound.query,
    )
    return OutboundRequest(
        method=inbound.method,
        target=target,
        headers=headers,
        body=inbound.body,
        model=extract_model(inbound.body),
    )
