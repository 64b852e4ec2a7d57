from __future__ import annotations

import json

import pytest
from starlette.datastructures import Headers

from azure_openai_proxy.config import ProxyConfig
from azure_openai_proxy.rewriter import (
    InboundRequest,
    append_query_param,
    azure_deployment_path,
    extract_model,
    rewrite,
)
from azure_openai_proxy.routing import RouteCategory


def _config(**overrides: object) -> ProxyConfig:
    values: dict[str, object] = {
        "azure_endpoint": "https://x.openai.azure.com",
        "azure_scheme": "https",
        "azure_host": "x.openai.azure.com",
    }
    values.update(overrides)
    return ProxyConfig.model_validate(values)


def _inbound(
    path: str = "/v1/chat/completions",
    body: dict[str, object] | bytes | None = None,
    authorization: str | None = "Bearer sk-client",
    query: str = "",
    method: str = "POST",
) -> InboundRequest:
    raw_headers = {"content-type": "application/json", "host": "localhost:8080"}
    if authorization is not None:
        raw_headers["authorization"] = authorization
    if isinstance(body, dict):
        payload = json.dumps(body).encode("utf-8")
    else:
        payload = body or b""
    raw_headers["content-length"] = str(len(payload))
    return InboundRequest(
        method=method,
        path=path,
        query=query,
        headers=Headers(raw_headers),
        body=payload,
    )


def test_completion_request_targets_azure_deployment() -> None:
    outbound = rewrite(
        _inbound(body={"model": "gpt-3.5-turbo", "messages": []}),
        RouteCategory.COMPLETION,
        _config(),
    )
    assert outbound.url == (
        "https://x.openai.azure.com/openai/deployments/gpt-35-turbo/chat/completions"
        "?api-version=2023-03-15-preview"
    )
    assert outbound.model == "gpt-3.5-turbo"
    assert outbound.deployment == "gpt-35-turbo"


def test_completion_request_swaps_authorization_for_api_key() -> None:
    outbound = rewrite(
        _inbound(body={"model": "gpt-4"}), RouteCategory.COMPLETION, _config()
    )
    lowered = {name.lower(): value for name, value in outbound.headers.items()}
    assert lowered["api-key"] == "sk-client"
    assert "authorization" not in lowered
    assert "host" not in lowered
    assert "content-length" not in lowered
    assert lowered["content-type"] == "application/json"


def test_completion_body_is_forwarded_unchanged() -> None:
    inbound = _inbound(body={"model": "gpt-4", "stream": True})
    outbound = rewrite(inbound, RouteCategory.COMPLETION, _config())
    assert outbound.body == inbound.body


def test_api_version_is_appended_after_client_query() -> None:
    outbound = rewrite(
        _inbound(body={"model": "gpt-4"}, query="api-version=2022-12-01&foo=bar"),
        RouteCategory.COMPLETION,
        _config(api_version="2023-05-15"),
    )
    assert outbound.target.query == "api-version=2022-12-01&foo=bar&api-version=2023-05-15"


def test_compound_token_overrides_host_and_deployment() -> None:
    outbound = rewrite(
        _inbound(
            body={"model": "gpt-3.5-turbo"},
            authorization="Bearer abc@other.openai.azure.com@dep1",
        ),
        RouteCategory.COMPLETION,
        _config(),
    )
    assert outbound.url == (
        "https://other.openai.azure.com/openai/deployments/dep1/chat/completions"
        "?api-version=2023-03-15-preview"
    )
    assert outbound.headers["api-key"] == "abc"
    assert outbound.deployment == "dep1"


def test_embeddings_without_model_field_uses_empty_deployment() -> None:
    outbound = rewrite(
        _inbound(path="/v1/embeddings", body={"input": "hi"}),
        RouteCategory.COMPLETION,
        _config(),
    )
    assert outbound.target.path == "/openai/deployments/embeddings"
    assert outbound.model == ""


def test_static_azure_token_replaces_client_credential() -> None:
    outbound = rewrite(
        _inbound(body={"model": "gpt-4"}),
        RouteCategory.COMPLETION,
        _config(azure_token="env-token"),
    )
    assert outbound.headers["api-key"] == "env-token"


def test_passthrough_request_targets_openai_with_bearer() -> None:
    outbound = rewrite(
        _inbound(
            path="/v1/files",
            method="GET",
            query="purpose=fine-tune",
            authorization='Bearer {"azure":"A1","openai":"O1"}',
        ),
        RouteCategory.PASSTHROUGH,
        _config(),
    )
    assert outbound.url == "https://api.openai.com/v1/files?purpose=fine-tune"
    assert outbound.headers["Authorization"] == "Bearer O1"
    assert "authorization" not in outbound.headers
    assert outbound.method == "GET"


def test_passthrough_uses_static_openai_token() -> None:
    outbound = rewrite(
        _inbound(path="/v1/files"),
        RouteCategory.PASSTHROUGH,
        _config(openai_token="env-openai"),
    )
    assert outbound.headers["Authorization"] == "Bearer env-openai"


def test_local_categories_are_not_rewritten() -> None:
    with pytest.raises(ValueError):
        rewrite(_inbound(path="/v1/models"), RouteCategory.MODEL_LIST, _config())


def test_rewrite_leaves_inbound_request_untouched() -> None:
    inbound = _inbound(body={"model": "gpt-4"})
    rewrite(inbound, RouteCategory.COMPLETION, _config())
    assert inbound.headers["authorization"] == "Bearer sk-client"
    assert inbound.path == "/v1/chat/completions"
    assert inbound.query == ""


def test_extract_model_tolerates_bad_bodies() -> None:
    assert extract_model(b"") == ""
    assert extract_model(b"not json") == ""
    assert extract_model(b"[1, 2]") == ""
    assert extract_model(b'{"model": 42}') == ""
    assert extract_model(b'{"model": "gpt-4"}') == "gpt-4"


def test_azure_deployment_path_strips_first_v1_only() -> None:
    assert (
        azure_deployment_path("dep", "/v1/engines/v1/completions")
        == "/openai/deployments/dep/engines/v1/completions"
    )
    assert azure_deployment_path("dep", "/chat/completions") == (
        "/openai/deployments/dep/chat/completions"
    )


def test_append_query_param_encodes_value() -> None:
    assert append_query_param("", "api-version", "2023 preview") == "api-version=2023+preview"
