from __future__ import annotations

import logging
import sys
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from azure_openai_proxy.config import ConfigError, ProxyConfig, parse_listen_address
from azure_openai_proxy.gateway.proxy import BackendProxy
from azure_openai_proxy.rewriter import InboundRequest, rewrite
from azure_openai_proxy.routing import RouteCategory, classify_path
from azure_openai_proxy.settings import get_settings
from azure_openai_proxy.static_documents import (
    credit_grants_document,
    models_document,
)

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS, PUT, DELETE",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

app = FastAPI(
    title="Azure OpenAI Proxy",
    description="OpenAI-compatible reverse proxy for Azure OpenAI deployments.",
    version="0.1.0",
)

logger = logging.getLogger("uvicorn.error")


def _log_loaded_config(config: ProxyConfig) -> None:
    logger.info("loading azure openai proxy address: %s", config.listen_address)
    logger.info("loading azure api endpoint: %s", config.azure_endpoint)
    logger.info("loading azure api version: %s", config.api_version)
    for model, deployment in config.model_mapping.items():
        logger.info("loading azure model mapper: %s -> %s", model, deployment)
    if config.azure_token:
        logger.info("loading azure api token from env")
    if config.openai_token:
        logger.info("loading openai api token from env")
    if not config.azure_host:
        logger.warning(
            "AZURE_OPENAI_ENDPOINT is not set; azure requests need a host in the bearer token"
        )


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    config = ProxyConfig.from_settings(settings)
    _log_loaded_config(config)
    app.state.settings = settings
    app.state.proxy_config = config
    app.state.backend_proxy = BackendProxy(
        timeout_seconds=settings.upstream_timeout_seconds,
        connect_timeout_seconds=settings.upstream_connect_timeout_seconds,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    backend_proxy: BackendProxy | None = getattr(app.state, "backend_proxy", None)
    if backend_proxy is not None:
        await backend_proxy.close()
    logger.info("shutdown complete")


def _liveness_response(request: Request) -> Response:
    if request.method == "OPTIONS":
        return _cors_preflight_response()
    return Response(status_code=200)


def _cors_preflight_response() -> Response:
    return Response(status_code=200, headers=CORS_PREFLIGHT_HEADERS)


@app.api_route("/", methods=ALL_METHODS)
async def root(request: Request) -> Response:
    return _liveness_response(request)


@app.api_route("/health", methods=ALL_METHODS)
async def health(request: Request) -> Response:
    return _liveness_response(request)


async def _read_inbound_request(request: Request) -> InboundRequest:
    body = await request.body()
    return InboundRequest(
        method=request.method,
        path=request.scope["path"],
        query=request.url.query,
        headers=request.headers,
        body=body,
    )


@app.api_route("/{path:path}", methods=ALL_METHODS)
async def proxy(request: Request) -> Response:
    # Preflight is answered locally for every path, before classification.
    if request.method == "OPTIONS":
        return _cors_preflight_response()

    category = classify_path(request.scope["path"])
    if category == RouteCategory.CREDIT_GRANTS:
        return JSONResponse(content=credit_grants_document())
    if category == RouteCategory.MODEL_LIST:
        return JSONResponse(content=models_document())

    config: ProxyConfig = app.state.proxy_config
    backend_proxy: BackendProxy = app.state.backend_proxy
    request_id = request.headers.get("x-request-id") or uuid4().hex[:12]

    inbound = await _read_inbound_request(request)
    outbound = rewrite(inbound, category, config)
    logger.info(
        "proxying request request_id=%s category=%s model=[%s] %s -> %s",
        request_id,
        category.value,
        outbound.model,
        inbound.origin_url,
        outbound.url,
    )
    return await backend_proxy.forward(outbound, request_id=request_id)


def run() -> None:
    import uvicorn

    settings = get_settings()
    try:
        config = ProxyConfig.from_settings(settings)
        host, port = parse_listen_address(config.listen_address)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", exc)
        sys.exit(1)

    uvicorn.run(
        "azure_openai_proxy.main:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run()
