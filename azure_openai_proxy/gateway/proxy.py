from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator

import httpx
from fastapi import status
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.types import Send

from azure_openai_proxy.rewriter import OutboundRequest

HOP_BY_HOP_RESPONSE_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
}

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"
EVENT_STREAM_TERMINATOR = b"\n"

logger = logging.getLogger("uvicorn.error")


def _request_error_details(exc: httpx.RequestError) -> dict[str, Any]:
    error_message = str(exc).strip() or repr(exc)
    error_type = exc.__class__.__name__.strip() or "RequestError"
    details: dict[str, Any] = {
        "error": error_message,
        "error_type": error_type,
        "is_timeout": isinstance(exc, httpx.TimeoutException),
    }
    request = getattr(exc, "request", None)
    if isinstance(request, httpx.Request):
        details["request_method"] = request.method
        details["request_url"] = str(request.url)
    return details


def _filter_response_headers(headers: httpx.Headers) -> list[tuple[bytes, bytes]]:
    filtered: list[tuple[bytes, bytes]] = []
    for name, value in headers.raw:
        if name.decode("latin-1").lower() not in HOP_BY_HOP_RESPONSE_HEADERS:
            filtered.append((name.lower(), value))
    return filtered


def _upstream_request_headers(headers: dict[str, str]) -> dict[str, str]:
    """Default ``Accept-Encoding`` to ``identity``; bodies are relayed undecoded."""
    prepared = {
        name: value
        for name, value in headers.items()
        if name.lower() != "accept-encoding" or value.strip()
    }
    if not any(name.lower() == "accept-encoding" for name in prepared):
        prepared["Accept-Encoding"] = "identity"
    return prepared


def _is_event_stream(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == EVENT_STREAM_MEDIA_TYPE


class PassthroughStreamingResponse(StreamingResponse):
    """Streams an upstream body while keeping repeated upstream headers."""

    def __init__(
        self,
        content: AsyncIterator[bytes],
        status_code: int,
        raw_headers: list[tuple[bytes, bytes]],
    ) -> None:
        super().__init__(content=content, status_code=status_code)
        self.raw_headers = list(raw_headers)


class EventStreamResponse(PassthroughStreamingResponse):
    """Appends the newline Azure leaves off the end of its SSE streams."""

    async def stream_response(self, send: Send) -> None:
        await send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            }
        )
        async for chunk in self.body_iterator:
            if not isinstance(chunk, (bytes, memoryview)):
                chunk = chunk.encode(self.charset)
            await send({"type": "http.response.body", "body": chunk, "more_body": True})

        try:
            await send(
                {
                    "type": "http.response.body",
                    "body": EVENT_STREAM_TERMINATOR,
                    "more_body": True,
                }
            )
        except OSError as exc:
            logger.warning("rewrite_azure_response_error error=%s", exc)
            return

        await send({"type": "http.response.body", "body": b"", "more_body": False})


class BackendProxy:
    def __init__(
        self,
        timeout_seconds: float,
        connect_timeout_seconds: float | None = None,
    ) -> None:
        read_timeout = max(0.1, float(timeout_seconds))
        connect_timeout = (
            max(0.1, float(connect_timeout_seconds))
            if connect_timeout_seconds is not None
            else max(0.1, min(5.0, read_timeout))
        )
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout=None,
                connect=connect_timeout,
                read=read_timeout,
                write=read_timeout,
                pool=connect_timeout,
            ),
            limits=httpx.Limits(max_connections=512, max_keepalive_connections=128),
            http2=_can_enable_http2(),
            follow_redirects=False,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def forward(self, outbound: OutboundRequest, request_id: str) -> Response:
        started = time.perf_counter()
        try:
            request = self.client.build_request(
                method=outbound.method,
                url=outbound.url,
                headers=_upstream_request_headers(outbound.headers),
                content=outbound.body or None,
            )
            upstream = await self.client.send(request, stream=True)
        except httpx.RequestError as exc:
            return self._upstream_error_response(exc, request_id)
        except (httpx.InvalidURL, UnicodeEncodeError) as exc:
            return self._invalid_request_response(exc, outbound, request_id)

        logger.info(
            "proxy_upstream_connected request_id=%s host=%s status=%d connect_ms=%.2f",
            request_id,
            outbound.target.host,
            upstream.status_code,
            (time.perf_counter() - started) * 1000.0,
        )

        response_headers = _filter_response_headers(upstream.headers)
        body = self._stream_upstream(upstream, request_id)
        if _is_event_stream(upstream.headers.get("content-type")):
            return EventStreamResponse(
                content=body,
                status_code=upstream.status_code,
                raw_headers=response_headers,
            )
        return PassthroughStreamingResponse(
            content=body,
            status_code=upstream.status_code,
            raw_headers=response_headers,
        )

    @staticmethod
    async def _stream_upstream(
        upstream: httpx.Response, request_id: str
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_raw():
                yield chunk
        except httpx.RequestError as exc:
            logger.warning(
                "proxy_upstream_stream_error request_id=%s error_type=%s error=%s",
                request_id,
                exc.__class__.__name__,
                exc,
            )
            raise
        finally:
            await upstream.aclose()

    @staticmethod
    def _invalid_request_response(
        exc: Exception, outbound: OutboundRequest, request_id: str
    ) -> JSONResponse:
        # The host override and api key come from the client's bearer token.
        logger.warning(
            "proxy_invalid_upstream_request request_id=%s host=%s error_type=%s error=%s",
            request_id,
            outbound.target.host,
            exc.__class__.__name__,
            exc,
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "error": {
                    "type": "invalid_upstream_request",
                    "message": f"Could not build backend request: {exc}",
                }
            },
        )

    @staticmethod
    def _upstream_error_response(
        exc: httpx.RequestError, request_id: str
    ) -> JSONResponse:
        details = _request_error_details(exc)
        logger.warning(
            "proxy_request_error request_id=%s error_type=%s url=%s error=%s",
            request_id,
            details["error_type"],
            details.get("request_url"),
            details["error"],
        )
        if details["is_timeout"]:
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={
                    "error": {
                        "type": "upstream_timeout",
                        "message": f"Backend did not respond in time: {details['error']}",
                    }
                },
            )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "error": {
                    "type": "upstream_connection_error",
                    "message": (
                        "Could not reach backend "
                        f"({details['error_type']}): {details['error']}"
                    ),
                }
            },
        )


def _can_enable_http2() -> bool:
    try:
        import h2  # noqa: F401
    except Exception:
        return False
    return True
