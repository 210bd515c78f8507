import logging
from typing import AsyncIterator, List, Tuple

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from opentelemetry import trace

from relay.cors import with_cors
from relay.utils import mask_url_credentials
from relay.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from relay.utils.traced_requests import traced_request
from relay.vars import PROXY_TIMEOUT, PROXY_USER_AGENT

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

MISSING_URL_MESSAGE = 'Missing "url" parameter'

# Hop-by-hop headers that should NOT be forwarded (RFC 9110)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers that identify the caller or the relay to the target
IDENTITY_HEADERS = {
    "host",
    "referer",
    "origin",
    "cf-connecting-ip",
    "true-client-ip",
    "x-client-ip",
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
    "x-real-ip",
    "forwarded",
}

# Upstream headers that would stop the calling origin from embedding the content
BLOCKING_RESPONSE_HEADERS = {
    "x-frame-options",
    "content-security-policy",
}

BODYLESS_METHODS = {"GET", "HEAD"}


def sanitize_target_url(target: str) -> str:
    """
    Repair the target URL sent by the client.

    Some git clients send the target as a path segment ("/github.com/x") or
    without a scheme ("github.com/x"). One leading slash is stripped and
    https is assumed. Anything else is left for the HTTP client to reject.
    """
    if target.startswith("/"):
        target = target[1:]
    if not target.startswith(("http://", "https://")):
        target = "https://" + target
    return target


def prepare_headers(request: Request) -> httpx.Headers:
    """
    Prepare headers for forwarding to the target.

    Every caller header is kept (Authorization and Git-Protocol included)
    except hop-by-hop headers and those that expose the caller or the relay.
    """
    headers = httpx.Headers(
        [
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
            and name.lower() not in IDENTITY_HEADERS
        ]
    )

    # Some hosts reject requests without a User-Agent
    if "user-agent" not in headers:
        headers["User-Agent"] = PROXY_USER_AGENT

    return headers


def prepare_response_headers(response: httpx.Response) -> List[Tuple[str, str]]:
    """Copy upstream headers, keeping repeated ones such as Set-Cookie."""
    return [
        (name, value)
        for name, value in response.headers.multi_items()
        if name.lower() not in HOP_BY_HOP_HEADERS
        and name.lower() not in BLOCKING_RESPONSE_HEADERS
    ]


async def stream_response(
    response: httpx.Response, client: httpx.AsyncClient, target_url: str
) -> AsyncIterator[bytes]:
    """
    Pass the upstream body through chunk by chunk.

    Raw bytes are used so Content-Encoding and Content-Length from the target
    stay valid. The response and its client are closed when the caller
    finishes reading or disconnects.
    """
    try:
        async for chunk in response.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        log_exception_with_details(
            logger,
            f"[Proxy] Upstream body interrupted for {mask_url_credentials(target_url)}",
            e,
        )
        raise
    finally:
        await response.aclose()
        await client.aclose()


class UpstreamStreamingResponse(StreamingResponse):
    """
    StreamingResponse that owns an upstream response and its client.

    Both are closed once the ASGI call ends, including when the caller goes
    away before the body iterator was ever started.
    """

    def __init__(
        self, upstream: httpx.Response, client: httpx.AsyncClient, target_url: str
    ):
        super().__init__(
            stream_response(upstream, client, target_url),
            status_code=upstream.status_code,
        )
        self.upstream = upstream
        self.client = client
        for name, value in prepare_response_headers(upstream):
            self.headers.append(name, value)

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream.aclose()
            await self.client.aclose()


def proxy_error_response(exception: Exception) -> Response:
    return with_cors(
        PlainTextResponse(
            f"Proxy Error: {format_exception_message(exception)}", status_code=502
        )
    )


async def forward_to_target(request: Request) -> Response:
    """
    Forward a request to the target named by the ``url`` query parameter.

    - Strips caller identity and hop-by-hop headers
    - Streams the request body for methods that carry one
    - Follows redirects, the caller only sees the final response
    - Streams the response back without buffering it
    - Any transport failure becomes a 502
    """
    # A repeated parameter resolves to its first occurrence
    targets = request.query_params.getlist("url")
    target = targets[0] if targets else None
    if not target:
        return with_cors(PlainTextResponse(MISSING_URL_MESSAGE, status_code=400))

    target_url = sanitize_target_url(target)

    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        target_url=target_url,
        start_message=f"[Proxy] {request.method} -> {target_url}",
    ) as span:
        headers = prepare_headers(request)
        content = request.stream() if request.method not in BODYLESS_METHODS else None

        client = httpx.AsyncClient(
            timeout=httpx.Timeout(PROXY_TIMEOUT), follow_redirects=True
        )
        try:
            upstream_request = client.build_request(
                request.method, target_url, headers=headers, content=content
            )
            response = await client.send(upstream_request, stream=True)
        except Exception as e:
            await client.aclose()
            log_exception_with_details(
                logger, f"[Proxy] Request to {mask_url_credentials(target_url)} failed", e
            )
            span.set_attribute("relay.error", type(e).__name__)
            span.set_attribute("relay.status_code", 502)
            return proxy_error_response(e)

        span.set_attribute("relay.status_code", response.status_code)
        logger.debug(
            f"[Proxy] {request.method} {mask_url_credentials(target_url)} answered {response.status_code}"
        )

        return with_cors(UpstreamStreamingResponse(response, client, target_url))
