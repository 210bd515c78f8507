from typing import MutableMapping

from fastapi import Request
from fastapi.responses import Response

CORS_ALLOW_HEADERS = ", ".join(
    [
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "Range",
        "Git-Protocol",
        "User-Agent",
        "If-None-Match",
        "If-Modified-Since",
        "Cache-Control",
        "Pragma",
    ]
)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, OPTIONS",
    "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    "Access-Control-Expose-Headers": "*",
    "Access-Control-Max-Age": "86400",
}


def add_cors_headers(headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
    """
    Stamp the permissive CORS header set onto a header collection.

    Existing values are overwritten, so this must run after any upstream
    headers have been copied in. Works on plain dicts, ``httpx.Headers`` and
    Starlette ``MutableHeaders``.
    """
    for name, value in CORS_HEADERS.items():
        headers[name] = value
    return headers


def with_cors(response: Response) -> Response:
    add_cors_headers(response.headers)
    return response


async def handle_preflight(request: Request) -> Response:
    """Answer a CORS preflight for any path."""
    return with_cors(Response(status_code=204))
