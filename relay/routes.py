from typing import Awaitable, Callable

from fastapi import APIRouter, Request
from fastapi.responses import Response

from relay.batch.handler import handle_batch
from relay.cors import handle_preflight
from relay.proxy.handler import forward_to_target

router = APIRouter()

Handler = Callable[[Request], Awaitable[Response]]

BATCH_PATH = "/batch"


def select_handler(method: str, path: str) -> Handler:
    """Pick the handler for a request. Routing is total: the proxy is the fallback."""
    if method == "OPTIONS":
        return handle_preflight
    if path == BATCH_PATH and method == "POST":
        return handle_batch
    return forward_to_target


async def dispatch(request: Request) -> Response:
    handler = select_handler(request.method, request.url.path)
    return await handler(request)


# Plain route without a method list, so every HTTP method (WebDAV and custom
# verbs included) reaches the dispatcher
router.add_route("/{path:path}", dispatch, include_in_schema=False)
