import asyncio
import json
import logging
from contextlib import nullcontext
from typing import Any, Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from opentelemetry import trace
from pydantic import ValidationError

from relay.batch.models import BatchRequest, BatchResponse, FetchResult
from relay.cors import with_cors
from relay.utils import mask_url_credentials
from relay.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from relay.utils.traced_requests import traced_request
from relay.vars import BATCH_FETCH_TIMEOUT, BATCH_MAX_CONCURRENCY, BATCH_USER_AGENT

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

INVALID_REQUEST_MESSAGE = 'Invalid Request: "urls" must be an array'

FEED_ACCEPT = (
    "application/rss+xml, application/xml, text/xml, application/atom+xml, "
    "text/html, */*"
)


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def parse_batch_request(body: bytes) -> Optional[BatchRequest]:
    """Return the parsed batch, or None when the body is not ``{"urls": [...]}``."""
    try:
        payload = json.loads(body, parse_constant=_reject_constant)
    except ValueError:
        return None
    try:
        return BatchRequest.model_validate(payload)
    except ValidationError:
        return None


def build_fetch_headers(request: Request) -> Dict[str, str]:
    return {
        "Accept": FEED_ACCEPT,
        "User-Agent": request.headers.get("user-agent", BATCH_USER_AGENT),
    }


async def fetch_one(
    client: httpx.AsyncClient,
    url: Any,
    headers: Dict[str, str],
    semaphore: Optional[asyncio.Semaphore] = None,
) -> FetchResult:
    """
    Fetch a single batch entry. Never raises: every outcome is a FetchResult.
    """
    if not isinstance(url, str):
        return FetchResult.failure(url, 500, f"Invalid URL: {url!r}")

    try:
        async with semaphore or nullcontext():
            response = await client.get(url, headers=headers)
    except Exception as e:
        log_exception_with_details(
            logger,
            f"[Batch] Fetch of {mask_url_credentials(url)} failed",
            e,
            level=logging.WARNING,
            include_traceback=False,
        )
        return FetchResult.failure(url, 500, format_exception_message(e))

    if not response.is_success:
        return FetchResult.failure(url, response.status_code, response.reason_phrase)

    return FetchResult.success(
        url, response.status_code, response.text, dict(response.headers)
    )


async def handle_batch(request: Request) -> Response:
    """
    Fetch every URL of ``{"urls": [...]}`` concurrently and answer with
    ``{"results": [...]}`` in input order.

    One failing URL never affects the others; only a fault outside the
    per-URL fetches turns the whole batch into a 500.
    """
    with traced_request(
        tracer,
        operation="batch_request",
        method=request.method,
        target_url=None,
        start_message=f"[Batch] {request.method} {request.url.path}",
    ) as span:
        try:
            batch = parse_batch_request(await request.body())
            if batch is None:
                span.set_attribute("relay.status_code", 400)
                return with_cors(
                    PlainTextResponse(INVALID_REQUEST_MESSAGE, status_code=400)
                )

            span.set_attribute("relay.batch.size", len(batch.urls))
            logger.info(f"[Batch] Fetching {len(batch.urls)} URLs")

            headers = build_fetch_headers(request)
            semaphore = (
                asyncio.Semaphore(BATCH_MAX_CONCURRENCY)
                if BATCH_MAX_CONCURRENCY
                else None
            )
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(BATCH_FETCH_TIMEOUT), follow_redirects=True
            ) as client:
                results = await asyncio.gather(
                    *(fetch_one(client, url, headers, semaphore) for url in batch.urls)
                )

            failed = sum(1 for result in results if not result.ok)
            span.set_attribute("relay.batch.failed", failed)
            span.set_attribute("relay.status_code", 200)
            logger.debug(f"[Batch] Done, {failed} of {len(results)} URLs failed")

            return with_cors(
                JSONResponse(BatchResponse(results=list(results)).to_payload())
            )

        except Exception as e:
            log_exception_with_details(logger, "[Batch] Batch request failed", e)
            span.set_attribute("relay.error", type(e).__name__)
            span.set_attribute("relay.status_code", 500)
            return with_cors(
                PlainTextResponse(
                    f"Batch Error: {format_exception_message(e)}", status_code=500
                )
            )
