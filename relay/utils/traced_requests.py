import logging
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry.trace import Tracer

from relay.utils import mask_url_credentials

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    method: str,
    target_url: Optional[str],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common relay attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        span.set_attribute("relay.handler", operation)
        span.set_attribute("relay.method", method)
        if target_url:
            span.set_attribute("relay.target_url", mask_url_credentials(target_url))
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.info(
            start_message.replace(target_url, mask_url_credentials(target_url))
            if target_url
            else start_message
        )
        yield span
