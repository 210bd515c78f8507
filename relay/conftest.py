from unittest.mock import Mock

import httpx
import pytest
from fastapi import Request
from fastapi.datastructures import QueryParams


class ChunkedStream(httpx.AsyncByteStream):
    """Upstream body delivered in several chunks, optionally failing midway."""

    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self):
        self.closed = True


@pytest.fixture
def mock_request():
    """Create a mock FastAPI Request object aimed at the single proxy."""
    request = Mock(spec=Request)
    request.method = "GET"
    request.url.path = "/"
    request.query_params = QueryParams({"url": "https://example.com/feed.xml"})
    request.headers = {"host": "relay.example.com", "user-agent": "test-agent"}

    async def stream():
        yield b""

    request.stream = Mock(side_effect=stream)
    return request


@pytest.fixture
def upstream_response():
    """Build httpx responses whose body has not been read yet, like a streamed one."""

    def _create_response(status_code=200, headers=None, chunks=None, error=None):
        return httpx.Response(
            status_code,
            headers=headers or {},
            stream=ChunkedStream(chunks if chunks is not None else [b"test content"], error),
        )

    return _create_response


@pytest.fixture
def mock_upstream(monkeypatch):
    """Route every httpx.AsyncClient the relay opens through a MockTransport handler."""
    real_async_client = httpx.AsyncClient

    def _install(handler):
        def _client(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(handler)
            return real_async_client(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", _client)

    return _install
