"""
End-to-end tests through the FastAPI app.

Upstream targets are served by an httpx MockTransport, so no network is used.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from relay.cors import CORS_HEADERS


@pytest.fixture(scope="module")
def test_client():
    from relay.server import app

    with TestClient(app) as client:
        yield client


def assert_cors(response):
    for name, value in CORS_HEADERS.items():
        assert response.headers[name] == value, f"{name} missing on {response.status_code}"


@pytest.mark.parametrize("path", ["/", "/batch", "/github.com/user/repo", "/docs"])
def test_preflight_any_path(test_client, path):
    r = test_client.options(path)

    assert r.status_code == 204
    assert r.content == b""
    assert_cors(r)


def test_missing_url_parameter(test_client):
    r = test_client.get("/")

    assert r.status_code == 400
    assert r.text == 'Missing "url" parameter'
    assert_cors(r)


def test_batch_without_urls(test_client):
    r = test_client.post("/batch", json={})

    assert r.status_code == 400
    assert r.text == 'Invalid Request: "urls" must be an array'
    assert_cors(r)


def test_proxy_passthrough(test_client, mock_upstream):
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        return httpx.Response(
            200,
            headers={
                "content-type": "text/plain",
                "x-frame-options": "DENY",
                "content-security-policy": "default-src 'none'",
            },
            stream=httpx.ByteStream(b"hello from upstream"),
        )

    mock_upstream(handler)

    r = test_client.get(
        "/",
        params={"url": "/example.com/hello"},
        headers={
            "authorization": "Bearer t0ken",
            "origin": "https://app.example.com",
            "referer": "https://app.example.com/",
            "x-forwarded-for": "10.1.1.1",
        },
    )

    assert r.status_code == 200
    assert r.text == "hello from upstream"
    assert "x-frame-options" not in r.headers
    assert "content-security-policy" not in r.headers
    assert_cors(r)

    assert seen["url"] == "https://example.com/hello"
    assert seen["headers"]["authorization"] == "Bearer t0ken"
    assert seen["headers"]["host"] == "example.com"
    assert "origin" not in seen["headers"]
    assert "referer" not in seen["headers"]
    assert "x-forwarded-for" not in seen["headers"]


def test_proxy_post_body(test_client, mock_upstream):
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["body"] = request.content
        return httpx.Response(
            200,
            headers={"content-type": "application/x-git-receive-pack-result"},
            stream=httpx.ByteStream(b"0000"),
        )

    mock_upstream(handler)

    r = test_client.post(
        "/",
        params={"url": "https://git.example.com/repo.git/git-receive-pack"},
        content=b"PACK-DATA",
        headers={"content-type": "application/x-git-receive-pack-request"},
    )

    assert r.status_code == 200
    assert r.content == b"0000"
    assert seen == {"method": "POST", "body": b"PACK-DATA"}


def test_proxy_upstream_not_found(test_client, mock_upstream):
    mock_upstream(lambda request: httpx.Response(404, stream=httpx.ByteStream(b"nope")))

    r = test_client.get("/", params={"url": "https://example.com/missing"})

    assert r.status_code == 404
    assert r.text == "nope"
    assert_cors(r)


def test_proxy_connection_refused(test_client, mock_upstream):
    def handler(request: httpx.Request):
        raise httpx.ConnectError("Connection refused", request=request)

    mock_upstream(handler)

    r = test_client.get("/", params={"url": "https://down.example.com/"})

    assert r.status_code == 502
    assert r.text == "Proxy Error: Connection refused"
    assert_cors(r)


def test_proxy_on_non_root_path(test_client, mock_upstream):
    mock_upstream(lambda request: httpx.Response(200, stream=httpx.ByteStream(b"ok")))

    r = test_client.get("/some/other/path", params={"url": "example.com"})

    assert r.status_code == 200
    assert r.text == "ok"


def test_batch_end_to_end(test_client, mock_upstream):
    def handler(request: httpx.Request):
        if request.url.host == "a.example.com":
            return httpx.Response(200, text="<rss/>", headers={"content-type": "application/rss+xml"})
        if request.url.host == "b.example.com":
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(404)

    mock_upstream(handler)
    urls = [
        "https://a.example.com/feed",
        "https://b.example.com/feed",
        "https://c.example.com/feed",
    ]

    r = test_client.post("/batch", json={"urls": urls})

    assert r.status_code == 200
    assert r.headers["content-type"] == "application/json"
    assert_cors(r)

    results = r.json()["results"]
    assert [item["url"] for item in results] == urls
    assert results[0]["ok"] is True
    assert results[0]["content"] == "<rss/>"
    assert results[1] == {"url": urls[1], "ok": False, "status": 500, "error": "Connection refused"}
    assert results[2] == {"url": urls[2], "ok": False, "status": 404, "error": "Not Found"}


def test_get_batch_is_proxied(test_client):
    r = test_client.get("/batch")

    # No url parameter, so the proxy answers
    assert r.status_code == 400
    assert r.text == 'Missing "url" parameter'


@pytest.mark.parametrize("method", ["PROPFIND", "MKCOL", "REPORT", "PURGE"])
def test_any_method_is_proxied(test_client, mock_upstream, method):
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        return httpx.Response(
            207,
            headers={"content-type": "application/xml"},
            stream=httpx.ByteStream(b"<multistatus/>"),
        )

    mock_upstream(handler)

    r = test_client.request(method, "/", params={"url": "example.com/dav"})

    assert r.status_code == 207
    assert r.content == b"<multistatus/>"
    assert seen["method"] == method
    assert_cors(r)


def test_unknown_method_without_url(test_client):
    r = test_client.request("PROPFIND", "/collection/")

    assert r.status_code == 400
    assert r.text == 'Missing "url" parameter'
    assert_cors(r)


def test_repeated_url_parameter_uses_first(test_client, mock_upstream):
    seen = {}

    def handler(request: httpx.Request):
        seen["host"] = request.url.host
        return httpx.Response(200, stream=httpx.ByteStream(b"ok"))

    mock_upstream(handler)

    r = test_client.get(
        "/",
        params=[
            ("url", "https://first.example.com/feed"),
            ("url", "https://second.example.com/feed"),
        ],
    )

    assert r.status_code == 200
    assert seen["host"] == "first.example.com"


@pytest.mark.parametrize(
    "body",
    [
        b'{"urls": [NaN]}',
        b'{"urls": [Infinity]}',
        b'{"urls": ["https://a", -Infinity]}',
    ],
)
def test_batch_rejects_non_json_constants(test_client, body):
    r = test_client.post(
        "/batch", content=body, headers={"content-type": "application/json"}
    )

    assert r.status_code == 400
    assert r.text == 'Invalid Request: "urls" must be an array'
    assert_cors(r)
