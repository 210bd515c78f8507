import logging
import os

logger = logging.getLogger("uvicorn.error")


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


SERVICE_NAME = os.getenv("SERVICE_NAME", "sift-relay")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = _int_from_env("PORT", 8787)
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

# Single proxy calls may carry large git pack files, so allow a long timeout
PROXY_TIMEOUT = _int_from_env("PROXY_TIMEOUT", 300)
BATCH_FETCH_TIMEOUT = _int_from_env("BATCH_FETCH_TIMEOUT", 30)
# 0 means no cap on concurrent batch fetches
BATCH_MAX_CONCURRENCY = max(0, _int_from_env("BATCH_MAX_CONCURRENCY", 0))

PROXY_USER_AGENT = os.environ.get("PROXY_USER_AGENT", "Sift-Proxy/1.0")
BATCH_USER_AGENT = os.environ.get("BATCH_USER_AGENT", "Sift-RSS-Fetcher/1.0")

METRICS_PATH = os.environ.get("METRICS_PATH", "").strip()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
