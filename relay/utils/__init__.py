from urllib.parse import urlsplit, urlunsplit


def mask_url_credentials(url: str) -> str:
    """Hide the password part of ``user:password@host`` URLs before logging them."""
    if not url or "@" not in url:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if parts.password is None:
        return url
    netloc = parts.netloc.replace(f":{parts.password}@", ":****@", 1)
    return urlunsplit(parts._replace(netloc=netloc))
