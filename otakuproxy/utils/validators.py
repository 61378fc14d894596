from typing import Iterable, Optional
from urllib.parse import urlparse

from otakuproxy.utils.errors import ValidationError
from otakuproxy.utils.logger import api_logger

# ===========================
# Resource URL Validation
# ===========================
def validate_resource_url(url: Optional[str], allowed_hosts: Iterable[str]) -> str:
    if not url or not url.strip():
        api_logger.debug("Empty url provided")
        raise ValidationError("Missing ?url=")

    url = url.strip()
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        api_logger.debug(f"Malformed url: {type(e).__name__}")
        raise ValidationError("Malformed URL") from e

    if parsed.scheme not in ("http", "https"):
        api_logger.debug(f"Invalid scheme: {parsed.scheme or 'none'}")
        raise ValidationError("Expecting an http(s) URL")

    host = (hostname or "").lower()
    if host not in {h.lower() for h in allowed_hosts}:
        api_logger.debug(f"Host not allowed: {host or 'none'}")
        raise ValidationError(f"Unsupported host: {host or 'none'}")

    if not parsed.path.strip("/"):
        api_logger.debug("Url without path")
        raise ValidationError("Expecting a link to a post or reel")

    return url
