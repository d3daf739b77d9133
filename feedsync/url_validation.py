"""URL validation and media filename helpers.

Feed URLs and image URLs come from configuration and from third-party
feeds, so both are checked before anything is fetched or handed to the
catalog API.
"""

import re
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

from feedsync.errors import FeedSyncError

__all__ = [
    "URLValidationError",
    "sanitize_url",
    "validate_url",
    "is_gzip_url",
    "media_filename_from_url",
]


class URLValidationError(FeedSyncError):
    """Raised when URL validation fails."""
    pass


# Dangerous URL schemes to reject
DANGEROUS_SCHEMES = {"javascript", "data", "vbscript", "file"}

SUSPICIOUS_PATTERNS = (
    r"\.\.\/",           # Path traversal
    r"%2e%2e",           # Encoded path traversal
    r"<script",          # XSS attempt
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.\-]+")


def sanitize_url(url: str) -> str:
    """Strip whitespace and control characters from a URL."""
    if not url:
        return ""

    url = url.strip()
    url = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", url)
    url = url.replace("%00", "")

    return url


def validate_url(url: str) -> str:
    """Validate a URL for safety.

    Args:
        url: URL to validate

    Returns:
        Sanitized URL

    Raises:
        URLValidationError: If URL is empty, malformed or uses a bad scheme
    """
    url = sanitize_url(url)
    if not url:
        raise URLValidationError("URL is empty")

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise URLValidationError(f"Failed to parse URL: {e}") from e

    scheme = parsed.scheme.lower()
    if scheme in DANGEROUS_SCHEMES:
        raise URLValidationError(f"Dangerous URL scheme: {scheme}")

    if scheme not in ("http", "https"):
        raise URLValidationError(f"Invalid URL scheme: {scheme or '(none)'}")

    if not parsed.netloc:
        raise URLValidationError("URL has no domain")

    url_lower = url.lower()
    for pattern in SUSPICIOUS_PATTERNS:
        if re.search(pattern, url_lower):
            raise URLValidationError(f"URL contains suspicious pattern: {pattern}")

    return url


def is_gzip_url(url: str) -> bool:
    """True if the URL path ends in ``.gz``."""
    return urlparse(sanitize_url(url)).path.lower().endswith(".gz")


def media_filename_from_url(url: str) -> Optional[str]:
    """Derive the media dedup key from an image URL.

    The basename of the URL path with its extension removed, URL-decoded,
    with every run of characters outside ``[A-Za-z0-9_.-]`` collapsed to
    ``_`` and leading/trailing underscores removed.

    Returns:
        The filename, or None if nothing usable remains
    """
    path = urlparse(sanitize_url(url)).path
    if not path:
        return None

    stem = PurePosixPath(unquote(path)).stem
    name = _UNSAFE_FILENAME_CHARS.sub("_", stem).strip("_")
    return name or None
