"""Validation helpers for image URLs."""

import re
from urllib.parse import urlparse

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "bmp")

_EXTENSION_RE = re.compile(r"\.(%s)$" % "|".join(IMAGE_EXTENSIONS), re.IGNORECASE)
_URL_IN_TEXT_RE = re.compile(
    r"https?://[^\s]+\.(?:%s)" % "|".join(IMAGE_EXTENSIONS),
    re.IGNORECASE,
)


def is_valid_image_url(url: str) -> bool:
    """Check that a URL is absolute http(s) and points at an image file."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False

    return _EXTENSION_RE.search(url) is not None


def extract_urls_from_text(text: str) -> list[str]:
    """Find image URLs in free text (for example pasted clipboard content).

    Returns:
        URLs in the order they appear
    """
    return _URL_IN_TEXT_RE.findall(text)
