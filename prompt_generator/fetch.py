"""Image download and base64 encoding."""

import base64
import logging
import mimetypes
from typing import Optional
from urllib.parse import urlparse

import httpx

from .config import IMAGE_FETCH_TIMEOUT
from .errors import NetworkError
from .models import ImageData

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


def _detect_mime_type(url: str, content_type: Optional[str]) -> str:
    if content_type:
        mime_type = content_type.split(";")[0].strip()
        if mime_type:
            return mime_type
    guessed, _ = mimetypes.guess_type(urlparse(url).path)
    return guessed or "application/octet-stream"


async def fetch_and_encode(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = IMAGE_FETCH_TIMEOUT,
) -> ImageData:
    """Download an image and return its bytes as base64.

    Args:
        url: Image URL
        client: Optional shared client; a short-lived one is used otherwise
        timeout: Request timeout in seconds

    Returns:
        ImageData with the encoded bytes and detected media type

    Raises:
        NetworkError: On transport failure or a non-success status
    """
    headers = {"User-Agent": USER_AGENT}
    try:
        if client is not None:
            response = await client.get(url, headers=headers, follow_redirects=True)
        else:
            async with httpx.AsyncClient(follow_redirects=True, timeout=timeout) as c:
                response = await c.get(url, headers=headers)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch image {url}: {e}")
        raise NetworkError(f"Failed to fetch image {url}: {e}") from e

    mime_type = _detect_mime_type(url, response.headers.get("content-type"))
    data = base64.b64encode(response.content).decode("ascii")
    return ImageData(data=data, mime_type=mime_type)
