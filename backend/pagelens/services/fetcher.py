import os
import asyncio
import logging
from urllib.parse import urljoin, urlparse

import httpx

from pagelens.errors import (
    InvalidInput,
    PayloadTooLarge,
    UnprocessableContent,
    UpstreamFailure,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "10"))  # seconds, whole fetch
MAX_HTML_BYTES = int(os.getenv("MAX_HTML_BYTES", str(10 * 1024 * 1024)))
MAX_REDIRECTS = 5

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
HTML_CONTENT_TYPES = ("text/html", "application/xhtml")

REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


def validate_url(url: str) -> str:
    """Return the stripped URL or raise InvalidInput for non-http(s) input."""
    url = (url or "").strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        raise InvalidInput("Invalid URL provided")
    if not parsed.scheme or not parsed.netloc:
        raise InvalidInput("Invalid URL provided")
    if parsed.scheme not in ("http", "https"):
        raise InvalidInput("Only HTTP and HTTPS URLs are allowed")
    return url


def _too_large(max_bytes: int) -> PayloadTooLarge:
    return PayloadTooLarge(f"HTML content exceeds maximum size of {max_bytes / 1024 / 1024:g} MB")


async def _fetch(client: httpx.AsyncClient, url: str, max_bytes: int, max_redirects: int) -> dict:
    current = url
    redirects = 0
    while True:
        async with client.stream("GET", current, headers=REQUEST_HEADERS, follow_redirects=False) as resp:
            if resp.status_code in REDIRECT_STATUSES:
                location = resp.headers.get("location")
                if not location:
                    raise UpstreamFailure("Redirect without location header")
                try:
                    current = urljoin(current, location)
                    scheme = urlparse(current).scheme
                except ValueError:
                    raise UpstreamFailure(f"Redirect to malformed URL: {location}")
                redirects += 1
                if redirects > max_redirects:
                    raise UpstreamFailure("Too many redirects")
                if scheme not in ("http", "https"):
                    raise UpstreamFailure(f"Redirect to unsupported URL: {current}")
                logger.info(f"[fetch] Redirect {redirects} → {current}")
                continue

            if resp.status_code in (401, 403):
                raise UpstreamFailure("Page is protected (requires authentication)")
            if not resp.is_success:
                raise UpstreamFailure(f"Failed to fetch URL: HTTP {resp.status_code}")

            content_type = resp.headers.get("content-type", "")
            if not any(t in content_type for t in HTML_CONTENT_TYPES):
                raise UnprocessableContent("URL does not return HTML content")

            declared = resp.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > max_bytes:
                raise _too_large(max_bytes)

            body = bytearray()
            async for chunk in resp.aiter_bytes():
                body.extend(chunk)
                if len(body) > max_bytes:
                    raise _too_large(max_bytes)

            return {
                "html": body.decode(resp.encoding or "utf-8", errors="replace"),
                "finalUrl": current,
                "statusCode": resp.status_code,
                "contentLength": len(body),
            }


async def fetch_url(
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = FETCH_TIMEOUT,
    max_bytes: int = MAX_HTML_BYTES,
    max_redirects: int = MAX_REDIRECTS,
) -> dict:
    """Fetch one HTML page, following at most ``max_redirects`` redirects by hand.

    Returns ``{html, finalUrl, statusCode, contentLength}``. Nothing is retried;
    every failure maps onto one of the pipeline error kinds.
    """
    url = validate_url(url)
    t0 = asyncio.get_running_loop().time()
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                result = await asyncio.wait_for(_fetch(own_client, url, max_bytes, max_redirects), timeout)
        else:
            result = await asyncio.wait_for(_fetch(client, url, max_bytes, max_redirects), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        raise UpstreamTimeout(f"Request timed out after {timeout:g} seconds")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise UpstreamFailure(f"Failed to fetch URL: {e}")

    elapsed = asyncio.get_running_loop().time() - t0
    logger.info(
        f"[fetch] {result['finalUrl']} → HTTP {result['statusCode']}, "
        f"{result['contentLength']} bytes in {elapsed:.1f}s"
    )
    return result
