"""Page fetcher with SSRF protection.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB (configurable).
- Timeout: 30 seconds (configurable).
- Max redirects: 3.

Fetching is blocking urllib I/O; ``PageFetcher.fetch`` runs it in a worker
thread so the event loop stays free.
"""

from __future__ import annotations

import asyncio
import ipaddress
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

from bs4 import BeautifulSoup

from docdesk.db.repository import utcnow
from docdesk.errors import WebSearchError
from docdesk.ingest.extract import _h2t

USER_AGENT = "docdesk/0.1 (+local document assistant)"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}

_REMOVE_TAGS = [
    "script", "style", "nav", "footer", "header", "aside",
    "iframe", "noscript", "svg", "form", "button", "input", "head",
]
_REMOVE_SELECTORS = [
    '[role="navigation"]', '[role="banner"]', '[role="contentinfo"]',
    ".nav", ".navbar", ".footer", ".sidebar", ".advertisement", ".ad",
    "#nav", "#navbar", "#footer", "#sidebar", "#comments",
]
_MAIN_SELECTORS = ["article", "main", '[role="main"]', ".content", "#content"]


class SsrfError(WebSearchError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass
class WebPage:
    url: str
    title: str
    content: str
    fetched_at: str


def extract_main_text(html: str) -> tuple[str, str]:
    """Return ``(title, text)`` from *html*, preferring article/main regions.

    Non-content elements (scripts, navigation, footers, sidebars) are
    removed before conversion.
    """
    soup = BeautifulSoup(html, "html.parser")
    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""

    for tag in soup.find_all(_REMOVE_TAGS):
        tag.decompose()
    for selector in _REMOVE_SELECTORS:
        for tag in soup.select(selector):
            tag.decompose()

    region = None
    for selector in _MAIN_SELECTORS:
        region = soup.select_one(selector)
        if region is not None:
            break
    if region is None:
        region = soup.body or soup

    text = _h2t.handle(str(region))
    text = re.sub(r"\n\s*\n+", "\n\n", text).strip()
    return title, text


def check_url(url: str) -> None:
    """Validate scheme and block hosts resolving to internal addresses.

    Raises:
        WebSearchError: For unsupported schemes or unresolvable hosts.
        SsrfError: If any resolved address is private or reserved.
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise WebSearchError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )
    hostname = parsed.hostname
    if not hostname:
        raise WebSearchError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise WebSearchError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        addr_str = addrinfo[4][0]
        try:
            ip = ipaddress.ip_address(addr_str)
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed."
            )


class PageFetcher:
    """Fetch a web page and reduce it to readable text.

    Args:
        timeout: Connect + read timeout in seconds.
        max_bytes: Response body cap.
    """

    def __init__(self, timeout: int = _TIMEOUT, max_bytes: int = _MAX_BYTES) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def fetch(self, url: str) -> WebPage:
        return await asyncio.to_thread(self.fetch_sync, url)

    def fetch_sync(self, url: str) -> WebPage:
        """Validate, fetch, and convert *url*.

        Raises:
            WebSearchError: On any validation, network or size failure.
        """
        check_url(url)
        body, content_type = self._fetch(url)
        text = body.decode("utf-8", errors="replace")
        if content_type == "text/plain":
            return WebPage(url=url, title=url, content=text.strip(), fetched_at=utcnow())
        title, content = extract_main_text(text)
        return WebPage(url=url, title=title or url, content=content, fetched_at=utcnow())

    def _fetch(self, url: str) -> tuple[bytes, str]:
        """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check.

        Returns (body_bytes, content_type_without_params).
        """
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

        try:
            response: HTTPResponse = opener.open(request, timeout=self.timeout)
        except (urllib.error.URLError, TimeoutError) as exc:
            raise WebSearchError(f"Failed to fetch URL '{url}': {exc}") from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            if ct not in _ALLOWED_CONTENT_TYPES:
                raise WebSearchError(
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
                )
            body = response.read(self.max_bytes + 1)
        if len(body) > self.max_bytes:
            raise WebSearchError(
                f"Response body exceeds {self.max_bytes // (1024 * 1024)} MB limit for URL '{url}'."
            )
        return body, ct


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise an error after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise WebSearchError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        check_url(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
