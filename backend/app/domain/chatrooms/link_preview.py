"""Link preview metadata for URLs posted in chat messages."""

from __future__ import annotations

import ipaddress
import logging
import re
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from html.parser import HTMLParser
from typing import Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote, urljoin, urlparse

import httpx

from app.settings import settings

logger = logging.getLogger(__name__)

USER_AGENTS: Tuple[str, ...] = (
    "facebookexternalhit/1.1 (+http://www.facebook.com/externalhit_uatext.php)",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
    "Twitterbot/1.0",
)

_YOUTUBE = re.compile(r"^(https?://)?(www\.)?(youtube\.com|youtu\.be)/.+", re.IGNORECASE)
_YOUTUBE_FAVICON = "https://www.youtube.com/s/desktop/12d6b690/img/favicon.ico"
_URL_IN_TEXT = re.compile(r"https?://[^\s<>\"']+")
_ICON_RELS = ("icon", "shortcut icon", "apple-touch-icon")
_PRIVATE_SUFFIXES = (".localhost", ".local", ".internal")


@dataclass(frozen=True)
class LinkPreview:
    url: str
    title: str = ""
    description: str = ""
    image: str = ""
    site_name: str = ""
    favicon: str = ""
    author: str = ""
    published_date: str = ""
    content_type: str = ""
    keywords: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "url": data["url"],
            "title": data["title"],
            "description": data["description"],
            "image": data["image"],
            "siteName": data["site_name"],
            "favicon": data["favicon"],
            "author": data["author"],
            "publishedDate": data["published_date"],
            "contentType": data["content_type"],
            "keywords": data["keywords"],
        }


class LinkPreviewClient(Protocol):
    async def fetch(self, url: str) -> LinkPreview:
        ...


def first_url(text: str) -> Optional[str]:
    match = _URL_IN_TEXT.search(text or "")
    return match.group(0) if match else None


def _google_favicon(hostname: str) -> str:
    return f"https://www.google.com/s2/favicons?domain={hostname}&sz=64"


def fallback_preview(url: str) -> LinkPreview:
    """Hostname-only preview used when every fetch strategy failed."""
    hostname = urlparse(url).hostname or ""
    if not hostname:
        return LinkPreview(url=url)
    return LinkPreview(
        url=url,
        title=hostname,
        site_name=hostname.replace("www.", ""),
        favicon=_google_favicon(hostname),
    )


class _MetaParser(HTMLParser):
    """Collects <meta>, <title>, icon links and rel=author text from a page."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.meta: Dict[str, str] = {}
        self.icons: Dict[str, str] = {}
        self.title_parts: List[str] = []
        self.author_parts: List[str] = []
        self._in_title = False
        self._author_depth = 0

    def handle_starttag(self, tag: str, attrs) -> None:
        values = {name.lower(): (value or "") for name, value in attrs}
        if tag == "meta":
            content = values.get("content", "").strip()
            if not content:
                return
            for attr in ("property", "name", "itemprop"):
                key = values.get(attr, "").strip().lower()
                if key and key not in self.meta:
                    self.meta[key] = content
        elif tag == "title":
            self._in_title = True
        elif tag == "link":
            rel = values.get("rel", "").strip().lower()
            href = values.get("href", "").strip()
            if rel in _ICON_RELS and href and rel not in self.icons:
                self.icons[rel] = href
        if values.get("rel", "").strip().lower() == "author" and tag != "link" and not self.author_parts:
            self._author_depth = 1
        elif self._author_depth:
            self._author_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag == "title":
            self._in_title = False
        if self._author_depth:
            self._author_depth -= 1

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self.title_parts.append(data)
        if self._author_depth:
            self.author_parts.append(data)

    def get(self, *names: str) -> str:
        for name in names:
            value = self.meta.get(name)
            if value:
                return value
        return ""


def _resolve(base: str, value: str) -> str:
    if not value:
        return ""
    if value.startswith("http"):
        return value
    return urljoin(base, value)


def parse_html(url: str, document: str) -> LinkPreview:
    parser = _MetaParser()
    parser.feed(document)
    parser.close()
    hostname = urlparse(url).hostname or ""
    title = parser.get("og:title", "twitter:title") or "".join(parser.title_parts).strip()
    favicon = ""
    for rel in _ICON_RELS:
        if rel in parser.icons:
            favicon = _resolve(url, parser.icons[rel])
            break
    if not favicon and hostname:
        favicon = _google_favicon(hostname)
    return LinkPreview(
        url=url,
        title=title,
        description=parser.get("og:description", "twitter:description", "description"),
        image=_resolve(url, parser.get("og:image", "og:image:url", "twitter:image", "twitter:image:src", "image")),
        site_name=parser.get("og:site_name", "application-name") or hostname.replace("www.", ""),
        favicon=favicon,
        author=parser.get("author", "article:author", "og:author", "twitter:creator") or "".join(parser.author_parts).strip(),
        published_date=parser.get("article:published_time", "og:updated_time", "datepublished", "date"),
        content_type=parser.get("og:type"),
        keywords=parser.get("keywords", "article:tag"),
    )


def _is_weak(preview: LinkPreview) -> bool:
    """Login walls and bare-hostname pages are worth retrying with another agent."""
    title = preview.title.lower()
    if title == "instagram" or "login" in title:
        return True
    hostname = urlparse(preview.url).hostname or ""
    return preview.title == hostname and not preview.image



def is_public_host(host: Optional[str]) -> bool:
    """False for loopback, private, link-local and other non-global addresses."""
    host = (host or "").strip("[]").rstrip(".").lower()
    if not host or host == "localhost" or host.endswith(_PRIVATE_SUFFIXES):
        return False
    if host.isdigit() or host.startswith("0x"):
        # integer and hex forms of an IPv4 address
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return address.is_global


async def refuse_private_hosts(request: httpx.Request) -> None:
    """httpx request hook; runs for every redirect hop as well."""
    if not is_public_host(request.url.host):
        raise httpx.RequestError(f"refusing to fetch non-public host {request.url.host!r}", request=request)


@dataclass
class HttpLinkPreviewClient(LinkPreviewClient):
    """Scrapes Open Graph / Twitter card metadata, rotating user agents."""

    http: httpx.AsyncClient
    user_agents: Tuple[str, ...] = USER_AGENTS
    request_timeout: float = 8.0

    async def fetch(self, url: str) -> LinkPreview:
        if not url:
            raise ValueError("url is required")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not is_public_host(parsed.hostname):
            logger.info("skipping preview for non-public url", extra={"url": url})
            return fallback_preview(url)
        if _YOUTUBE.match(url):
            try:
                return await self._youtube(url)
            except (httpx.HTTPError, ValueError, KeyError):
                logger.info("youtube oembed failed, falling back to scrape", extra={"url": url})

        last_error: Exception | None = None
        for index, agent in enumerate(self.user_agents):
            try:
                response = await self.http.get(url, headers=self._headers(agent), timeout=self.request_timeout)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                last_error = exc
                continue
            preview = parse_html(url, response.text)
            if _is_weak(preview) and index < len(self.user_agents) - 1:
                continue
            return preview
        logger.warning("link preview failed for every user agent", extra={"url": url, "error": repr(last_error)})
        return fallback_preview(url)

    async def _youtube(self, url: str) -> LinkPreview:
        response = await self.http.get(
            f"https://www.youtube.com/oembed?url={quote(url, safe='')}&format=json",
            timeout=self.request_timeout,
        )
        response.raise_for_status()
        data = response.json()
        author = data.get("author_name") or ""
        return LinkPreview(
            url=url,
            title=data["title"],
            description=f"By {author}" if author else "",
            image=data.get("thumbnail_url") or "",
            site_name="YouTube",
            favicon=_YOUTUBE_FAVICON,
            author=author,
            content_type="video",
        )

    @staticmethod
    def _headers(agent: str) -> Dict[str, str]:
        return {
            "User-Agent": agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }


class CachedLinkPreviewClient(LinkPreviewClient):
    """Bounded cache in front of another client; oldest entries are evicted first."""

    def __init__(
        self,
        inner: LinkPreviewClient,
        *,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None else settings.link_preview_cache_ttl_seconds)
        self.max_entries = int(max_entries if max_entries is not None else settings.link_preview_cache_max_entries)
        self._clock = clock
        self._cache: "OrderedDict[str, Tuple[float, LinkPreview]]" = OrderedDict()

    async def fetch(self, url: str) -> LinkPreview:
        now = self._clock()
        cached = self._cache.get(url)
        if cached and now - cached[0] < self.ttl_seconds:
            return cached[1]
        self._cache.pop(url, None)
        preview = await self.inner.fetch(url)
        if self.max_entries <= 0:
            return preview
        while len(self._cache) >= self.max_entries:
            self._cache.popitem(last=False)
        self._cache[url] = (now, preview)
        return preview

    def __len__(self) -> int:
        return len(self._cache)


_client: Optional[LinkPreviewClient] = None
_http: Optional[httpx.AsyncClient] = None


def get_client() -> LinkPreviewClient:
    global _client, _http
    if _client is None:
        _http = httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=5,
            event_hooks={"request": [refuse_private_hosts]},
        )
        _client = CachedLinkPreviewClient(
            HttpLinkPreviewClient(_http, request_timeout=settings.link_preview_timeout_seconds)
        )
    return _client


def set_client(client: Optional[LinkPreviewClient]) -> None:
    global _client
    _client = client


async def shutdown() -> None:
    global _client, _http
    if _http is not None:
        await _http.aclose()
    _http = None
    _client = None
