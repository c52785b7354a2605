"""Live page fetching and Open Graph metadata extraction."""

from __future__ import annotations

import logging
from typing import Optional, Tuple
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from readability import Document

from .config import DEFAULT_USER_AGENT
from .errors import FetchError
from .models import WebMetadata
from .utils import origin_of

logger = logging.getLogger("threadbound")

MAX_PAGE_BYTES = 5 * 1024 * 1024


class PageFetcher:
    """Fetches page HTML with a bounded timeout."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch(self, url: str) -> Tuple[str, str]:
        """Return the page HTML and the final URL after redirects."""
        logger.info("Fetching metadata for %s", url)
        try:
            resp = self.session.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                allow_redirects=True,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"failed to fetch {url}: {exc}") from exc
        content_type = resp.headers.get("Content-Type", "")
        if content_type and "html" not in content_type.lower():
            raise FetchError(f"{url} is not an HTML page (Content-Type={content_type})")
        if len(resp.content) > MAX_PAGE_BYTES:
            raise FetchError(f"{url} is larger than {MAX_PAGE_BYTES} bytes")
        return resp.text, resp.url or url


def _meta_content(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        value = tag["content"].strip()
        return value or None
    return None


def _readability_title(html: str) -> Optional[str]:
    try:
        title = Document(html).short_title()
    except Exception:  # noqa: BLE001 - readability raises bare exceptions on odd markup
        logger.debug("Readability could not parse a title", exc_info=True)
        return None
    if not title:
        return None
    return title.strip() or None


def _favicon_href(soup: BeautifulSoup) -> Optional[str]:
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "icon" in (r.lower() for r in rel):
            href = link["href"].strip()
            if href and not href.startswith("data:"):
                return href
    return None


def extract_web_metadata(html: str, final_url: str) -> WebMetadata:
    """Pull title, description, preview image and favicon out of page HTML.

    Relative image and icon references are made absolute against the page's
    origin; pages without a declared icon get ``/favicon.ico``.
    """
    soup = BeautifulSoup(html, "html.parser")
    base = origin_of(final_url) + "/"

    title = _meta_content(soup, property="og:title")
    if not title:
        title = _readability_title(html)
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    description = _meta_content(soup, property="og:description") or _meta_content(
        soup, name="description"
    )

    image_url: Optional[str] = None
    og_image = _meta_content(soup, property="og:image") or _meta_content(
        soup, property="og:image:url"
    )
    if og_image and not og_image.startswith("data:"):
        image_url = urljoin(base, og_image)

    icon = _favicon_href(soup)
    favicon_url = urljoin(base, icon) if icon else urljoin(base, "favicon.ico")

    return WebMetadata(
        source_url=final_url,
        title=title,
        description=description,
        image_url=image_url,
        favicon_url=favicon_url,
    )
