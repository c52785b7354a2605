"""Ordered fallback chain that turns a URL into a cached thumbnail."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import requests

from .attachments import AttachmentResolver
from .cache import ThumbnailCache
from .config import PreviewConfig
from .content import PageFetcher, extract_web_metadata
from .database import MessageStore
from .errors import CacheError, ThreadboundError
from .images import ImageDownloader, PillowImageConverter
from .models import MessageAttachment, RichLinkMetadata, URLThumbnail
from .utils import domain_of, domain_title

logger = logging.getLogger("threadbound")

SCREENSHOT_DESCRIPTION = "Website screenshot"
DOMAIN_CARD_DESCRIPTION = "Web link"


@dataclass
class ResolutionRequest:
    """Working state for one URL while the chain runs."""

    url: str
    metadata: Optional[RichLinkMetadata] = None
    attachments: Sequence[MessageAttachment] = ()
    title: str = ""
    description: str = ""
    errors: List[str] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        url: str,
        metadata: Optional[RichLinkMetadata],
        attachments: Sequence[MessageAttachment],
    ) -> "ResolutionRequest":
        title = ""
        description = ""
        if metadata is not None:
            title = metadata.title or ""
            description = metadata.summary or metadata.site_name or ""
        return cls(url, metadata, tuple(attachments), title, description)


Strategy = Callable[[ResolutionRequest], Optional[URLThumbnail]]


class ThumbnailPipeline:
    """Resolves URLs through cache, attachment, metadata, page and card strategies."""

    def __init__(
        self,
        cache: ThumbnailCache,
        config: PreviewConfig,
        converter: Optional[PillowImageConverter] = None,
        downloader: Optional[ImageDownloader] = None,
        page_fetcher: Optional[PageFetcher] = None,
        attachments: Optional[AttachmentResolver] = None,
        screenshotter=None,
    ) -> None:
        self.cache = cache
        self.config = config
        self.converter = converter or PillowImageConverter()
        self.downloader = downloader or ImageDownloader(
            timeout=config.image_timeout,
            max_bytes=config.max_image_bytes,
            user_agent=config.user_agent,
        )
        self.page_fetcher = page_fetcher or PageFetcher(
            timeout=config.fetch_timeout, user_agent=config.user_agent
        )
        self.attachments = attachments or AttachmentResolver(
            attachments_root=config.attachments_root
        )
        self.screenshotter = screenshotter

    @classmethod
    def from_config(
        cls,
        config: PreviewConfig,
        store: Optional[MessageStore] = None,
        session: Optional[requests.Session] = None,
    ) -> "ThumbnailPipeline":
        """Wire the default HTTP, Pillow and (optionally) Playwright capabilities."""
        session = session or requests.Session()
        screenshotter = None
        if config.screenshots:
            from .screenshots import PlaywrightScreenshotter

            screenshotter = PlaywrightScreenshotter(timeout=config.screenshot_timeout)
        return cls(
            cache=ThumbnailCache(config.cache_dir),
            config=config,
            downloader=ImageDownloader(
                session,
                timeout=config.image_timeout,
                max_bytes=config.max_image_bytes,
                user_agent=config.user_agent,
            ),
            page_fetcher=PageFetcher(
                session, timeout=config.fetch_timeout, user_agent=config.user_agent
            ),
            attachments=AttachmentResolver(store, config.attachments_root),
            screenshotter=screenshotter,
        )

    @property
    def strategies(self) -> List[Tuple[str, Strategy]]:
        """The fallback chain, tried in order until one yields a thumbnail."""
        chain: List[Tuple[str, Strategy]] = [
            ("attachment", self._from_attachment),
            ("metadata-image", self._from_metadata_image),
            ("metadata-icon", self._from_metadata_icon),
            ("live-page", self._from_live_page),
        ]
        if self.screenshotter is not None:
            chain.append(("screenshot", self._from_screenshot))
        chain.append(("domain-card", self._domain_card))
        return chain

    def resolve(
        self,
        url: str,
        metadata: Optional[RichLinkMetadata] = None,
        attachments: Sequence[MessageAttachment] = (),
    ) -> URLThumbnail:
        """Return exactly one thumbnail outcome for ``url``; never raises."""
        request = ResolutionRequest.build(url, metadata, attachments)
        try:
            self.cache.ensure()
        except CacheError as exc:
            logger.warning("Cannot cache thumbnail for %s: %s", url, exc)
            return URLThumbnail.failed(url, str(exc), request.title, request.description)

        with self.cache.lock(url):
            if self.cache.exists(url):
                logger.debug("Cache hit for %s", url)
                return URLThumbnail(
                    url=url,
                    title=request.title or domain_title(url),
                    description=request.description,
                    thumbnail_path=self.cache.path(url),
                    success=True,
                )
            return self._run_chain(request)

    def _run_chain(self, request: ResolutionRequest) -> URLThumbnail:
        start = time.perf_counter()
        for name, strategy in self.strategies:
            try:
                thumbnail = strategy(request)
            except ThreadboundError as exc:
                logger.warning("Strategy %s failed for %s: %s", name, request.url, exc)
                request.errors.append(f"{name}: {exc}")
                continue
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Unexpected error in strategy %s for %s", name, request.url)
                request.errors.append(f"{name}: {exc}")
                continue
            if thumbnail is not None:
                logger.info(
                    "Resolved %s via %s in %.2fs",
                    request.url,
                    name,
                    time.perf_counter() - start,
                )
                return thumbnail
        error = "; ".join(request.errors) or "no strategy produced a thumbnail"
        logger.warning("Failed to generate thumbnail for %s", request.url)
        return URLThumbnail.failed(
            request.url,
            error,
            request.title or domain_title(request.url),
            request.description,
        )

    def _store(self, request: ResolutionRequest, data: bytes) -> URLThumbnail:
        path = self.cache.put(request.url, data)
        return URLThumbnail(
            url=request.url,
            title=request.title or domain_title(request.url),
            description=request.description,
            thumbnail_path=path,
            success=True,
        )

    def _download(self, request: ResolutionRequest, image_url: str) -> URLThumbnail:
        data = self.downloader.fetch(image_url)
        return self._store(request, self.converter.to_png(data, self.config.download_max_size))

    def _from_attachment(self, request: ResolutionRequest) -> Optional[URLThumbnail]:
        if request.metadata is None:
            return None
        attachment = self.attachments.select(
            request.attachments, request.metadata.image_attachment_index
        )
        if attachment is None:
            return None
        source = self.attachments.locate(attachment)
        if source is None:
            return None
        data = self.converter.to_png(source, self.config.attachment_max_size)
        return self._store(request, data)

    def _from_metadata_image(self, request: ResolutionRequest) -> Optional[URLThumbnail]:
        if request.metadata is None or not request.metadata.image_url:
            return None
        return self._download(request, request.metadata.image_url)

    def _from_metadata_icon(self, request: ResolutionRequest) -> Optional[URLThumbnail]:
        if request.metadata is None or not request.metadata.icon_url:
            return None
        return self._download(request, request.metadata.icon_url)

    def _from_live_page(self, request: ResolutionRequest) -> Optional[URLThumbnail]:
        html, final_url = self.page_fetcher.fetch(request.url)
        page = extract_web_metadata(html, final_url)
        request.title = request.title or page.title or ""
        request.description = request.description or page.description or ""

        if page.image_url:
            try:
                data = self.downloader.fetch(page.image_url)
                png = self.converter.to_png(data, self.config.page_image_max_size)
                return self._store(request, png)
            except CacheError:
                raise
            except ThreadboundError as exc:
                logger.warning("Open Graph image for %s unusable: %s", request.url, exc)

        if page.favicon_url:
            favicon = self.downloader.fetch(page.favicon_url, timeout=self.config.fetch_timeout)
            card = self.converter.favicon_card(
                favicon,
                request.title or domain_title(request.url),
                request.description,
            )
            return self._store(request, card)
        return None

    def _from_screenshot(self, request: ResolutionRequest) -> Optional[URLThumbnail]:
        data = self.screenshotter.capture(request.url)
        png = self.converter.to_png(data, self.config.page_image_max_size)
        request.title = request.title or domain_title(request.url)
        request.description = request.description or SCREENSHOT_DESCRIPTION
        return self._store(request, png)

    def _domain_card(self, request: ResolutionRequest) -> Optional[URLThumbnail]:
        logger.info("Generating domain card for %s", request.url)
        card = self.converter.domain_card(domain_of(request.url))
        request.description = request.description or DOMAIN_CARD_DESCRIPTION
        return self._store(request, card)
