"""Headless-browser screenshots of pages that offer no preview image."""

from __future__ import annotations

import logging

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from .errors import FetchError

logger = logging.getLogger("threadbound")

VIEWPORT = {"width": 1200, "height": 800}


class PlaywrightScreenshotter:
    """Captures the first viewport of a page with headless Chromium."""

    def __init__(self, timeout: float = 45.0, wait_after_load: float = 1.0) -> None:
        self.timeout = timeout
        self.wait_after_load = wait_after_load

    def capture(self, url: str) -> bytes:
        logger.info("Taking screenshot of %s", url)
        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(headless=True)
                try:
                    page = browser.new_page(viewport=VIEWPORT)
                    page.set_default_navigation_timeout(self.timeout * 1000)
                    page.goto(url, wait_until="networkidle")
                    if self.wait_after_load:
                        page.wait_for_timeout(int(self.wait_after_load * 1000))
                    data = page.screenshot(full_page=False, type="png")
                finally:
                    browser.close()
        except PlaywrightTimeoutError as exc:
            raise FetchError(f"timeout while loading {url}: {exc}") from exc
        except PlaywrightError as exc:
            raise FetchError(f"screenshot of {url} failed: {exc}") from exc
        if not data:
            raise FetchError(f"empty screenshot for {url}")
        return data
