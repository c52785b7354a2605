"""Configuration objects and constants for link-preview resolution."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger("threadbound")

CACHE_DIR_ENV = "THREADBOUND_CACHE_DIR"
CACHE_DIR_NAME = "url-thumbnails"
DEFAULT_REFERENCE_PREFIX = "Attachments/url-thumbnails"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; threadbound)"

Size = Tuple[int, int]


@dataclass
class PreviewConfig:
    """Settings that control thumbnail resolution for one generation run."""

    attachments_root: Path
    cache_dir: Optional[Path] = None
    fetch_timeout: float = 10.0
    image_timeout: float = 15.0
    process_timeout: float = 10.0
    screenshot_timeout: float = 45.0
    attachment_max_size: Size = (400, 400)
    download_max_size: Size = (400, 400)
    page_image_max_size: Size = (800, 600)
    max_image_bytes: int = 10 * 1024 * 1024
    user_agent: str = DEFAULT_USER_AGENT
    screenshots: bool = False
    max_workers: int = 1
    reference_prefix: str = DEFAULT_REFERENCE_PREFIX

    def __post_init__(self) -> None:
        self.attachments_root = Path(self.attachments_root).expanduser()
        if self.cache_dir is None:
            self.cache_dir = resolve_cache_dir(self.attachments_root)
        else:
            self.cache_dir = Path(self.cache_dir).expanduser()
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")


def resolve_cache_dir(attachments_root: Path) -> Path:
    """Return the thumbnail cache directory, honouring THREADBOUND_CACHE_DIR."""
    default = attachments_root / CACHE_DIR_NAME
    override = os.getenv(CACHE_DIR_ENV)
    if not override:
        return default
    override_path = Path(override).expanduser()
    if override_path.exists() and not override_path.is_dir():
        logger.warning(
            "%s is set to %s but it is not a directory; falling back to %s",
            CACHE_DIR_ENV,
            override_path,
            default,
        )
        return default
    logger.debug("%s override detected at %s", CACHE_DIR_ENV, override_path)
    return override_path
