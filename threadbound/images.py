"""Image downloading, validation, conversion and card rendering."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import requests
from filetype import guess
from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

from .config import DEFAULT_USER_AGENT
from .errors import FetchError, ImageConversionError

logger = logging.getLogger("threadbound")

# Messages stores camera photos as HEIC; Pillow reads them once the opener is in.
register_heif_opener()

MAX_IMAGE_BYTES = 10 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"png", "jpg", "gif", "webp", "bmp", "tiff", "ico", "heic"}
# Subtype spellings that mean the same file type.
IMAGE_TYPE_ALIASES = {
    "jpeg": "jpg",
    "pjpeg": "jpg",
    "x-icon": "ico",
    "vnd.microsoft.icon": "ico",
    "heif": "heic",
}

CARD_SIZE = (400, 200)
FAVICON_SIZE = (32, 32)
MAX_CARD_TITLE = 40
MAX_CARD_DESCRIPTION = 60

ImageSource = Union[bytes, Path]


def _normalise_type(name: str) -> str:
    name = name.strip().lower()
    return IMAGE_TYPE_ALIASES.get(name, name)


def accepted_image_type(content_type: Optional[str], data: bytes) -> Optional[str]:
    """Name the image type of a download, or None when it is not one we convert.

    The file signature wins over the declared ``Content-Type``; servers often
    label favicons and CDN images loosely. The header only decides when the
    bytes carry no signature ``filetype`` recognises.
    """
    kind = guess(data)
    if kind is not None and kind.mime.startswith("image/"):
        found = _normalise_type(kind.extension)
    else:
        media = (content_type or "").split(";")[0].strip().lower()
        major, _, minor = media.partition("/")
        if major != "image" or not minor:
            return None
        found = _normalise_type(minor)
    return found if found in ALLOWED_IMAGE_TYPES else None


class ImageDownloader:
    """Fetches image bytes over HTTP and rejects anything that is not an image."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
        max_bytes: int = MAX_IMAGE_BYTES,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.user_agent = user_agent

    def fetch(self, url: str, timeout: Optional[float] = None) -> bytes:
        logger.info("Downloading image from %s", url)
        try:
            resp = self.session.get(
                url,
                timeout=timeout or self.timeout,
                headers={"User-Agent": self.user_agent},
                allow_redirects=True,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"failed to fetch image {url}: {exc}") from exc

        content_type = resp.headers.get("Content-Type", "")
        data = resp.content
        if not data:
            raise FetchError(f"empty response from {url}")
        if len(data) > self.max_bytes:
            raise FetchError(f"image at {url} is larger than {self.max_bytes} bytes")

        if accepted_image_type(content_type, data) is None:
            raise ImageConversionError(
                f"unsupported image type at {url} (Content-Type={content_type})"
            )
        return data


def _load_font(size: int) -> ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def _draw_centered(
    draw: ImageDraw.ImageDraw,
    text: str,
    font: ImageFont.ImageFont,
    fill: str,
    center_y: int,
    width: int,
) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (width - (right - left)) // 2 - left
    y = center_y - (bottom - top) // 2 - top
    draw.text((x, y), text, font=font, fill=fill)


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


class PillowImageConverter:
    """Normalises images to bounded PNGs and draws placeholder cards."""

    def __init__(self, card_size: Tuple[int, int] = CARD_SIZE) -> None:
        self.card_size = card_size

    def _open(self, source: ImageSource) -> Image.Image:
        try:
            if isinstance(source, (bytes, bytearray)):
                if not source:
                    raise ImageConversionError("no image data")
                image = Image.open(io.BytesIO(source))
            else:
                image = Image.open(source)
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise ImageConversionError(f"unreadable image: {exc}") from exc
        except OSError as exc:
            raise ImageConversionError(f"cannot open image: {exc}") from exc
        return image

    @staticmethod
    def _encode(image: Image.Image) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format="PNG", optimize=True)
        return buffer.getvalue()

    def to_png(self, source: ImageSource, max_size: Tuple[int, int]) -> bytes:
        """Convert to PNG, fixing orientation and shrinking to fit ``max_size``."""
        image = self._open(source)
        try:
            image = ImageOps.exif_transpose(image)
            if image.mode not in ("RGB", "RGBA"):
                image = image.convert("RGBA")
            image.thumbnail(max_size, Image.Resampling.LANCZOS)
            data = self._encode(image)
        except (OSError, ValueError) as exc:
            raise ImageConversionError(f"cannot convert image: {exc}") from exc
        if not data:
            raise ImageConversionError("conversion produced no output")
        return data

    def _blank_card(self, border: int) -> Tuple[Image.Image, ImageDraw.ImageDraw]:
        card = Image.new("RGB", self.card_size, "white")
        draw = ImageDraw.Draw(card)
        width, height = self.card_size
        for offset in range(border):
            draw.rectangle(
                (offset, offset, width - 1 - offset, height - 1 - offset),
                outline="lightgray",
            )
        return card, draw

    def domain_card(self, domain: str) -> bytes:
        """Plain card carrying only the domain name."""
        card, draw = self._blank_card(border=2)
        width, height = self.card_size
        center = height // 2
        _draw_centered(draw, domain or "Web Link", _load_font(24), "black", center - 20, width)
        _draw_centered(draw, "Web Link", _load_font(14), "gray", center + 20, width)
        return self._encode(card)

    def favicon_card(self, favicon: ImageSource, title: str, description: str) -> bytes:
        """Card with the site's favicon above its title and description."""
        icon = self._open(favicon).convert("RGBA")
        icon = icon.resize(FAVICON_SIZE, Image.Resampling.LANCZOS)
        card, draw = self._blank_card(border=1)
        width, height = self.card_size
        center = height // 2
        card.paste(
            icon,
            ((width - FAVICON_SIZE[0]) // 2, center - 40 - FAVICON_SIZE[1] // 2),
            icon,
        )
        title = _truncate(title, MAX_CARD_TITLE)
        description = _truncate(description or "Web Link", MAX_CARD_DESCRIPTION)
        _draw_centered(draw, title, _load_font(16), "black", center + 20, width)
        _draw_centered(draw, description, _load_font(12), "gray", center + 40, width)
        return self._encode(card)
