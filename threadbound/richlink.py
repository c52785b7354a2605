"""Decoding of rich-link payloads attached to messages.

The payload is an NSKeyedArchiver property list whose schema is not public.
Rather than mapping the archive onto a fixed structure, the payload is turned
into the indented ``plutil -p`` text layout and each field is looked up on its
own with a targeted pattern, so a missing or renamed field only loses that
field. Strings such as the title live in the ``$objects`` table and are
reached through a UID reference: ``"title" => <...>{value = 7}`` and then
``7 => "Some title"``.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import plistlib
import re
import shutil
import subprocess
import tempfile
import xml.parsers.expat
from typing import Any, Callable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlparse

from .errors import MetadataDecodeError
from .models import RichLinkMetadata

logger = logging.getLogger("threadbound")

# Classification thresholds. These are empirical starting points, not a
# complete description of what an icon looks like.
PREVIEW_SERVICE_MARKERS: Tuple[str, ...] = ("cdn-link-previews", "ytimg.com")
PREVIEW_IMAGE_EXTENSIONS: Tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp", ".gif")
ICON_MARKERS: Tuple[str, ...] = ("favicon", "icon")
ICON_DIMENSIONS: Tuple[str, ...] = ("16x16", "32x32", "64x64")

_EMBEDDED_URL = re.compile(r'"(https?://[^"\s]+)"')
_IMAGE_INDEX = re.compile(r'"richLinkImageAttachmentSubstituteIndex" => (\d+)')
_ESCAPE = re.compile(r"\\(.)")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}


class PlutilDecoder:
    """Renders the payload with the platform ``plutil -p`` converter."""

    def __init__(self, binary: str = "plutil", timeout: float = 10.0) -> None:
        self.binary = binary
        self.timeout = timeout

    def decode(self, blob: bytes) -> str:
        handle = tempfile.NamedTemporaryFile(suffix=".plist", delete=False)
        try:
            with handle:
                handle.write(blob)
            result = subprocess.run(
                [self.binary, "-p", handle.name],
                capture_output=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise MetadataDecodeError(f"{self.binary} timed out after {self.timeout}s") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode("utf-8", errors="replace").strip()
            raise MetadataDecodeError(f"{self.binary} exited with {exc.returncode}: {stderr}") from exc
        except OSError as exc:
            raise MetadataDecodeError(f"cannot run {self.binary}: {exc}") from exc
        finally:
            try:
                os.unlink(handle.name)
            except OSError:
                logger.debug("Could not remove %s", handle.name)
        output = result.stdout.decode("utf-8", errors="replace")
        if not output.strip():
            raise MetadataDecodeError(f"{self.binary} produced no output")
        return output


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _render(value: Any, depth: int = 0) -> str:
    pad = "  " * depth
    if isinstance(value, plistlib.UID):
        return f"<CFKeyedArchiverUID 0x{value.data:x}>{{value = {value.data}}}"
    if isinstance(value, dict):
        lines = ["{"]
        for key, item in value.items():
            lines.append(f"{pad}  {_quote(str(key))} => {_render(item, depth + 1)}")
        lines.append(f"{pad}}}")
        return "\n".join(lines)
    if isinstance(value, (list, tuple)):
        lines = ["["]
        for index, item in enumerate(value):
            lines.append(f"{pad}  {index} => {_render(item, depth + 1)}")
        lines.append(f"{pad}]")
        return "\n".join(lines)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (bytes, bytearray)):
        return f"{{length = {len(value)}, bytes = 0x{bytes(value[:24]).hex()}}}"
    if isinstance(value, dt.datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S +0000")
    return str(value)


class KeyedArchiveDecoder:
    """Decodes the payload with ``plistlib`` and renders the ``plutil -p`` layout."""

    def decode(self, blob: bytes) -> str:
        try:
            archive = plistlib.loads(blob)
            return _render(archive) + "\n"
        except (
            plistlib.InvalidFileException,
            xml.parsers.expat.ExpatError,
            ValueError,
            TypeError,
            OverflowError,
        ) as exc:
            raise MetadataDecodeError(f"payload is not a readable property list: {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            raise MetadataDecodeError(f"payload could not be rendered: {exc}") from exc


def default_decoder(timeout: float = 10.0):
    """``plutil`` where the platform has it, the plistlib renderer elsewhere."""
    if shutil.which("plutil"):
        return PlutilDecoder(timeout=timeout)
    return KeyedArchiveDecoder()


class LinkClassifier:
    """Splits embedded URLs into preview-image and icon candidates."""

    def __init__(
        self,
        preview_markers: Sequence[str] = PREVIEW_SERVICE_MARKERS,
        image_extensions: Sequence[str] = PREVIEW_IMAGE_EXTENSIONS,
        icon_markers: Sequence[str] = ICON_MARKERS,
        icon_dimensions: Sequence[str] = ICON_DIMENSIONS,
    ) -> None:
        self.preview_markers = tuple(preview_markers)
        self.image_extensions = tuple(image_extensions)
        self.icon_markers = tuple(icon_markers)
        self.icon_dimensions = tuple(icon_dimensions)

    def is_icon(self, url: str) -> bool:
        return any(marker in url for marker in self.icon_markers + self.icon_dimensions)

    def is_preview_image(self, url: str) -> bool:
        if any(marker in url for marker in self.preview_markers):
            return "favicon" not in url
        if any(ext in url for ext in self.image_extensions):
            return not self.is_icon(url)
        return False

    def classify(self, urls: Sequence[str]) -> Tuple[List[str], List[str]]:
        previews: List[str] = []
        icons: List[str] = []
        for url in urls:
            if self.is_preview_image(url):
                previews.append(url)
            elif self.is_icon(url):
                icons.append(url)
        return previews, icons


def youtube_video_id(url: str) -> Optional[str]:
    """Return the YouTube video id if ``url`` is a YouTube link."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    path = parsed.path or ""
    if host.endswith("youtu.be"):
        return path.strip("/").split("/")[0] or None
    if host == "youtube.com" or host.endswith(".youtube.com"):
        values = parse_qs(parsed.query or "").get("v")
        if values and values[0]:
            return values[0]
        parts = path.split("/")
        if len(parts) >= 3 and parts[1] == "shorts":
            return parts[2] or None
    return None


def youtube_thumbnail(decoded: str, original_url: str) -> Optional[str]:
    video_id = youtube_video_id(original_url)
    if not video_id:
        return None
    return f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"


ReconstructionHook = Callable[[str, str], Optional[str]]
RECONSTRUCTION_HOOKS: Tuple[ReconstructionHook, ...] = (youtube_thumbnail,)


def _unescape(value: str) -> str:
    return _ESCAPE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), value)


def _search(pattern: str, text: str) -> Optional[str]:
    match = re.search(pattern, text, re.MULTILINE)
    return match.group(1) if match else None


def lookup_uid_string(decoded: str, field: str) -> Optional[str]:
    """Resolve ``field -> UID -> string`` in the object table; ``None`` if any hop is missing."""
    uid = _search(r'"%s" => <[^>]+>\{value = (\d+)\}' % re.escape(field), decoded)
    if uid is None:
        return None
    value = _search(r'^\s+%d => "((?:[^"\\]|\\.)*)"\s*$' % int(uid), decoded)
    if not value:
        return None
    return _unescape(value)


class RichLinkParser:
    """Turns a payload blob into :class:`RichLinkMetadata`."""

    def __init__(
        self,
        decoder=None,
        classifier: Optional[LinkClassifier] = None,
        hooks: Sequence[ReconstructionHook] = RECONSTRUCTION_HOOKS,
    ) -> None:
        self.decoder = decoder or default_decoder()
        self.classifier = classifier or LinkClassifier()
        self.hooks = tuple(hooks)

    def parse(self, blob: Optional[bytes], original_url: str) -> RichLinkMetadata:
        """Raises MetadataDecodeError when the blob cannot be read at all."""
        if not blob:
            raise MetadataDecodeError("message has no rich-link payload")
        decoded = self.decoder.decode(bytes(blob))
        return self.parse_text(decoded, original_url)

    def parse_text(self, decoded: str, original_url: str) -> RichLinkMetadata:
        metadata = RichLinkMetadata(
            title=lookup_uid_string(decoded, "title"),
            summary=lookup_uid_string(decoded, "summary"),
            site_name=lookup_uid_string(decoded, "siteName"),
        )

        index = _search(_IMAGE_INDEX.pattern, decoded)
        if index is not None:
            metadata.image_attachment_index = int(index)

        embedded = [_unescape(url) for url in _EMBEDDED_URL.findall(decoded)]
        previews, icons = self.classifier.classify(embedded)
        if previews:
            metadata.image_url = previews[0]
            logger.debug("Found preview image %s for %s", metadata.image_url, original_url)
        else:
            metadata.image_url = self._reconstruct(decoded, original_url)
        if icons:
            metadata.icon_url = icons[0]
            logger.debug("Found icon %s for %s", metadata.icon_url, original_url)
        return metadata

    def _reconstruct(self, decoded: str, original_url: str) -> Optional[str]:
        for hook in self.hooks:
            url = hook(decoded, original_url)
            if url:
                logger.debug("Reconstructed preview image %s for %s", url, original_url)
                return url
        return None
