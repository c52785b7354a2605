"""URL discovery in message text and rewriting of resolved links."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Callable, List, Mapping, Optional

from .config import DEFAULT_REFERENCE_PREFIX
from .models import URLThumbnail

# Stops at whitespace and the characters that never appear unescaped in a URL.
URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")
TRAILING_PUNCTUATION = ".,;!?)"

ReferenceRenderer = Callable[[URLThumbnail], str]


def _clean(token: str) -> str:
    return token.rstrip(TRAILING_PUNCTUATION)


def find_urls(text: Optional[str]) -> List[str]:
    """Return the distinct URLs in ``text`` in first-seen order."""
    if not text:
        return []
    seen = set()
    urls: List[str] = []
    for match in URL_PATTERN.finditer(text):
        url = _clean(match.group(0))
        if url and url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


def latex_reference(prefix: str = DEFAULT_REFERENCE_PREFIX) -> ReferenceRenderer:
    """Renderer producing ``\\messageimage{<prefix>/<file>}`` for the book template."""

    def render(thumbnail: URLThumbnail) -> str:
        name = thumbnail.thumbnail_path.name if thumbnail.thumbnail_path else ""
        return "\\messageimage{%s}" % (PurePosixPath(prefix) / name)

    return render


def markdown_reference(prefix: str = DEFAULT_REFERENCE_PREFIX) -> ReferenceRenderer:
    """Renderer producing a Markdown image link titled with the page title."""

    def render(thumbnail: URLThumbnail) -> str:
        name = thumbnail.thumbnail_path.name if thumbnail.thumbnail_path else ""
        alt = (thumbnail.title or thumbnail.url).replace("]", "\\]")
        return f"![{alt}]({PurePosixPath(prefix) / name})"

    return render


def substitute(
    text: Optional[str],
    thumbnails: Mapping[str, URLThumbnail],
    render: Optional[ReferenceRenderer] = None,
) -> Optional[str]:
    """Replace each successfully resolved URL in ``text`` with an image reference.

    URLs without an entry, or whose resolution failed, are kept verbatim, as is
    any sentence punctuation that followed them.
    """
    if not text:
        return text
    render = render or latex_reference()

    def replace(match: "re.Match[str]") -> str:
        token = match.group(0)
        url = _clean(token)
        thumbnail = thumbnails.get(url)
        if thumbnail is None or not thumbnail.success:
            return token
        return render(thumbnail) + token[len(url):]

    return URL_PATTERN.sub(replace, text)
