"""Data models shared by the link-preview pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class URLThumbnail:
    """Outcome of resolving one URL; exactly one exists per URL per run."""

    url: str
    title: str = ""
    description: str = ""
    thumbnail_path: Optional[Path] = None
    success: bool = False
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.success and self.thumbnail_path is None:
            raise ValueError("successful thumbnails need a thumbnail_path")
        if not self.success and self.thumbnail_path is not None:
            raise ValueError("failed thumbnails cannot carry a thumbnail_path")

    @classmethod
    def failed(cls, url: str, error: str, title: str = "", description: str = "") -> "URLThumbnail":
        return cls(url=url, title=title, description=description, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "thumbnail_path": str(self.thumbnail_path) if self.thumbnail_path else None,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "URLThumbnail":
        path = data.get("thumbnail_path")
        return cls(
            url=data["url"],
            title=data.get("title") or "",
            description=data.get("description") or "",
            thumbnail_path=Path(path) if path else None,
            success=bool(data.get("success")),
            error=data.get("error"),
        )


@dataclass
class RichLinkMetadata:
    """Candidate preview fields decoded from a message's rich-link payload."""

    title: Optional[str] = None
    summary: Optional[str] = None
    site_name: Optional[str] = None
    image_url: Optional[str] = None
    icon_url: Optional[str] = None
    image_attachment_index: Optional[int] = None

    @property
    def has_image(self) -> bool:
        return self.image_attachment_index is not None or bool(self.image_url)

    @property
    def has_icon(self) -> bool:
        return bool(self.icon_url)


@dataclass(frozen=True)
class MessageAttachment:
    """Attachment row owned by the message database."""

    id: int
    guid: str
    mime_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class Message:
    """Minimal message row needed to find and resolve links."""

    id: int
    text: Optional[str]
    payload: Optional[bytes] = field(default=None, repr=False)


@dataclass
class WebMetadata:
    """Open Graph and meta fields scraped from a live page."""

    source_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    favicon_url: Optional[str] = None
