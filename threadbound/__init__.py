"""Link-preview thumbnails for chat archives."""

from .models import MessageAttachment, RichLinkMetadata, URLThumbnail
from .urls import find_urls, substitute

__all__ = [
    "MessageAttachment",
    "RichLinkMetadata",
    "URLThumbnail",
    "find_urls",
    "substitute",
]

__version__ = "0.1.0"
