"""Exception types raised by the preview tooling."""

from __future__ import annotations


class ThreadboundError(Exception):
    """Base class for recoverable preview failures."""


class MetadataDecodeError(ThreadboundError):
    """The rich-link payload could not be read or converted."""


class FetchError(ThreadboundError):
    """A network fetch failed, timed out or returned nothing usable."""


class ImageConversionError(ThreadboundError):
    """Image data was missing, corrupt or of an unsupported type."""


class CacheError(ThreadboundError):
    """The thumbnail cache directory or a cache file could not be written."""
