"""Utility helpers for URL hashing and domain naming."""

from __future__ import annotations

import hashlib
from urllib.parse import urlparse


def url_hash(url: str) -> str:
    """Content address of a URL, used as its cache file stem."""
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def domain_of(url: str) -> str:
    """Host part of a URL without a leading ``www.``; empty when unparsable."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def domain_title(url: str) -> str:
    """Human title for a URL built from its domain, e.g. ``Example.com``."""
    domain = domain_of(url)
    if not domain:
        return "Web Link"
    return domain[:1].upper() + domain[1:]


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"
