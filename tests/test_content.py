"""Tests for live page fetching and metadata extraction."""

import pytest

from threadbound.content import PageFetcher, extract_web_metadata
from threadbound.errors import FetchError

from .conftest import FakeResponse, FakeSession

OG_PAGE = """
<html><head>
  <title>Fallback title</title>
  <meta property="og:title" content=" Open Graph Title ">
  <meta property="og:description" content="OG description">
  <meta property="og:image" content="/static/preview.jpg">
  <link rel="shortcut icon" href="img/fav.png">
</head><body><p>Hello</p></body></html>
"""

PLAIN_PAGE = """
<html><head>
  <title>Plain Title</title>
  <meta name="description" content="Meta description">
</head><body><article><p>Some body text for the page.</p></article></body></html>
"""


class TestExtractWebMetadata:
    """Open Graph fields win; plain meta tags and defaults fill the gaps."""

    def test_open_graph_fields(self):
        meta = extract_web_metadata(OG_PAGE, "https://example.com/blog/post")
        assert meta.title == "Open Graph Title"
        assert meta.description == "OG description"
        assert meta.image_url == "https://example.com/static/preview.jpg"
        assert meta.favicon_url == "https://example.com/img/fav.png"

    def test_relative_references_resolve_against_origin(self):
        html = '<html><head><meta property="og:image" content="images/a.png"></head></html>'
        meta = extract_web_metadata(html, "https://example.com/deep/path/page.html")
        assert meta.image_url == "https://example.com/images/a.png"

    def test_absolute_and_protocol_relative_images(self):
        html = '<html><head><meta property="og:image" content="//cdn.example.net/a.png"></head></html>'
        meta = extract_web_metadata(html, "https://example.com/x")
        assert meta.image_url == "https://cdn.example.net/a.png"

    def test_plain_page_falls_back_to_title_and_default_favicon(self):
        meta = extract_web_metadata(PLAIN_PAGE, "https://www.example.org/a")
        assert meta.title == "Plain Title"
        assert meta.description == "Meta description"
        assert meta.image_url is None
        assert meta.favicon_url == "https://www.example.org/favicon.ico"


class TestPageFetcher:
    def test_returns_html_and_final_url(self):
        session = FakeSession(
            {"https://example.com": FakeResponse(PLAIN_PAGE.encode(), url="https://example.com/home")}
        )
        html, final_url = PageFetcher(session).fetch("https://example.com")
        assert "Plain Title" in html
        assert final_url == "https://example.com/home"

    def test_non_html_is_rejected(self, png_bytes):
        session = FakeSession({"https://example.com/a.png": FakeResponse(png_bytes, "image/png")})
        with pytest.raises(FetchError):
            PageFetcher(session).fetch("https://example.com/a.png")

    def test_unreachable_host(self):
        with pytest.raises(FetchError):
            PageFetcher(FakeSession()).fetch("https://unreachable.example")
