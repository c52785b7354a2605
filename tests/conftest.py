"""Shared fixtures and fakes for the link-preview tests."""

import io
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest
import requests
from PIL import Image

from threadbound.cache import ThumbnailCache
from threadbound.config import PreviewConfig
from threadbound.content import PageFetcher
from threadbound.images import ImageDownloader
from threadbound.pipeline import ThumbnailPipeline


def make_image_bytes(size=(640, 480), color="red", fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeResponse:
    def __init__(
        self,
        content: bytes = b"",
        content_type: str = "text/html; charset=utf-8",
        status_code: int = 200,
        url: str = "",
    ) -> None:
        self.content = content
        self.headers = {"Content-Type": content_type}
        self.status_code = status_code
        self.url = url

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Stands in for requests.Session; unknown URLs fail like an unreachable host."""

    def __init__(self, routes: Optional[Dict[str, Union[FakeResponse, Exception]]] = None) -> None:
        self.routes = dict(routes or {})
        self.calls: List[str] = []

    def get(self, url, timeout=None, headers=None, allow_redirects=True):
        self.calls.append(url)
        outcome = self.routes.get(url)
        if outcome is None:
            raise requests.ConnectionError(f"cannot reach {url}")
        if isinstance(outcome, Exception):
            raise outcome
        if not outcome.url:
            outcome.url = url
        return outcome


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def config(tmp_path: Path) -> PreviewConfig:
    return PreviewConfig(attachments_root=tmp_path / "attachments", cache_dir=tmp_path / "cache")


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_pipeline(config, session):
    def factory(**overrides) -> ThumbnailPipeline:
        cfg = overrides.pop("config", config)
        sess = overrides.pop("session", session)
        kwargs = dict(
            cache=ThumbnailCache(cfg.cache_dir),
            config=cfg,
            downloader=ImageDownloader(sess, timeout=1.0),
            page_fetcher=PageFetcher(sess, timeout=1.0),
        )
        kwargs.update(overrides)
        return ThumbnailPipeline(**kwargs)

    return factory


def build_chat_db(path: Path, messages=(), attachments=(), joins=()) -> Path:
    """Create a minimal chat.db with the tables the store reads."""
    import sqlite3

    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE message (ROWID INTEGER PRIMARY KEY, text TEXT, payload_data BLOB, date INTEGER);
        CREATE TABLE attachment (ROWID INTEGER PRIMARY KEY, guid TEXT, mime_type TEXT, filename TEXT);
        CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
        """
    )
    conn.executemany("INSERT INTO message VALUES (?, ?, ?, ?)", messages)
    conn.executemany("INSERT INTO attachment VALUES (?, ?, ?, ?)", attachments)
    conn.executemany("INSERT INTO message_attachment_join VALUES (?, ?)", joins)
    conn.commit()
    conn.close()
    return path
