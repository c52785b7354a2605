"""MCP server exposing link-preview resolution as a tool."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import anyio
from mcp.server.fastmcp import FastMCP

from .config import PreviewConfig
from .pipeline import ThumbnailPipeline
from .urls import find_urls

logger = logging.getLogger("threadbound.mcp")
logger.setLevel(logging.ERROR)

ROOT_ENV = "THREADBOUND_ATTACHMENTS"

mcp = FastMCP(name="threadbound")


def _config() -> PreviewConfig:
    root = Path(os.getenv(ROOT_ENV) or Path.home() / ".cache" / "threadbound")
    return PreviewConfig(attachments_root=root)


@mcp.tool()
async def preview_url(url: str) -> Dict[str, Any]:
    """Resolve a link into a cached preview thumbnail and return its details."""
    urls = find_urls(url)
    if not urls:
        raise ValueError(f"Not an http(s) URL: {url}")
    pipeline = ThumbnailPipeline.from_config(_config())
    thumbnail = await anyio.to_thread.run_sync(pipeline.resolve, urls[0])
    return thumbnail.to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
