"""Command-line entry point for link-preview resolution."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Dict, Iterable, Sequence

from .config import DEFAULT_REFERENCE_PREFIX, PreviewConfig
from .database import MessageStore
from .models import Message, URLThumbnail
from .processor import LinkPreviewProcessor
from .urls import latex_reference, markdown_reference, substitute

logger = logging.getLogger("threadbound.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("preview", *argv)


def _add_resolver_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--attachments",
        default=".",
        type=Path,
        help="Root directory holding message attachments (default: current directory)",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Thumbnail cache directory (default: <attachments>/url-thumbnails)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Seconds to wait for page fetches and external tools",
    )
    parser.add_argument(
        "--image-timeout",
        type=float,
        default=15.0,
        help="Seconds to wait for image downloads",
    )
    parser.add_argument(
        "--screenshots",
        action="store_true",
        help="Capture a headless-browser screenshot before falling back to a domain card",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of URLs to resolve concurrently",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resolve link-preview thumbnails for a Messages chat archive.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    previews_parser = subparsers.add_parser(
        "previews", help="Resolve every link in a chat.db and write a JSON map"
    )
    previews_parser.add_argument("database", type=Path, help="Path to chat.db")
    previews_parser.add_argument(
        "--output",
        type=Path,
        default=Path("url-previews.json"),
        help="Where to write the url -> thumbnail JSON map",
    )
    _add_resolver_arguments(previews_parser)

    preview_parser = subparsers.add_parser("preview", help="Resolve one or more URLs")
    preview_parser.add_argument("urls", nargs="+", help="URLs to resolve")
    _add_resolver_arguments(preview_parser)

    substitute_parser = subparsers.add_parser(
        "substitute", help="Rewrite links in a text file using a JSON map"
    )
    substitute_parser.add_argument("text", type=Path, help="Text file to rewrite")
    substitute_parser.add_argument(
        "--map", dest="map_path", type=Path, required=True, help="JSON map written by 'previews'"
    )
    substitute_parser.add_argument(
        "--format",
        choices=("latex", "markdown"),
        default="latex",
        help="Reference style for embedded thumbnails",
    )
    substitute_parser.add_argument(
        "--prefix",
        default=DEFAULT_REFERENCE_PREFIX,
        help="Path prefix used in the generated references",
    )
    substitute_parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _build_config(args: argparse.Namespace) -> PreviewConfig:
    return PreviewConfig(
        attachments_root=Path(args.attachments).resolve(),
        cache_dir=Path(args.cache_dir).resolve() if args.cache_dir else None,
        fetch_timeout=args.timeout,
        process_timeout=args.timeout,
        image_timeout=args.image_timeout,
        screenshots=args.screenshots,
        max_workers=args.workers,
    )


def _dump(thumbnails: Dict[str, URLThumbnail]) -> str:
    return json.dumps(
        {url: thumb.to_dict() for url, thumb in thumbnails.items()}, indent=2, ensure_ascii=False
    )


def load_thumbnails(path: Path) -> Dict[str, URLThumbnail]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return {url: URLThumbnail.from_dict(entry) for url, entry in data.items()}


def _run_previews(args: argparse.Namespace) -> int:
    config = _build_config(args)
    overall_start = time.perf_counter()
    with MessageStore(args.database) as store:
        processor = LinkPreviewProcessor.from_config(config, store=store)
        thumbnails = processor.process_messages(store.iter_link_messages())
    total_elapsed = time.perf_counter() - overall_start

    args.output.write_text(_dump(thumbnails) + "\n", encoding="utf-8")
    successes = sum(1 for thumb in thumbnails.values() if thumb.success)
    logger.info(
        "Finished in %.2fs (%d/%d URLs with thumbnails); map written to %s",
        total_elapsed,
        successes,
        len(thumbnails),
        args.output,
    )
    return 0


def _run_preview(args: argparse.Namespace) -> int:
    config = _build_config(args)
    processor = LinkPreviewProcessor.from_config(config)
    messages = [Message(id=index, text=url) for index, url in enumerate(args.urls)]
    thumbnails = processor.process_messages(messages)
    sys.stdout.write(_dump(thumbnails) + "\n")
    return 0 if thumbnails and all(t.success for t in thumbnails.values()) else 1


def _run_substitute(args: argparse.Namespace) -> int:
    thumbnails = load_thumbnails(args.map_path)
    render = markdown_reference(args.prefix) if args.format == "markdown" else latex_reference(args.prefix)
    text = args.text.read_text(encoding="utf-8")
    sys.stdout.write(substitute(text, thumbnails, render))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "previews":
        return _run_previews(args)
    if args.command == "preview":
        return _run_preview(args)
    return _run_substitute(args)


if __name__ == "__main__":
    sys.exit(main())
