"""Run-scoped link-preview processing across a batch of messages."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .attachments import AttachmentResolver
from .config import PreviewConfig
from .database import MessageStore
from .errors import MetadataDecodeError
from .models import Message, MessageAttachment, RichLinkMetadata, URLThumbnail
from .pipeline import ThumbnailPipeline
from .richlink import RichLinkParser, default_decoder
from .urls import ReferenceRenderer, find_urls, latex_reference, substitute

logger = logging.getLogger("threadbound")


@dataclass
class ResolutionJob:
    """A URL that still needs resolving, with whatever its message offered."""

    url: str
    metadata: Optional[RichLinkMetadata] = None
    attachments: Sequence[MessageAttachment] = ()


class LinkPreviewProcessor:
    """Resolves every distinct URL of a generation run exactly once.

    Build a fresh instance per run: the seen set and the result mapping are
    the only mutable state and belong to that run.
    """

    def __init__(
        self,
        pipeline: ThumbnailPipeline,
        parser: Optional[RichLinkParser] = None,
        attachments: Optional[AttachmentResolver] = None,
        store: Optional[MessageStore] = None,
        max_workers: int = 1,
        reference_prefix: Optional[str] = None,
    ) -> None:
        self.pipeline = pipeline
        self.parser = parser or RichLinkParser()
        self.attachments = attachments or pipeline.attachments
        self.store = store
        self.max_workers = max_workers
        self.render: ReferenceRenderer = (
            latex_reference(reference_prefix) if reference_prefix else latex_reference()
        )
        self.seen: Set[str] = set()
        self.thumbnails: Dict[str, URLThumbnail] = {}

    @classmethod
    def from_config(
        cls, config: PreviewConfig, store: Optional[MessageStore] = None
    ) -> "LinkPreviewProcessor":
        pipeline = ThumbnailPipeline.from_config(config, store=store)
        return cls(
            pipeline,
            parser=RichLinkParser(default_decoder(timeout=config.process_timeout)),
            store=store,
            max_workers=config.max_workers,
            reference_prefix=config.reference_prefix,
        )

    def _metadata_for(self, message: Message, url: str) -> Optional[RichLinkMetadata]:
        payload = message.payload
        if payload is None and self.store is not None:
            row = self.store.get_message(message.id)
            payload = row[1] if row else None
        if not payload:
            return None
        try:
            return self.parser.parse(payload, url)
        except MetadataDecodeError as exc:
            logger.warning("No rich-link metadata for message %s: %s", message.id, exc)
            return None

    def plan(self, message: Message) -> List[ResolutionJob]:
        """Jobs for the message's URLs not seen earlier in this run.

        The rich-link payload describes the first URL of a message, so only
        that URL receives metadata and attachments.
        """
        urls = find_urls(message.text)
        jobs: List[ResolutionJob] = []
        for position, url in enumerate(urls):
            if url in self.seen:
                continue
            self.seen.add(url)
            job = ResolutionJob(url)
            if position == 0:
                job.metadata = self._metadata_for(message, url)
                if job.metadata is not None and job.metadata.image_attachment_index is not None:
                    job.attachments = self.attachments.resolve(message.id)
            jobs.append(job)
        return jobs

    def _run(self, jobs: Sequence[ResolutionJob]) -> Dict[str, URLThumbnail]:
        def resolve(job: ResolutionJob) -> URLThumbnail:
            return self.pipeline.resolve(job.url, job.metadata, job.attachments)

        if self.max_workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(resolve, jobs))
        else:
            results = [resolve(job) for job in jobs]

        resolved: Dict[str, URLThumbnail] = {}
        for job, thumbnail in zip(jobs, results):
            resolved[job.url] = thumbnail
            self.thumbnails[job.url] = thumbnail
        return resolved

    def process_message(self, message: Message) -> Dict[str, URLThumbnail]:
        """Resolve the message's URLs; returns thumbnails for all of them."""
        self._run(self.plan(message))
        return {url: self.thumbnails[url] for url in find_urls(message.text) if url in self.thumbnails}

    def process_message_id(self, message_id: int) -> Dict[str, URLThumbnail]:
        if self.store is None:
            raise ValueError("process_message_id needs a message store")
        row = self.store.get_message(message_id)
        if row is None:
            return {}
        text, payload = row
        return self.process_message(Message(id=message_id, text=text, payload=payload))

    def process_messages(self, messages: Iterable[Message]) -> Dict[str, URLThumbnail]:
        """Resolve every distinct URL across ``messages``; returns the run's mapping."""
        jobs: List[ResolutionJob] = []
        for message in messages:
            jobs.extend(self.plan(message))
        self._run(jobs)
        succeeded = sum(1 for thumb in self.thumbnails.values() if thumb.success)
        logger.info(
            "Processed %d unique URLs (%d with thumbnails)", len(self.thumbnails), succeeded
        )
        return dict(self.thumbnails)

    def substitute(self, text: Optional[str], render: Optional[ReferenceRenderer] = None) -> Optional[str]:
        return substitute(text, self.thumbnails, render or self.render)
