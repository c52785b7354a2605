"""Tests for run-scoped processing of message batches."""

import plistlib
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from threadbound.attachments import AttachmentResolver
from threadbound.database import MessageStore
from threadbound.errors import MetadataDecodeError
from threadbound.models import Message, MessageAttachment, RichLinkMetadata, URLThumbnail
from threadbound.processor import LinkPreviewProcessor
from threadbound.richlink import KeyedArchiveDecoder, RichLinkParser

from .conftest import build_chat_db, make_image_bytes


class StubPipeline:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []
        self.attachments = AttachmentResolver()
        self._lock = threading.Lock()

    def resolve(self, url, metadata=None, attachments=()):
        with self._lock:
            self.calls.append((url, metadata, tuple(attachments)))
        if url in self.failing:
            return URLThumbnail.failed(url, "unreachable")
        name = url.rsplit("/", 1)[-1] or "root"
        return URLThumbnail(url=url, thumbnail_path=Path("/cache") / f"{name}.png", success=True)


class StubParser:
    def __init__(self):
        self.calls = []

    def parse(self, blob, url):
        self.calls.append((blob, url))
        if blob == b"bad":
            raise MetadataDecodeError("unreadable")
        return RichLinkMetadata(title="Rich", image_attachment_index=0)


@pytest.fixture
def attachments():
    resolver = Mock(spec=AttachmentResolver)
    resolver.resolve.return_value = [MessageAttachment(id=1, guid="g")]
    return resolver


class TestLinkPreviewProcessor:
    """Each distinct URL resolves once per run."""

    def test_same_url_in_two_messages_resolves_once(self, attachments):
        pipeline = StubPipeline()
        processor = LinkPreviewProcessor(pipeline, StubParser(), attachments)
        result = processor.process_messages(
            [
                Message(1, "see https://example.com/a"),
                Message(2, "again https://example.com/a and https://example.com/b"),
            ]
        )
        assert [call[0] for call in pipeline.calls] == ["https://example.com/a", "https://example.com/b"]
        assert list(result) == ["https://example.com/a", "https://example.com/b"]

    def test_metadata_applies_to_first_url_only(self, attachments):
        pipeline = StubPipeline()
        parser = StubParser()
        processor = LinkPreviewProcessor(pipeline, parser, attachments)
        processor.process_message(Message(7, "https://one.example/x https://two.example/y", b"blob"))
        (first_url, first_meta, first_atts), (second_url, second_meta, second_atts) = pipeline.calls
        assert first_meta.title == "Rich"
        assert first_atts == (MessageAttachment(id=1, guid="g"),)
        assert second_meta is None and second_atts == ()
        assert parser.calls == [(b"blob", "https://one.example/x")]
        attachments.resolve.assert_called_once_with(7)

    def test_unreadable_payload_still_resolves(self, attachments):
        pipeline = StubPipeline()
        processor = LinkPreviewProcessor(pipeline, StubParser(), attachments)
        result = processor.process_message(Message(1, "https://example.com/a", b"bad"))
        assert result["https://example.com/a"].success is True
        assert pipeline.calls[0][1] is None
        attachments.resolve.assert_not_called()

    def test_malformed_xml_payload_does_not_stop_the_run(self, attachments):
        pipeline = StubPipeline()
        parser = RichLinkParser(decoder=KeyedArchiveDecoder())
        processor = LinkPreviewProcessor(pipeline, parser, attachments)
        result = processor.process_messages(
            [
                Message(1, "https://a.example/x", b"<plist><dict><key>a</key>"),
                Message(2, "https://b.example/y", b"<?xml version='1.0'?><plist><dict>"),
            ]
        )
        assert list(result) == ["https://a.example/x", "https://b.example/y"]
        assert [call[1] for call in pipeline.calls] == [None, None]
        attachments.resolve.assert_not_called()

    def test_payload_is_loaded_from_store_when_missing(self, attachments):
        store = Mock(spec=MessageStore)
        store.get_message.return_value = ("https://example.com/a", b"blob")
        parser = StubParser()
        processor = LinkPreviewProcessor(StubPipeline(), parser, attachments, store=store)
        processor.process_message_id(5)
        store.get_message.assert_called_once_with(5)
        assert parser.calls == [(b"blob", "https://example.com/a")]

    def test_process_message_id_needs_store(self):
        with pytest.raises(ValueError):
            LinkPreviewProcessor(StubPipeline(), StubParser()).process_message_id(1)

    def test_process_message_includes_urls_seen_earlier(self, attachments):
        processor = LinkPreviewProcessor(StubPipeline(), StubParser(), attachments)
        processor.process_message(Message(1, "https://example.com/a"))
        result = processor.process_message(Message(2, "https://example.com/a https://example.com/b"))
        assert set(result) == {"https://example.com/a", "https://example.com/b"}

    def test_concurrent_workers_give_same_mapping(self, attachments):
        messages = [Message(i, f"https://example.com/{i} https://shared.example/") for i in range(8)]
        sequential = LinkPreviewProcessor(StubPipeline(), StubParser(), attachments)
        threaded = LinkPreviewProcessor(StubPipeline(), StubParser(), attachments, max_workers=4)
        assert sequential.process_messages(messages) == threaded.process_messages(messages)
        assert len(threaded.pipeline.calls) == 9

    def test_substitute_leaves_failures_verbatim(self, attachments):
        pipeline = StubPipeline(failing={"https://down.example/x"})
        processor = LinkPreviewProcessor(pipeline, StubParser(), attachments)
        text = "up https://up.example/page down https://down.example/x"
        processor.process_message(Message(1, text))
        assert processor.substitute(text) == (
            "up \\messageimage{Attachments/url-thumbnails/page.png} down https://down.example/x"
        )

    def test_new_instance_starts_with_fresh_state(self, attachments):
        first = LinkPreviewProcessor(StubPipeline(), StubParser(), attachments)
        first.process_message(Message(1, "https://example.com/a"))
        second = LinkPreviewProcessor(StubPipeline(), StubParser(), attachments)
        assert second.seen == set() and second.thumbnails == {}


class TestEndToEnd:
    """A rich-link attachment in chat.db becomes the cached thumbnail."""

    def test_attachment_from_database_is_used(self, tmp_path, config, make_pipeline, session):
        archive = {
            "$archiver": "NSKeyedArchiver",
            "$version": 100000,
            "$top": {"root": plistlib.UID(1)},
            "$objects": [
                "$null",
                {"title": plistlib.UID(2), "richLinkImageAttachmentSubstituteIndex": 0},
                "Holiday photos",
            ],
        }
        payload = plistlib.dumps(archive, fmt=plistlib.FMT_BINARY)
        db = build_chat_db(
            tmp_path / "chat.db",
            messages=[(1, "look https://photos.example/album", payload, 1)],
            attachments=[(4, "guid-photo", "image/jpeg", None)],
            joins=[(1, 4)],
        )
        folder = config.attachments_root / "Attachments"
        folder.mkdir(parents=True)
        (folder / "guid-photo").write_bytes(make_image_bytes((300, 300), fmt="JPEG"))

        with MessageStore(db) as store:
            resolver = AttachmentResolver(store, config.attachments_root)
            processor = LinkPreviewProcessor(
                make_pipeline(attachments=resolver),
                RichLinkParser(KeyedArchiveDecoder()),
                store=store,
            )
            result = processor.process_messages(store.iter_link_messages())

        thumbnail = result["https://photos.example/album"]
        assert thumbnail.success is True
        assert thumbnail.title == "Holiday photos"
        assert thumbnail.thumbnail_path.parent == config.cache_dir
        assert session.calls == []
