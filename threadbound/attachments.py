"""Mapping of rich-link attachment indices to files on disk."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Sequence

from .database import MessageStore
from .models import MessageAttachment

logger = logging.getLogger("threadbound")


class AttachmentResolver:
    """Looks up a message's attachments and finds their local files."""

    def __init__(
        self,
        store: Optional[MessageStore] = None,
        attachments_root: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.attachments_root = Path(attachments_root).expanduser() if attachments_root else None

    def resolve(self, message_id: int) -> List[MessageAttachment]:
        """Attachments of a message in database order; empty on any lookup error."""
        if self.store is None:
            return []
        try:
            return self.store.get_attachments_for_message(message_id)
        except sqlite3.Error as exc:
            logger.warning("Failed to read attachments for message %s: %s", message_id, exc)
            return []

    @staticmethod
    def select(attachments: Sequence[MessageAttachment], index: Optional[int]) -> Optional[MessageAttachment]:
        if index is None or not 0 <= index < len(attachments):
            return None
        return attachments[index]

    def candidate_paths(self, attachment: MessageAttachment) -> List[Path]:
        paths: List[Path] = []
        if attachment.filename:
            filename = Path(attachment.filename).expanduser()
            if not filename.is_absolute() and self.attachments_root:
                filename = self.attachments_root / filename
            paths.append(filename)
        if self.attachments_root and attachment.guid:
            paths.append(self.attachments_root / "Attachments" / attachment.guid)
            paths.append(self.attachments_root / attachment.guid)
        return paths

    def locate(self, attachment: MessageAttachment) -> Optional[Path]:
        """First existing regular file for the attachment, if any."""
        for path in self.candidate_paths(attachment):
            if path.is_file():
                return path
        logger.debug("No local file for attachment %s", attachment.guid)
        return None
