"""Read-only access to the Messages ``chat.db`` SQLite database."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .models import Message, MessageAttachment

logger = logging.getLogger("threadbound")

_ATTACHMENTS_QUERY = """
    SELECT a.ROWID, a.guid, a.mime_type, a.filename
    FROM attachment a
    JOIN message_attachment_join j ON a.ROWID = j.attachment_id
    WHERE j.message_id = ?
    ORDER BY a.ROWID
"""

_LINK_MESSAGES_QUERY = """
    SELECT ROWID, text, payload_data
    FROM message
    WHERE text LIKE '%http://%' OR text LIKE '%https://%'
    ORDER BY date, ROWID
"""


class MessageStore:
    """Thin query layer over a ``chat.db`` file opened read-only."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            uri = f"file:{self.path.resolve().as_posix()}?mode=ro"
            self._conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "MessageStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_message(self, message_id: int) -> Optional[Tuple[Optional[str], Optional[bytes]]]:
        """Return ``(text, payload_data)`` for a message, or ``None`` if absent."""
        row = self.conn.execute(
            "SELECT text, payload_data FROM message WHERE ROWID = ?", (message_id,)
        ).fetchone()
        if row is None:
            return None
        text, payload = row
        return text, bytes(payload) if payload else None

    def get_attachments_for_message(self, message_id: int) -> List[MessageAttachment]:
        rows = self.conn.execute(_ATTACHMENTS_QUERY, (message_id,)).fetchall()
        return [
            MessageAttachment(id=row[0], guid=row[1] or "", mime_type=row[2], filename=row[3])
            for row in rows
        ]

    def iter_link_messages(self) -> Iterator[Message]:
        """Yield messages whose text contains an http(s) URL, oldest first."""
        for rowid, text, payload in self.conn.execute(_LINK_MESSAGES_QUERY):
            yield Message(id=rowid, text=text, payload=bytes(payload) if payload else None)
