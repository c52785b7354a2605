"""Content-addressed on-disk store for resolved thumbnails."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Union

from .errors import CacheError
from .utils import url_hash

logger = logging.getLogger("threadbound")

THUMBNAIL_SUFFIX = ".png"


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ThumbnailCache:
    """One PNG per resolved URL, named by the MD5 of the URL.

    Entries are never evicted or invalidated; a non-empty file is proof that
    the URL was resolved before.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._ready = False
        self._locks: Dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    def ensure(self) -> Path:
        """Create the cache directory once; raises CacheError when impossible."""
        if self._ready:
            return self.directory
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheError(f"cannot create cache directory {self.directory}: {exc}") from exc
        self._ready = True
        return self.directory

    def path(self, url: str) -> Path:
        return self.directory / f"{url_hash(url)}{THUMBNAIL_SUFFIX}"

    def exists(self, url: str) -> bool:
        try:
            return self.path(url).stat().st_size > 0
        except OSError:
            return False

    def put(self, url: str, source: Union[bytes, Path]) -> Path:
        """Store bytes or a file's contents for ``url`` via rename-into-place."""
        self.ensure()
        target = self.path(url)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=self.directory, prefix=".tmp-", suffix=THUMBNAIL_SUFFIX, delete=False
            ) as handle:
                tmp_name = handle.name
                if isinstance(source, (bytes, bytearray)):
                    handle.write(source)
                else:
                    with open(source, "rb") as src:
                        shutil.copyfileobj(src, handle)
            if os.path.getsize(tmp_name) == 0:
                raise CacheError(f"refusing to cache empty thumbnail for {url}")
            os.replace(tmp_name, target)
            tmp_name = None
        except OSError as exc:
            raise CacheError(f"cannot write {target}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temporary file %s", tmp_name)
        logger.debug("Cached thumbnail for %s at %s", url, target)
        return target

    @contextmanager
    def lock(self, url: str) -> Iterator[None]:
        """Serialise the exists-then-put sequence for one URL.

        A URL's lock exists only while some thread holds or waits on it.
        """
        key = url_hash(url)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if not entry.users:
                    del self._locks[key]
