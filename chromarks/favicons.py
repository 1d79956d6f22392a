from __future__ import annotations

import io
import os
import shutil
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import FaviconCacheError
from .log import get_logger
from .profiles import FAVICONS_FILE

log = get_logger(__name__)

FAVICON_SCHEME = "chrome_favicon:"
MIRROR_NAME = "Favicons.mirror.sqlite"

_ICON_QUERY = """
    SELECT fb.image_data, fb.width
    FROM icon_mapping im
    JOIN favicon_bitmaps fb ON fb.icon_id = im.icon_id
    WHERE im.page_url = ?
    ORDER BY fb.width DESC
    LIMIT 1
"""


@dataclass(frozen=True)
class Favicon:
    url: str
    image_data: bytes
    width: int
    height: int

    def to_url(self) -> str:
        return FAVICON_SCHEME + self.url


@dataclass
class FaviconCacheState:
    mirror_path: Path
    last_mtime: Optional[int] = None
    enabled: bool = False


def favicon_source_for(bookmarks_path: Path | str) -> Path:
    """The favicon database living next to a profile's Bookmarks file."""
    return Path(bookmarks_path).parent / FAVICONS_FILE


def refresh_if_stale(source_db: Path, mirror_db: Path, last_known_mtime: Optional[int]) -> Optional[int]:
    """Copy `source_db` over `mirror_db` when the source is newer or the mirror is missing.

    Returns the source mtime (whole seconds) the mirror now reflects. Nothing is
    copied, and `last_known_mtime` is returned, when the mirror is current or the
    copy fails.
    """
    mtime = _source_mtime(source_db)
    if mtime is None:
        return last_known_mtime
    if not _is_stale(mtime, last_known_mtime, mirror_db):
        return last_known_mtime
    if not _copy_database(source_db, mirror_db):
        return last_known_mtime
    return mtime


class FaviconCache:
    """Private mirror of a browser favicon database plus one query connection.

    Lookups and refreshes share a lock, so a lookup never sees the mirror file
    halfway through a copy.
    """

    def __init__(self, mirror_path: Path | str):
        self.state = FaviconCacheState(mirror_path=Path(mirror_path))
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @classmethod
    def create(cls, source_db: Path | str, cache_dir: Path | str) -> "FaviconCache":
        """Build the mirror from scratch and open it. Raises FaviconCacheError."""
        cache_dir = Path(cache_dir)
        try:
            cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FaviconCacheError(f"Failed to create favicon cache dir {cache_dir}: {e}") from e
        cache = cls(cache_dir / MIRROR_NAME)
        mtime = refresh_if_stale(Path(source_db), cache.mirror_path, None)
        if mtime is None:
            # A mirror left in cache_dir may belong to another profile.
            raise FaviconCacheError(f"Failed to mirror favicon database {source_db}")
        cache.state.last_mtime = mtime
        cache.open()
        return cache

    @property
    def mirror_path(self) -> Path:
        return self.state.mirror_path

    @property
    def last_mtime(self) -> Optional[int]:
        return self.state.last_mtime

    def __enter__(self) -> "FaviconCache":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        with self._lock:
            self._close()
            self._open()

    def close(self) -> None:
        with self._lock:
            self._close()

    def refresh(self, source_db: Path | str, *, force: bool = False) -> bool:
        """Re-mirror `source_db` if it changed. Returns True when a copy happened."""
        source_db = Path(source_db)
        with self._lock:
            last = None if force else self.state.last_mtime
            mtime = _source_mtime(source_db)
            if mtime is None or not _is_stale(mtime, last, self.mirror_path):
                return False
            was_open = self.conn is not None
            self._close()
            try:
                copied = _copy_database(source_db, self.mirror_path)
            finally:
                if was_open:
                    self._reopen_quietly()
            if copied:
                self.state.last_mtime = mtime
                log.info("Refreshed favicon mirror from %s (mtime %d)", source_db, mtime)
            return copied

    def icon_for_url(self, url: str) -> Optional[Favicon]:
        with self._lock:
            if self.conn is None:
                log.debug("Favicon lookup on closed cache: %s", url)
                return None
            try:
                row = self.conn.execute(_ICON_QUERY, (url,)).fetchone()
            except sqlite3.Error as e:
                log.debug("Favicon query failed for %s: %s", url, e)
                return None
        if row is None:
            log.debug("No favicon found for url: %s", url)
            return None
        data = bytes(row[0] or b"")
        size = _image_size(data)
        if size is None:
            log.debug("Undecodable favicon for url: %s", url)
            return None
        return Favicon(url=url, image_data=data, width=size[0], height=size[1])

    def _open(self) -> None:
        uri = f"file:{self.mirror_path.as_posix()}?mode=ro"
        try:
            # Lookups may come from any thread; the lock serializes them.
            self.conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        except sqlite3.Error as e:
            raise FaviconCacheError(f"Failed to open favicon database {self.mirror_path}: {e}") from e
        self.state.enabled = True

    def _reopen_quietly(self) -> None:
        try:
            self._open()
        except FaviconCacheError as e:
            log.warning("%s", e)

    def _close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        self.state.enabled = False


def _source_mtime(source_db: Path) -> Optional[int]:
    try:
        return int(os.stat(source_db).st_mtime)
    except OSError as e:
        log.warning("Favicon database not accessible %s: %s", source_db, e)
        return None


def _is_stale(mtime: int, last_known_mtime: Optional[int], mirror_db: Path) -> bool:
    if last_known_mtime is None or not mirror_db.exists():
        return True
    return mtime > last_known_mtime


def _copy_database(source_db: Path, mirror_db: Path) -> bool:
    tmp = mirror_db.with_name(mirror_db.name + ".tmp")
    try:
        mirror_db.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source_db, tmp)
        os.replace(tmp, mirror_db)
    except OSError as e:
        log.warning("Failed to copy favicon database %s -> %s: %s", source_db, mirror_db, e)
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        except OSError as cleanup_error:
            log.debug("Could not remove %s: %s", tmp, cleanup_error)
        return False
    log.debug("Copied favicon database %s -> %s", source_db, mirror_db)
    return True


def _image_size(data: bytes) -> Optional[tuple[int, int]]:
    if not data:
        return None
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError):
        return None
