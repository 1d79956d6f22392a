from __future__ import annotations

import threading
from functools import partial
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol

from .config import Settings
from .errors import ConfigurationError, FaviconCacheError
from .executor import BackgroundExecutor
from .favicons import FaviconCache, favicon_source_for
from .items import BookmarkItem, HostActions
from .log import get_logger
from .model import BookmarkRecord, IndexEntry, derive_entries
from .parse_chromium import parse_bookmarks
from .profiles import Profile, default_bookmarks_path

log = get_logger(__name__)


class WatchService(Protocol):
    """File-change notifications, provided by the host."""

    def files(self) -> List[str]: ...

    def add_paths(self, paths: Iterable[str]) -> None: ...

    def remove_paths(self, paths: Iterable[str]) -> None: ...

    def connect(self, callback: Callable[[str], None]) -> None: ...


class SearchIndex(Protocol):
    """External text index; takes ownership of each published entry list."""

    def set_index_items(self, entries: List[IndexEntry]) -> None: ...


def status_text(count: int) -> str:
    return f"{count} bookmark indexed." if count == 1 else f"{count} bookmarks indexed."


class IndexCoordinator:
    """Keeps a search index in sync with a browser's Bookmarks file.

    Parses run on the executor's worker thread; results are applied on its
    control thread. Setters may be called from any thread. All coordinator
    state is guarded by one lock.
    """

    def __init__(
        self,
        settings: Settings,
        watcher: WatchService,
        index: SearchIndex,
        *,
        persist: Optional[Callable[[Settings], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
        host: Optional[HostActions] = None,
        profiles: Optional[List[Profile]] = None,
    ):
        self.settings = settings
        self.watcher = watcher
        self.index = index
        self.persist = persist
        self.on_status = on_status
        self.host = host
        self.status = ""
        self.favicons: Optional[FaviconCache] = None
        self._records: List[BookmarkRecord] = []
        self._closed = False
        self._lock = threading.RLock()

        self.bookmarks_path = self._resolve_bookmarks_path(settings, profiles)
        self.indexer: BackgroundExecutor[List[BookmarkRecord]] = BackgroundExecutor(name="bookmarks")
        self.indexer.on_finish = self._on_parsed
        self.indexer.compute = partial(parse_bookmarks, [self.bookmarks_path])

        self.watcher.connect(self.on_file_changed)
        self._rewatch()
        if settings.favicons_enabled:
            self._enable_favicons()
        self.indexer.run()

    @property
    def records(self) -> List[BookmarkRecord]:
        with self._lock:
            return self._records

    @property
    def favicon_source(self) -> Path:
        return favicon_source_for(self.bookmarks_path)

    def set_bookmarks_path(self, path: Path | str) -> None:
        with self._lock:
            self.bookmarks_path = Path(path)
            self.settings.bookmarks_path = str(self.bookmarks_path)
            self._save()
            self._rewatch()
            self.indexer.compute = partial(parse_bookmarks, [self.bookmarks_path])
            if self.favicons is not None:
                # Different profile, different favicon database.
                self._disable_favicons()
                self._enable_favicons()
            self.indexer.run()

    def set_index_hostname(self, enabled: bool) -> None:
        with self._lock:
            self.settings.index_hostname = bool(enabled)
            self._save()
            self._publish()

    def set_favicons_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.settings.favicons_enabled = bool(enabled)
            self._save()
            if enabled and self.favicons is None:
                self._enable_favicons()
            elif not enabled and self.favicons is not None:
                self._disable_favicons()
            self._publish()

    def on_file_changed(self, path: str) -> None:
        log.debug("Bookmarks file changed: %s", path)
        with self._lock:
            if self._closed:
                return
            self._rewatch()
        self.indexer.run()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        return self.indexer.wait_idle(timeout)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self.indexer.shutdown()
        with self._lock:
            self._disable_favicons()
            files = self.watcher.files()
            if files:
                self.watcher.remove_paths(files)

    def _on_parsed(self, records: List[BookmarkRecord]) -> None:
        with self._lock:
            self._records = records
            log.info("Indexed %d bookmarks [%d ms]", len(records), self.indexer.runtime_ms)
            self._publish()
            self.status = status_text(len(records))
            if self.on_status is not None:
                self.on_status(self.status)
            if self.favicons is not None:
                self.favicons.refresh(self.favicon_source)

    def _publish(self) -> None:
        items = [BookmarkItem(r, self.favicons, self.host) for r in self._records]
        entries = derive_entries(items, index_hostname=self.settings.index_hostname)
        self.index.set_index_items(entries)

    def _rewatch(self) -> None:
        # Chromium replaces the file on save (inode change), which can end
        # notifications for the old path.
        files = self.watcher.files()
        if files:
            self.watcher.remove_paths(files)
        self.watcher.add_paths([str(self.bookmarks_path)])

    def _enable_favicons(self) -> None:
        try:
            self.favicons = FaviconCache.create(self.favicon_source, self.settings.cache_dir)
        except FaviconCacheError as e:
            log.error("Favicons disabled: %s", e)
            self.favicons = None
            return
        log.info("Favicon mirror ready: %s", self.favicons.mirror_path)

    def _disable_favicons(self) -> None:
        if self.favicons is not None:
            self.favicons.close()
            self.favicons = None

    def _save(self) -> None:
        if self.persist is not None:
            self.persist(self.settings)

    @staticmethod
    def _resolve_bookmarks_path(settings: Settings, profiles: Optional[List[Profile]]) -> Path:
        if settings.bookmarks_path:
            return Path(settings.bookmarks_path).expanduser()
        path = default_bookmarks_path(profiles)
        if path is None:
            raise ConfigurationError("No Chromium-based browser profiles found.")
        log.info("Using bookmarks of first discovered profile: %s", path)
        return path
