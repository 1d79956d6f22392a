from __future__ import annotations

import argparse
import json
import threading
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import Settings, load_settings
from .coordinator import IndexCoordinator
from .errors import ChromarksError
from .executor import CancellationToken
from .favicons import FaviconCache, favicon_source_for
from .items import BookmarkItem
from .log import LogConfig, get_logger, setup_logging
from .model import IndexEntry, derive_entries
from .parse_chromium import parse_bookmark_file
from .profiles import default_bookmarks_path, discover_profiles

log = get_logger(__name__)


class ListIndex:
    """Holds the latest published entries; stands in for a real search index."""

    def __init__(self) -> None:
        self.entries: List[IndexEntry] = []
        self.updates = 0

    def set_index_items(self, entries: List[IndexEntry]) -> None:
        self.entries = entries
        self.updates += 1


def main(argv: List[str] | None = None) -> int:
    p = argparse.ArgumentParser(
        prog="chromarks",
        description="Live search index over Chromium-family browser bookmarks.",
    )
    p.add_argument("-V", "--version", action="version", version=f"chromarks {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored logging.")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("profiles", help="List discovered browser profiles.")

    idx = sub.add_parser("index", help="Parse a Bookmarks file once and print its index entries.")
    idx.add_argument("--bookmarks", default=None, help="Bookmarks file (default: config, then first profile).")
    idx.add_argument("--hostname", action="store_true", help="Also index each bookmark's hostname.")
    idx.add_argument("--json", action="store_true", help="Print one JSON object per entry.")

    icon = sub.add_parser("icon", help="Look up the favicon of a page URL.")
    icon.add_argument("--url", required=True, help="Exact page URL as stored by the browser.")
    icon.add_argument("--favicons", default=None, help="Browser Favicons database (default: next to bookmarks).")
    icon.add_argument("--out", default=None, help="Write image bytes to this file.")

    watch = sub.add_parser("watch", help="Keep the index up to date until interrupted.")
    watch.add_argument("--bookmarks", default=None, help="Bookmarks file (default: config, then first profile).")
    watch.add_argument("--hostname", action="store_true", help="Also index each bookmark's hostname.")
    watch.add_argument("--favicons", action="store_true", help="Mirror the favicon database.")

    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig.from_settings(cfg))

    try:
        if args.cmd == "profiles":
            return _cmd_profiles()
        if args.cmd == "index":
            return _cmd_index(args, cfg)
        if args.cmd == "icon":
            return _cmd_icon(args, cfg)
        if args.cmd == "watch":
            return _cmd_watch(args, cfg)
    except ChromarksError as e:
        log.error("%s", e)
        return 2
    return 2


def _cmd_profiles() -> int:
    profiles = discover_profiles()
    if not profiles:
        log.error("No Chromium-based browser profiles found.")
        return 2
    for prof in profiles:
        marker = "" if prof.bookmarks_path.is_file() else "  (no bookmarks)"
        print(f"{prof.label}\t{prof.bookmarks_path}{marker}")
    return 0


def _cmd_index(args, cfg: Settings) -> int:
    path = _bookmarks_path(args.bookmarks, cfg)
    if path is None:
        log.error("No Chromium-based browser profiles found.")
        return 2
    records = parse_bookmark_file(path, CancellationToken())
    entries = derive_entries(
        [BookmarkItem(r) for r in records],
        index_hostname=args.hostname or cfg.index_hostname,
    )
    for e in entries:
        if args.json:
            print(json.dumps({
                "string": e.string,
                "id": e.record.id,
                "name": e.record.name,
                "folder": e.record.folder,
                "url": e.record.url,
            }, ensure_ascii=False))
        else:
            print(f"{e.string}\t{e.record.url}")
    log.info("%d bookmarks, %d index entries from %s", len(records), len(entries), path)
    return 0


def _cmd_icon(args, cfg: Settings) -> int:
    if args.favicons:
        source = Path(args.favicons)
    else:
        bookmarks = _bookmarks_path(None, cfg)
        if bookmarks is None:
            log.error("No Chromium-based browser profiles found.")
            return 2
        source = favicon_source_for(bookmarks)

    with FaviconCache.create(source, cfg.cache_dir) as cache:
        favicon = cache.icon_for_url(args.url)
    if favicon is None:
        log.warning("No favicon for %s", args.url)
        return 1
    log.info("Favicon %s: %dx%d, %d bytes", favicon.to_url(), favicon.width, favicon.height, len(favicon.image_data))
    if args.out:
        Path(args.out).write_bytes(favicon.image_data)
        log.info("Wrote %s", args.out)
    return 0


def _cmd_watch(args, cfg: Settings) -> int:
    from .watch import WatchdogWatchService

    if args.bookmarks:
        cfg.bookmarks_path = args.bookmarks
    if args.hostname:
        cfg.index_hostname = True
    if args.favicons:
        cfg.favicons_enabled = True

    persist = None
    if args.config:
        config_path = Path(args.config)
        persist = lambda s: s.save(config_path)  # noqa: E731

    watcher = WatchdogWatchService()
    index = ListIndex()
    stop = threading.Event()
    coordinator = IndexCoordinator(
        cfg,
        watcher,
        index,
        persist=persist,
        on_status=lambda text: log.info("%s (%d index entries)", text, len(index.entries)),
    )
    watcher.start()
    log.info("Watching %s (Ctrl-C to stop)", coordinator.bookmarks_path)
    try:
        stop.wait()
    except KeyboardInterrupt:
        log.info("Stopping.")
    finally:
        watcher.stop()
        coordinator.close()
    return 0


def _bookmarks_path(explicit: Optional[str], cfg: Settings) -> Optional[Path]:
    if explicit:
        return Path(explicit).expanduser()
    if cfg.bookmarks_path:
        return Path(cfg.bookmarks_path).expanduser()
    return default_bookmarks_path()
