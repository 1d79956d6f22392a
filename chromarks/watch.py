from __future__ import annotations

import os
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .log import get_logger

log = get_logger(__name__)


class _FileEventHandler(FileSystemEventHandler):
    def __init__(self, service: "WatchdogWatchService"):
        super().__init__()
        self.service = service

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("modified", "created", "moved"):
            return
        for path in (event.src_path, getattr(event, "dest_path", "")):
            if path:
                self.service._notify(os.fsdecode(path))


class WatchdogWatchService:
    """File watch service on top of watchdog.

    watchdog observes directories, so each watched file registers its parent
    directory and events are filtered down to the registered files. Callbacks
    run on the observer thread.
    """

    def __init__(self, observer: Optional[Observer] = None):
        self._observer = observer or Observer()
        self._handler = _FileEventHandler(self)
        self._files: Set[str] = set()
        self._watches: Dict[str, object] = {}
        self._callbacks: List[Callable[[str], None]] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        self._observer.start()

    def stop(self) -> None:
        self._observer.unschedule_all()
        self._watches.clear()
        self._observer.stop()
        self._observer.join(timeout=5.0)

    def connect(self, callback: Callable[[str], None]) -> None:
        self._callbacks.append(callback)

    def files(self) -> List[str]:
        with self._lock:
            return sorted(self._files)

    def add_paths(self, paths: Iterable[str]) -> None:
        with self._lock:
            for p in paths:
                path = os.path.abspath(p)
                directory = os.path.dirname(path)
                if not os.path.isdir(directory):
                    log.warning("Cannot watch %s: directory does not exist", path)
                    continue
                self._files.add(path)
                if directory not in self._watches:
                    self._watches[directory] = self._observer.schedule(self._handler, directory, recursive=False)

    def remove_paths(self, paths: Iterable[str]) -> None:
        with self._lock:
            # Directory watches stay scheduled until stop(): remove/add cycles
            # run inside event dispatch, and the file filter already drops
            # events for removed paths.
            for p in paths:
                self._files.discard(os.path.abspath(p))

    def _notify(self, path: str) -> None:
        path = os.path.abspath(path)
        with self._lock:
            if path not in self._files:
                return
        for callback in list(self._callbacks):
            try:
                callback(path)
            except Exception:
                log.exception("File change callback failed for %s", path)
