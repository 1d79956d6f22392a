from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List
from urllib.parse import urlparse

if TYPE_CHECKING:
    from .items import BookmarkItem

# Joins ancestor folder names into a breadcrumb.
FOLDER_SEPARATOR = " → "


@dataclass(frozen=True)
class BookmarkRecord:
    id: str
    name: str
    folder: str
    url: str

    @property
    def hostname(self) -> str:
        return hostname_of(self.url)


@dataclass(frozen=True)
class IndexEntry:
    item: "BookmarkItem"
    string: str

    @property
    def record(self) -> BookmarkRecord:
        return self.item.record


def hostname_of(url: str) -> str:
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


def derive_entries(items: Iterable["BookmarkItem"], *, index_hostname: bool) -> List[IndexEntry]:
    """One entry per display name, plus one per hostname when enabled.

    Empty strings are never indexed, so a record yields zero, one or two entries.
    """
    out: List[IndexEntry] = []
    for item in items:
        if item.record.name:
            out.append(IndexEntry(item, item.record.name))
        if index_hostname:
            host = item.record.hostname
            if host:
                out.append(IndexEntry(item, host))
    return out
