from __future__ import annotations

import webbrowser
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol

from .favicons import Favicon, FaviconCache
from .icons import Icon, Rect, compose_icon
from .model import BookmarkRecord

DEFAULT_ICON_RECT = Rect(0, 0, 32, 32)


class HostActions(Protocol):
    """Host-side effects. `set_clipboard_text` is optional; without it items
    offer no copy action."""

    def open_url(self, url: str) -> None: ...


class BrowserHost:
    """Opens URLs with the system browser. Has no clipboard."""

    def open_url(self, url: str) -> None:
        webbrowser.open(url)


@dataclass(frozen=True)
class Action:
    id: str
    text: str
    run: Callable[[], None]


class BookmarkItem:
    """A bookmark as presented to the host: text, icon and actions.

    `favicons` is the cache active when the item was built, or None when favicons
    are off; items never look a cache up on their own.
    """

    def __init__(
        self,
        record: BookmarkRecord,
        favicons: Optional[FaviconCache] = None,
        host: Optional[HostActions] = None,
    ):
        self.record = record
        self.favicons = favicons
        self.host = host or BrowserHost()

    def __repr__(self) -> str:
        return f"BookmarkItem({self.record.id!r}, {self.record.name!r})"

    def id(self) -> str:
        return self.record.id

    def text(self) -> str:
        return self.record.name

    def subtext(self) -> str:
        return self.record.folder

    def input_action_text(self) -> str:
        return self.record.name

    def favicon(self) -> Optional[Favicon]:
        if self.favicons is None:
            return None
        return self.favicons.icon_for_url(self.record.url)

    def icon(self, rect: Rect = DEFAULT_ICON_RECT, device_pixel_ratio: float = 1.0) -> Icon:
        return compose_icon(self.favicon(), rect, device_pixel_ratio)

    def actions(self) -> List[Action]:
        url = self.record.url
        out = [Action("open-url", "Open URL", lambda: self.host.open_url(url))]
        set_clipboard_text = getattr(self.host, "set_clipboard_text", None)
        if callable(set_clipboard_text):
            out.append(Action("copy-url", "Copy URL to clipboard", lambda: set_clipboard_text(url)))
        return out
