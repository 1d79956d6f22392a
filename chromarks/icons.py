from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .favicons import Favicon

COMPOSED_SCHEME = "composed:"

# Generic bookmark glyph, best match first.
if sys.platform.startswith(("linux", "freebsd", "openbsd", "netbsd")):
    GLYPH_URLS: Tuple[str, ...] = ("xdg:www", "xdg:web-browser", "xdg:emblem-web", "qrc:star")
else:
    GLYPH_URLS = ("qrc:star",)

# Overlay geometry: (scale, relative x, relative y) inside the target rect.
GLYPH_LAYOUT = (1.0, 0.0, 0.0)
OVERLAY_LAYOUT = (0.5, 1.0, 1.0)


class IconKind(str, Enum):
    PLAIN = "plain"
    FAVICON = "favicon"
    COMPOSED = "composed"


class Layer(str, Enum):
    GLYPH = "glyph"
    FAVICON = "favicon"


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Placement:
    layer: Layer
    rect: Rect


@dataclass(frozen=True)
class Icon:
    kind: IconKind
    glyph_urls: Tuple[str, ...] = GLYPH_URLS
    favicon: Optional[Favicon] = None

    def __post_init__(self) -> None:
        if self.kind is not IconKind.PLAIN and self.favicon is None:
            raise ValueError(f"{self.kind.value} icon needs a favicon")

    def to_url(self) -> str:
        if self.kind is IconKind.PLAIN:
            return self.glyph_urls[0] if self.glyph_urls else ""
        if self.kind is IconKind.FAVICON:
            return self.favicon.to_url()
        return COMPOSED_SCHEME + self.favicon.to_url()

    def placements(self, rect: Rect, device_pixel_ratio: float = 1.0) -> List[Placement]:
        """Where each layer of this icon is drawn inside `rect`."""
        if self.kind is IconKind.PLAIN:
            return [Placement(Layer.GLYPH, _square(rect, *GLYPH_LAYOUT))]
        if self.kind is IconKind.FAVICON:
            return [Placement(Layer.FAVICON, _fit(self.favicon, rect, device_pixel_ratio))]
        return [
            Placement(Layer.GLYPH, _square(rect, *GLYPH_LAYOUT)),
            Placement(Layer.FAVICON, _square(rect, *OVERLAY_LAYOUT)),
        ]


def compose_icon(
    favicon: Optional[Favicon],
    rect: Rect,
    device_pixel_ratio: float = 1.0,
    glyph_urls: Tuple[str, ...] = GLYPH_URLS,
) -> Icon:
    """Pick the icon variant for drawing `favicon` into `rect`.

    A favicon large enough for the target is drawn alone. A small one (a 16px
    icon in a big tile) goes on top of the generic glyph instead of being
    upscaled. Without a favicon the glyph is used alone.
    """
    if favicon is None:
        return Icon(IconKind.PLAIN, glyph_urls)
    target = min(rect.width, rect.height) * device_pixel_ratio
    if max(favicon.width, favicon.height) > target / 2:
        return Icon(IconKind.FAVICON, glyph_urls, favicon)
    return Icon(IconKind.COMPOSED, glyph_urls, favicon)


def _square(rect: Rect, scale: float, rel_x: float, rel_y: float) -> Rect:
    side = min(rect.width, rect.height) * scale
    return Rect(
        rect.x + (rect.width - side) * rel_x,
        rect.y + (rect.height - side) * rel_y,
        side,
        side,
    )


def _fit(favicon: Favicon, rect: Rect, device_pixel_ratio: float) -> Rect:
    # Downscaled to fit but never enlarged.
    w = favicon.width / device_pixel_ratio
    h = favicon.height / device_pixel_ratio
    if w > rect.width or h > rect.height:
        factor = min(rect.width / w, rect.height / h)
        w, h = w * factor, h * factor
    return Rect(rect.x + (rect.width - w) / 2, rect.y + (rect.height - h) / 2, w, h)
