from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List, Optional

from .executor import CancellationToken
from .log import get_logger
from .model import FOLDER_SEPARATOR, BookmarkRecord

log = get_logger(__name__)


def parse_bookmarks(paths: Iterable[Path | str], token: Optional[CancellationToken] = None) -> List[BookmarkRecord]:
    token = token or CancellationToken()
    out: List[BookmarkRecord] = []
    for path in paths:
        if token.cancelled:
            break
        out.extend(parse_bookmark_file(Path(path), token))
    return out


def parse_bookmark_file(path: Path, token: Optional[CancellationToken] = None) -> List[BookmarkRecord]:
    """Flatten a Chromium `Bookmarks` JSON file into records in document order.

    Missing or unreadable files and invalid JSON yield an empty list. When
    `token` is cancelled the records emitted so far are returned.
    """
    token = token or CancellationToken()
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        log.warning("Could not open Bookmarks file %s: %s", path, e)
        return []
    try:
        doc = json.loads(raw)
    except (ValueError, RecursionError) as e:
        log.warning("Bookmarks file is not valid JSON %s: %s", path, e)
        return []

    roots = doc.get("roots") if isinstance(doc, dict) else None
    if not isinstance(roots, dict):
        log.warning("Bookmarks file has no 'roots' object: %s", path)
        return []

    out: List[BookmarkRecord] = []
    # Root keys (bookmark_bar, other, synced) are a synthetic container and
    # never show up in the breadcrumb.
    try:
        for root in roots.values():
            if token.cancelled:
                break
            if not _walk(root, "", out, token):
                break
    except RecursionError:
        log.warning("Bookmarks file is nested too deeply: %s", path)
        return []
    return out


def _walk(node: Any, folder_path: str, out: List[BookmarkRecord], token: CancellationToken) -> bool:
    """Visit one node. Returns False once cancellation was observed."""
    if not isinstance(node, dict):
        return True

    node_type = _str(node.get("type"))
    name = _str(node.get("name"))

    if node_type == "folder":
        child_path = name if not folder_path else f"{folder_path}{FOLDER_SEPARATOR}{name}"
        children = node.get("children")
        if not isinstance(children, list):
            return True
        for child in children:
            if token.cancelled:
                return False
            if not _walk(child, child_path, out, token):
                return False
        return True

    if node_type == "url":
        url = _str(node.get("url"))
        if not name and not url:
            log.debug("Skipping bookmark node without name and url: %r", node.get("id"))
            return True
        out.append(
            BookmarkRecord(
                id=_str(node.get("guid")) or _str(node.get("id")),
                name=name,
                folder=folder_path,
                url=url,
            )
        )
    return True


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""
