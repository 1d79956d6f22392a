import io
import os
import sqlite3
import threading
from pathlib import Path

import pytest
from PIL import Image

import chromarks.favicons as favicons
from chromarks.errors import FaviconCacheError
from chromarks.favicons import FaviconCache, favicon_source_for, refresh_if_stale


def _png(size: int, color=(200, 30, 30, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (size, size), color).save(buf, format="PNG")
    return buf.getvalue()


def _mk_favicons_db(path: Path, rows) -> Path:
    """rows: (page_url, icon_id, width, image_data)."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE favicons (id INTEGER PRIMARY KEY, url LONGVARCHAR NOT NULL, icon_type INTEGER DEFAULT 1);
            CREATE TABLE icon_mapping (id INTEGER PRIMARY KEY, page_url LONGVARCHAR NOT NULL, icon_id INTEGER);
            CREATE TABLE favicon_bitmaps (
              id INTEGER PRIMARY KEY,
              icon_id INTEGER NOT NULL,
              last_updated INTEGER DEFAULT 0,
              image_data BLOB,
              width INTEGER DEFAULT 0,
              height INTEGER DEFAULT 0
            );
            """
        )
        mapped = set()
        for page_url, icon_id, width, data in rows:
            if (page_url, icon_id) not in mapped:
                mapped.add((page_url, icon_id))
                conn.execute("INSERT INTO icon_mapping(page_url, icon_id) VALUES (?, ?)", (page_url, icon_id))
            conn.execute(
                "INSERT INTO favicon_bitmaps(icon_id, image_data, width, height) VALUES (?, ?, ?, ?)",
                (icon_id, data, width, width),
            )
        conn.commit()
    finally:
        conn.close()
    return path


def _set_mtime(path: Path, mtime: int) -> None:
    os.utime(path, (mtime, mtime))


def test_icon_for_url_picks_widest_bitmap(tmp_path: Path):
    src = _mk_favicons_db(
        tmp_path / "Favicons",
        [
            ("https://mail.example.com/", 1, 16, _png(16)),
            ("https://mail.example.com/", 1, 48, _png(48)),
            ("https://other.example/", 2, 32, _png(32)),
        ],
    )
    with FaviconCache.create(src, tmp_path / "cache") as cache:
        icon = cache.icon_for_url("https://mail.example.com/")
    assert icon is not None
    assert (icon.width, icon.height) == (48, 48)
    assert icon.image_data == _png(48)
    assert icon.to_url() == "chrome_favicon:https://mail.example.com/"


def test_icon_for_url_without_match_returns_none(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [("https://a.example/", 1, 16, _png(16))])
    with FaviconCache.create(src, tmp_path / "cache") as cache:
        assert cache.icon_for_url("https://a.example") is None
        assert cache.icon_for_url("https://b.example/") is None


def test_url_is_bound_not_interpolated(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [("https://a.example/", 1, 16, _png(16))])
    with FaviconCache.create(src, tmp_path / "cache") as cache:
        assert cache.icon_for_url("x' OR '1'='1") is None


def test_undecodable_image_is_treated_as_missing(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [("https://a.example/", 1, 16, b"garbage")])
    with FaviconCache.create(src, tmp_path / "cache") as cache:
        assert cache.icon_for_url("https://a.example/") is None


def test_query_failure_returns_none(tmp_path: Path):
    src = tmp_path / "Favicons"
    with sqlite3.connect(src) as conn:
        conn.execute("CREATE TABLE unrelated (x INTEGER)")
    conn.close()
    with FaviconCache.create(src, tmp_path / "cache") as cache:
        assert cache.icon_for_url("https://a.example/") is None


def test_closed_cache_returns_none(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [("https://a.example/", 1, 16, _png(16))])
    cache = FaviconCache.create(src, tmp_path / "cache")
    cache.close()
    assert cache.icon_for_url("https://a.example/") is None


def test_create_fails_hard_without_source(tmp_path: Path):
    with pytest.raises(FaviconCacheError):
        FaviconCache.create(tmp_path / "missing", tmp_path / "cache")


def test_create_never_opens_a_leftover_mirror(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [("https://a.example/", 1, 16, _png(16))])
    FaviconCache.create(src, tmp_path / "cache").close()
    assert (tmp_path / "cache" / favicons.MIRROR_NAME).exists()
    with pytest.raises(FaviconCacheError):
        FaviconCache.create(tmp_path / "other" / "Favicons", tmp_path / "cache")


def test_create_fails_hard_when_cache_dir_cannot_be_made(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [])
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(FaviconCacheError):
        FaviconCache.create(src, blocker / "cache")


def test_refresh_if_stale_copies_when_mirror_absent(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [])
    _set_mtime(src, 1_700_000_000)
    mirror = tmp_path / "mirror.sqlite"
    assert refresh_if_stale(src, mirror, 1_700_000_500) == 1_700_000_000
    assert mirror.read_bytes() == src.read_bytes()


def test_refresh_if_stale_skips_copy_when_unchanged(tmp_path: Path, monkeypatch):
    src = _mk_favicons_db(tmp_path / "Favicons", [])
    _set_mtime(src, 1_700_000_000)
    mirror = tmp_path / "mirror.sqlite"
    first = refresh_if_stale(src, mirror, None)
    assert first == 1_700_000_000

    def _no_copy(*_args, **_kwargs):
        raise AssertionError("copy attempted for an unchanged source")

    monkeypatch.setattr(favicons.shutil, "copyfile", _no_copy)
    assert refresh_if_stale(src, mirror, first) == first
    # Older sources never trigger a copy either.
    _set_mtime(src, 1_600_000_000)
    assert refresh_if_stale(src, mirror, first) == first


def test_refresh_if_stale_copies_newer_source(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [])
    mirror = tmp_path / "mirror.sqlite"
    _set_mtime(src, 1_700_000_000)
    last = refresh_if_stale(src, mirror, None)
    src.unlink()
    _mk_favicons_db(src, [("https://new.example/", 9, 16, _png(16))])
    _set_mtime(src, 1_700_000_001)
    assert refresh_if_stale(src, mirror, last) == 1_700_000_001
    assert mirror.read_bytes() == src.read_bytes()


def test_copy_failure_keeps_mirror_and_mtime(tmp_path: Path, monkeypatch):
    src = _mk_favicons_db(tmp_path / "Favicons", [])
    mirror = tmp_path / "mirror.sqlite"
    mirror.write_bytes(b"previous mirror")
    _set_mtime(src, 1_700_000_100)

    def _fail(*_args, **_kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(favicons.shutil, "copyfile", _fail)
    assert refresh_if_stale(src, mirror, 1_700_000_000) == 1_700_000_000
    assert mirror.read_bytes() == b"previous mirror"
    assert not (tmp_path / "mirror.sqlite.tmp").exists()


def test_missing_source_keeps_last_known_mtime(tmp_path: Path):
    assert refresh_if_stale(tmp_path / "gone", tmp_path / "mirror", 123) == 123


def test_cache_refresh_reopens_on_new_data(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [])
    _set_mtime(src, 1_700_000_000)
    cache = FaviconCache.create(src, tmp_path / "cache")
    try:
        assert cache.icon_for_url("https://a.example/") is None
        assert cache.refresh(src) is False

        src.unlink()
        _mk_favicons_db(src, [("https://a.example/", 1, 32, _png(32))])
        _set_mtime(src, 1_700_000_010)
        assert cache.refresh(src) is True
        assert cache.last_mtime == 1_700_000_010
        assert cache.icon_for_url("https://a.example/").width == 32
    finally:
        cache.close()


def test_forced_refresh_copies_even_when_current(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [])
    cache = FaviconCache.create(src, tmp_path / "cache")
    try:
        assert cache.refresh(src) is False
        assert cache.refresh(src, force=True) is True
    finally:
        cache.close()


def test_lookups_during_refresh_never_fail(tmp_path: Path):
    src = _mk_favicons_db(tmp_path / "Favicons", [("https://a.example/", 1, 16, _png(16))])
    cache = FaviconCache.create(src, tmp_path / "cache")
    errors = []
    stop = threading.Event()

    def lookups():
        while not stop.is_set():
            try:
                if cache.icon_for_url("https://a.example/") is None:
                    errors.append("missing")
            except Exception as e:  # pragma: no cover - failure path
                errors.append(e)

    t = threading.Thread(target=lookups)
    t.start()
    try:
        for _ in range(10):
            cache.refresh(src, force=True)
    finally:
        stop.set()
        t.join()
        cache.close()
    assert errors == []


def test_favicon_source_sits_next_to_bookmarks(tmp_path: Path):
    assert favicon_source_for(tmp_path / "Default" / "Bookmarks") == tmp_path / "Default" / "Favicons"
