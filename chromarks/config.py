from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


def default_cache_dir() -> str:
    base = os.getenv("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return str(Path(base) / "chromarks")


@dataclass
class Settings:
    # Bookmark source; empty means "first discovered browser profile".
    bookmarks_path: str = ""
    index_hostname: bool = False

    # Favicons
    favicons_enabled: bool = False
    cache_dir: str = field(default_factory=default_cache_dir)

    # Logging / UX
    log_level: str = "INFO"
    no_color: bool = False

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.bookmarks_path = _env_str("CHROMARKS_BOOKMARKS_PATH", s.bookmarks_path)
        s.index_hostname = _env_bool("CHROMARKS_INDEX_HOSTNAME", s.index_hostname)
        s.favicons_enabled = _env_bool("CHROMARKS_FAVICONS", s.favicons_enabled)
        s.cache_dir = _env_str("CHROMARKS_CACHE_DIR", s.cache_dir)
        s.log_level = _env_str("CHROMARKS_LOG_LEVEL", s.log_level)
        s.no_color = _env_bool("CHROMARKS_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        s = Settings.from_env()
        for k, v in data.items():
            if hasattr(s, k):
                setattr(s, k, v)
        return s

    def save(self, path: Path) -> None:
        """Persist the settings as YAML (used as the settings store by the CLI)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        data = asdict(self)
        path.write_text(yaml.safe_dump(data, sort_keys=True), encoding="utf-8")


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path and Path(config_path).exists():
        return Settings.from_file(Path(config_path))
    return Settings.from_env()
