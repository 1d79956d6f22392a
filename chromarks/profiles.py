from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import LocalStateError
from .log import get_logger

log = get_logger(__name__)

# Browser data directories, relative to the per-user config/data roots.
APP_DIRS = (
    "BraveSoftware",
    "Google/Chrome",  # Google Chrome macOS
    "brave-browser",
    "chromium",
    "google-chrome",
    "vivaldi",
)

LOCAL_STATE = "Local State"
BOOKMARKS_FILE = "Bookmarks"
FAVICONS_FILE = "Favicons"


class ProfileInfo(BaseModel):
    name: str


class ProfileSection(BaseModel):
    info_cache: Dict[str, ProfileInfo] = Field(..., description="Profile directory name -> profile info.")


class LocalState(BaseModel):
    profile: ProfileSection


@dataclass(frozen=True)
class Profile:
    browser: str
    directory: str
    name: str
    path: Path

    @property
    def bookmarks_path(self) -> Path:
        return self.path / BOOKMARKS_FILE

    @property
    def favicons_path(self) -> Path:
        return self.path / FAVICONS_FILE

    @property
    def label(self) -> str:
        return f"{self.browser} - {self.name}"


def read_local_state(path: Path) -> Dict[str, str]:
    """Map profile directory names to display names.

    Raises LocalStateError with a message naming what exactly is wrong.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise LocalStateError(f"Local State file not found: {path}") from None
    except OSError as e:
        raise LocalStateError(f"Local State file is not readable: {path} ({e})") from e
    try:
        data = json.loads(text)
    except ValueError as e:
        raise LocalStateError(f"Local State file is not valid JSON: {path} ({e})") from e
    try:
        state = LocalState.model_validate(data)
    except ValidationError as e:
        missing = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise LocalStateError(f"Local State file lacks valid profile.info_cache entries: {path} ({missing})") from e
    return {directory: info.name for directory, info in state.profile.info_cache.items()}


def default_base_dirs() -> List[Path]:
    home = Path.home()
    dirs = [
        Path(os.getenv("XDG_CONFIG_HOME") or home / ".config"),
        Path(os.getenv("XDG_DATA_HOME") or home / ".local" / "share"),
        home / "Library" / "Application Support",
    ]
    out: List[Path] = []
    for d in dirs:
        if d not in out:
            out.append(d)
    return out


def discover_profiles(base_dirs: Optional[Iterable[Path]] = None) -> List[Profile]:
    """Find browser profiles through their `Local State` files.

    `Local State` sits either directly in an app dir (chromium) or one level
    below it (BraveSoftware/Brave-Browser).
    """
    bases = list(base_dirs) if base_dirs is not None else default_base_dirs()
    out: List[Profile] = []
    seen = set()
    for base in bases:
        for app_dir in APP_DIRS:
            root = Path(base) / app_dir
            if not root.is_dir():
                continue
            for local_state in _local_state_files(root):
                user_data = local_state.parent
                try:
                    profiles = read_local_state(local_state)
                except LocalStateError as e:
                    log.warning("%s", e)
                    continue
                browser = user_data.relative_to(base).as_posix()
                for directory, name in sorted(profiles.items()):
                    p = Profile(browser=browser, directory=directory, name=name, path=user_data / directory)
                    key = p.path.resolve()
                    if key in seen:
                        continue
                    seen.add(key)
                    out.append(p)
    log.debug("Discovered %d browser profiles", len(out))
    return out


def _local_state_files(root: Path) -> List[Path]:
    found = []
    direct = root / LOCAL_STATE
    if direct.is_file():
        found.append(direct)
    for child in sorted(root.iterdir()):
        candidate = child / LOCAL_STATE
        if child.is_dir() and candidate.is_file():
            found.append(candidate)
    return found


def default_bookmarks_path(profiles: Optional[List[Profile]] = None) -> Optional[Path]:
    """Bookmarks file of the first profile that has one."""
    profiles = discover_profiles() if profiles is None else profiles
    for p in profiles:
        if p.bookmarks_path.is_file():
            return p.bookmarks_path
    return None
