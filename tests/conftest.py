import sys
from pathlib import Path

import pytest

# Allow `import chromarks` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolated_user_dirs(tmp_path, monkeypatch):
    """Tests must never discover the real browser profiles or write the real cache."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(home / ".local" / "share"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(home / ".cache"))
    for name in (
        "CHROMARKS_BOOKMARKS_PATH",
        "CHROMARKS_INDEX_HOSTNAME",
        "CHROMARKS_FAVICONS",
        "CHROMARKS_CACHE_DIR",
        "CHROMARKS_LOG_LEVEL",
        "CHROMARKS_NO_COLOR",
    ):
        monkeypatch.delenv(name, raising=False)
