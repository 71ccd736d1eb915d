"""Locate Workshop content that Steam already downloaded into its libraries."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path
from typing import List, Optional

from workshopkit.core.logger import setup_logger
from workshopkit.core.models import CacheHit

logger = setup_logger(__name__)

# Matches both `"path" "D:\\Lib"` and the legacy `"1" "D:\\Lib"` library entries.
_LIBRARY_ENTRY = re.compile(r'^\s*"(path|\d+)"\s+"((?:[^"\\]|\\.)*)"\s*$', re.MULTILINE)


def _unescape_vdf(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


def default_steam_roots() -> List[Path]:
    home = Path.home()
    if os.name == "nt":
        roots = []
        for env_name in ("PROGRAMFILES(X86)", "PROGRAMFILES"):
            base = os.environ.get(env_name)
            if base:
                roots.append(Path(base) / "Steam")
        return roots
    if sys.platform == "darwin":
        return [home / "Library" / "Application Support" / "Steam"]
    return [
        home / ".steam" / "steam",
        home / ".local" / "share" / "Steam",
        home / ".var" / "app" / "com.valvesoftware.Steam" / ".local" / "share" / "Steam",
    ]


def find_steam_root(explicit: Optional[Path] = None) -> Optional[Path]:
    """Steam root from the caller, then the STEAM_ROOT setting, then well-known locations."""
    if explicit:
        return Path(explicit)

    from workshopkit.core.config import config

    configured = config.get("STEAM_ROOT")
    if configured:
        return Path(configured)

    for candidate in default_steam_roots():
        if (candidate / "steamapps").is_dir():
            return candidate
    return None


def get_library_roots(steam_root: Path) -> List[Path]:
    """The Steam root followed by every extra library listed in libraryfolders.vdf."""
    root = Path(steam_root).expanduser().resolve()
    roots = [root]

    library_file = root / "steamapps" / "libraryfolders.vdf"
    if not library_file.is_file():
        return roots

    try:
        text = library_file.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Could not read {library_file}: {e}")
        return roots

    for _, raw_path in _LIBRARY_ENTRY.findall(text):
        value = _unescape_vdf(raw_path).strip()
        if not value:
            continue
        candidate = Path(value)
        if not candidate.is_dir():
            continue
        resolved = candidate.resolve()
        if resolved not in roots:
            roots.append(resolved)
    return roots


def _content_root(library_root: Path) -> Path:
    return library_root / "steamapps" / "workshop" / "content"


class WorkshopCacheLocator:
    """Read-only lookups of ``steamapps/workshop/content/<app>/<id>`` across libraries."""

    def __init__(self, steam_root: Optional[Path]):
        self.steam_root = steam_root

    def library_roots(self) -> List[Path]:
        if not self.steam_root:
            return []
        return get_library_roots(self.steam_root)

    def find(self, app_id: int, published_file_id: int) -> Optional[CacheHit]:
        if not app_id:
            return None
        for library_root in self.library_roots():
            candidate = _content_root(library_root) / str(app_id) / str(published_file_id)
            if candidate.is_dir():
                logger.debug(f"Cache hit for {published_file_id} in {candidate}")
                return CacheHit(app_id=app_id, content_dir=candidate)
        return None

    def find_any_app(self, published_file_id: int) -> Optional[CacheHit]:
        for library_root in self.library_roots():
            content_root = _content_root(library_root)
            if not content_root.is_dir():
                continue
            try:
                app_dirs = sorted(p for p in content_root.iterdir() if p.is_dir())
            except OSError as e:
                logger.debug(f"Could not list {content_root}: {e}")
                continue
            for app_dir in app_dirs:
                if not app_dir.name.isdecimal() or int(app_dir.name) == 0:
                    continue
                candidate = app_dir / str(published_file_id)
                if candidate.is_dir():
                    logger.debug(f"Cache hit for {published_file_id} under app {app_dir.name}")
                    return CacheHit(app_id=int(app_dir.name), content_dir=candidate)
        return None


def find_in_install_dir(install_dir: Path, app_id: int, published_file_id: int) -> Optional[Path]:
    """Where SteamCMD puts content for ``+force_install_dir``."""
    candidate = _content_root(Path(install_dir)) / str(app_id) / str(published_file_id)
    return candidate if candidate.is_dir() else None
