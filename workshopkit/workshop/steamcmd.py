"""SteamCMD discovery and the Workshop command lines it is driven with."""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, List, Optional

from workshopkit.core.errors import OperationFailure
from workshopkit.core.logger import setup_logger
from workshopkit.process.interactive import InteractiveSession
from workshopkit.process.prompts import PromptResolver

logger = setup_logger(__name__)

DEFAULT_INSTALL_DIR_NAME = "WorkshopKitSteamCmd"


def _steamcmd_candidates() -> List[str]:
    if os.name == "nt":
        return ["steamcmd.exe", "steamcmd"]
    return ["steamcmd", "steamcmd.sh"]


def find_steamcmd(override: Optional[Path] = None) -> Optional[Path]:
    """Explicit file, explicit folder, then every PATH entry."""
    if override and str(override).strip():
        full = Path(override).expanduser().resolve()
        if full.is_file():
            return full
        if full.is_dir():
            for name in _steamcmd_candidates():
                nested = full / name
                if nested.is_file():
                    return nested

    for directory in os.environ.get("PATH", "").split(os.pathsep):
        directory = directory.strip()
        if not directory:
            continue
        for name in _steamcmd_candidates():
            found = Path(directory) / name
            if found.is_file():
                return found
    return None


def default_install_dir(override: Optional[Path] = None) -> Path:
    if override and str(override).strip():
        return Path(override).expanduser().resolve()
    return Path(tempfile.gettempdir()) / DEFAULT_INSTALL_DIR_NAME


def download_args(install_dir: Path, username: Optional[str], app_id: int, published_file_id: int) -> List[str]:
    login = username.strip() if username and username.strip() else "anonymous"
    return [
        "+force_install_dir", str(install_dir),
        "+login", login,
        "+workshop_download_item", str(app_id), str(published_file_id),
        "validate",
        "+quit",
    ]


def publish_args(username: str, vdf_path: Path) -> List[str]:
    return [
        "+login", username,
        "+workshop_build_item", str(vdf_path),
        "+quit",
    ]


def run_steamcmd(
    steamcmd: Path,
    args: List[str],
    log_sink: Optional[Callable[[str], None]] = None,
    prompt_resolver: Optional[PromptResolver] = None,
    cancel_flag: Optional[threading.Event] = None,
) -> None:
    """Run SteamCMD from its own folder; any non-zero exit is a failure."""
    working_dir = steamcmd.parent if steamcmd.parent.is_dir() else None
    session = InteractiveSession(
        steamcmd,
        args,
        working_dir=working_dir,
        log_sink=log_sink,
        prompt_resolver=prompt_resolver,
        cancel_flag=cancel_flag,
    )
    exit_code = session.run()
    if exit_code != 0:
        raise OperationFailure(f"SteamCMD failed with exit code {exit_code}.", exit_code=exit_code)
