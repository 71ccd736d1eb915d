"""Scratch directories under TMP_DIR."""

from __future__ import annotations

import uuid
from pathlib import Path

from workshopkit.config import env as env_config
from workshopkit.core.logger import setup_logger

logger = setup_logger(__name__)


def get_staging_dir() -> Path:
    """Get the root scratch directory, creating it on demand."""
    tmp_dir = env_config.TMP_DIR
    tmp_dir.mkdir(parents=True, exist_ok=True)
    return tmp_dir


def build_staging_dir(prefix: str) -> Path:
    """Create a fresh, uniquely named scratch directory ``<TMP_DIR>/<prefix>_<uuid>``."""
    base_dir = get_staging_dir()
    while True:
        staging_dir = base_dir / f"{prefix}_{uuid.uuid4().hex}"
        try:
            staging_dir.mkdir(parents=True)
        except FileExistsError:
            continue
        logger.debug(f"Created scratch directory: {staging_dir}")
        return staging_dir


def is_within_tmp_dir(path: Path) -> bool:
    """True if path is inside TMP_DIR."""
    try:
        path.resolve().relative_to(env_config.TMP_DIR.resolve())
        return True
    except (OSError, ValueError):
        return False
