"""Bootstrap configuration read from the environment at import time.

These values are needed before the settings registry is available (log
location, scratch directory, debug switches). Everything else lives in
``workshopkit.config.settings`` and is read through ``core.config.config``.
"""

import os
import tempfile
from pathlib import Path


def string_to_bool(s: str) -> bool:
    return s.strip().lower() in ["true", "yes", "1", "y", "on"]


def _default_config_dir() -> Path:
    if os.name == "nt":
        base = os.environ.get("APPDATA") or str(Path.home())
        return Path(base) / "workshopkit"
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "workshopkit"


CONFIG_DIR = Path(os.getenv("CONFIG_DIR", str(_default_config_dir())))
LOG_DIR = Path(os.getenv("LOG_DIR", str(CONFIG_DIR / "logs")))
TMP_DIR = Path(os.getenv("TMP_DIR", str(Path(tempfile.gettempdir()) / "workshopkit")))

DEBUG = string_to_bool(os.getenv("DEBUG", "false"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()
ENABLE_LOGGING = string_to_bool(os.getenv("ENABLE_LOGGING", "false"))
