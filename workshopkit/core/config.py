"""Resolved application configuration.

``config`` is the process-wide view over the settings registry: environment
variables win over ``settings.json``, which wins over registered defaults.
Values are cached until ``refresh()`` is called.
"""

from threading import Lock
from typing import Any, Dict, Optional

from workshopkit.core.logger import setup_logger
from workshopkit.core.settings_registry import (
    get_all_settings_tabs,
    get_setting_value,
    load_config_file,
)

logger = setup_logger(__name__)


class Config:
    def __init__(self) -> None:
        self._lock = Lock()
        self._values: Optional[Dict[str, Any]] = None

    def _ensure_settings_registered(self) -> None:
        # Importing the module runs the register_settings decorators.
        import workshopkit.config.settings  # noqa: F401

    def _load(self) -> Dict[str, Any]:
        self._ensure_settings_registered()
        file_values = load_config_file()
        values: Dict[str, Any] = {}
        for tab in get_all_settings_tabs():
            for field in tab.fields:
                values[field.key] = get_setting_value(field, file_values)
        # Keys present only in the file are still honoured.
        for key, value in file_values.items():
            values.setdefault(key, value)
        return values

    def _snapshot(self) -> Dict[str, Any]:
        with self._lock:
            if self._values is None:
                self._values = self._load()
            return self._values

    def refresh(self) -> None:
        """Drop cached values so the next lookup re-reads env and config file."""
        with self._lock:
            self._values = None
        logger.debug("Configuration cache cleared")

    def get(self, key: str, default: Any = None) -> Any:
        value = self._snapshot().get(key)
        if value is None or value == "":
            return default
        return value

    def __getattr__(self, key: str) -> Any:
        if key.startswith("_"):
            raise AttributeError(key)
        values = self._snapshot()
        if key not in values:
            raise AttributeError(f"Unknown setting: {key}")
        return values[key]


config = Config()
