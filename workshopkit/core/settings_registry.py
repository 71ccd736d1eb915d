"""Settings registry with config file persistence."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from workshopkit.core.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class FieldBase:
    """Base class for all settings fields."""
    key: str                              # Environment variable / config key
    label: str                            # Display label
    description: str = ""                 # Help text
    default: Any = None                   # Default value if not set
    env_var: Optional[str] = None         # Override env var name (defaults to key)
    env_supported: bool = True            # Whether this setting can be set via ENV var

    def get_env_var_name(self) -> str:
        """Get the environment variable name for this field."""
        return self.env_var or self.key

    def get_field_type(self) -> str:
        return self.__class__.__name__


@dataclass
class TextField(FieldBase):
    """Single-line text value."""
    placeholder: str = ""


@dataclass
class NumberField(FieldBase):
    """Numeric value."""
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    default: float = 0


@dataclass
class CheckboxField(FieldBase):
    """Boolean flag."""
    default: bool = False


@dataclass
class SelectField(FieldBase):
    """Single choice from a fixed list."""
    options: List[Dict[str, str]] = field(default_factory=list)  # [{value: "", label: ""}]


SettingsField = Union[TextField, NumberField, CheckboxField, SelectField]


@dataclass
class SettingsTab:
    """A named section of settings."""
    name: str
    display_name: str
    fields: List[SettingsField] = field(default_factory=list)
    order: int = 100


_SETTINGS_REGISTRY: Dict[str, SettingsTab] = {}
_REGISTRY_LOCK = Lock()


def register_settings(name: str, display_name: str, order: int = 100):
    def decorator(func: Callable[[], List[SettingsField]]):
        with _REGISTRY_LOCK:
            fields = func()
            _SETTINGS_REGISTRY[name] = SettingsTab(
                name=name,
                display_name=display_name,
                fields=fields,
                order=order,
            )
            logger.debug(f"Registered settings tab: {name} ({len(fields)} fields)")
        return func
    return decorator


def get_settings_tab(name: str) -> Optional[SettingsTab]:
    """Get a specific settings tab by name."""
    return _SETTINGS_REGISTRY.get(name)


def get_all_settings_tabs() -> List[SettingsTab]:
    """Get all registered settings tabs, sorted by order."""
    return sorted(_SETTINGS_REGISTRY.values(), key=lambda t: (t.order, t.name))


def _get_config_file_path() -> Path:
    from workshopkit.config.env import CONFIG_DIR
    return Path(CONFIG_DIR) / "settings.json"


def load_config_file() -> Dict[str, Any]:
    config_path = _get_config_file_path()

    if not config_path.exists():
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in config file {config_path}: {e}")
        return {}
    except OSError as e:
        logger.warning(f"Could not read config file {config_path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.error(f"Config file {config_path} must contain a JSON object")
        return {}
    return data


def save_config_file(values: Dict[str, Any]) -> bool:
    config_path = _get_config_file_path()
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        existing = load_config_file()
        existing.update(values)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(existing, f, indent=2)
    except OSError as e:
        logger.error(f"Error saving config file {config_path}: {e}")
        return False

    logger.info(f"Saved settings to {config_path}")
    return True


def get_setting_value(field: SettingsField, file_values: Optional[Dict[str, Any]] = None) -> Any:
    # 1. Environment variable
    if field.env_supported:
        env_value = os.environ.get(field.get_env_var_name())
        if env_value is not None:
            return _parse_env_value(env_value, field)

    # 2. Config file
    values = load_config_file() if file_values is None else file_values
    if field.key in values:
        return values[field.key]

    # 3. Default
    return field.default


def parse_field_value(field: SettingsField, value: str) -> Any:
    """Convert text from the environment or the command line to the field's type.

    Raises ValueError when the text is not a valid value for the field.
    """
    if isinstance(field, CheckboxField):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off", ""):
            return False
        raise ValueError(f"expected true or false, got {value!r}")
    elif isinstance(field, NumberField):
        try:
            number = float(value) if "." in value else int(value)
        except ValueError:
            raise ValueError(f"expected a number, got {value!r}") from None
        if field.min_value is not None and number < field.min_value:
            raise ValueError(f"must be at least {field.min_value:g}")
        if field.max_value is not None and number > field.max_value:
            raise ValueError(f"must be at most {field.max_value:g}")
        return number
    elif isinstance(field, SelectField):
        allowed = [option["value"] for option in field.options]
        if allowed and value not in allowed:
            raise ValueError(f"expected one of {', '.join(allowed)}, got {value!r}")
        return value
    else:
        return value


def _parse_env_value(value: str, field: SettingsField) -> Any:
    """Parse an environment variable value to the appropriate type."""
    try:
        return parse_field_value(field, value)
    except ValueError as e:
        logger.warning(f"Invalid value for {field.key}: {e}, using default")
        return field.default


def is_value_from_env(field: SettingsField) -> bool:
    """Check if a field's value comes from an environment variable."""
    if not field.env_supported:
        return False
    return field.get_env_var_name() in os.environ


def find_field(key: str) -> Optional[Tuple[SettingsTab, SettingsField]]:
    """Return the tab and field registered under ``key``, if any."""
    for tab in get_all_settings_tabs():
        for field in tab.fields:
            if field.key == key:
                return tab, field
    return None


def update_settings(tab_name: str, values: Dict[str, Any]) -> Dict[str, Any]:
    tab = get_settings_tab(tab_name)
    if not tab:
        return {"success": False, "message": f"Unknown settings tab: {tab_name}", "updated": []}

    field_map = {f.key: f for f in tab.fields}

    # Values set via env vars would be shadowed, so they are not written.
    values_to_save = {}
    skipped_env = []
    skipped_unknown = []

    for key, value in values.items():
        if key not in field_map:
            skipped_unknown.append(key)
            continue
        if is_value_from_env(field_map[key]):
            skipped_env.append(key)
            continue
        values_to_save[key] = value

    if not values_to_save:
        message = "No settings to update"
        if skipped_env:
            message += f". Skipped (set via env): {', '.join(skipped_env)}"
        if skipped_unknown:
            message += f". Unknown in {tab_name}: {', '.join(skipped_unknown)}"
        return {"success": not skipped_unknown, "message": message, "updated": []}

    if not save_config_file(values_to_save):
        return {"success": False, "message": "Could not write the settings file", "updated": []}

    from workshopkit.core.config import config
    config.refresh()

    return {"success": True, "message": "Settings updated", "updated": sorted(values_to_save)}
