"""Workshop settings registration."""

from workshopkit.config import env
from workshopkit.core.logger import setup_logger
from workshopkit.core.settings_registry import (
    CheckboxField,
    NumberField,
    SelectField,
    TextField,
    register_settings,
)

logger = setup_logger(__name__)

logger.debug("Bootstrap configuration:")
for key in ["CONFIG_DIR", "LOG_DIR", "TMP_DIR", "DEBUG", "LOG_LEVEL", "ENABLE_LOGGING"]:
    logger.debug(f"  {key}: {getattr(env, key)}")


_VISIBILITY_OPTIONS = [
    {"value": "public", "label": "Public"},
    {"value": "friends", "label": "Friends only"},
    {"value": "unlisted", "label": "Unlisted"},
    {"value": "private", "label": "Private"},
]


@register_settings("steam", "Steam", order=10)
def steam_settings():
    return [
        TextField(
            key="STEAM_ROOT",
            label="Steam Install Folder",
            description="Steam installation used to find cached Workshop content. Detected automatically when empty.",
            placeholder="/home/user/.steam/steam",
        ),
        TextField(
            key="STEAMCMD_PATH",
            label="SteamCMD Path",
            description="steamcmd executable, or a folder containing it. Searched on PATH when empty.",
        ),
        TextField(
            key="STEAMCMD_USERNAME",
            label="SteamCMD Username",
            description="Account used for SteamCMD logins. Anonymous login is used for downloads when empty.",
        ),
        TextField(
            key="STEAMCMD_INSTALL_DIR",
            label="SteamCMD Install Folder",
            description="Scratch folder passed to +force_install_dir. Defaults to a folder under the system temp directory.",
        ),
        TextField(
            key="STEAMPIPE_PATH",
            label="SteamPipe Helper Path",
            description="SteamPipe helper executable, or a folder containing it. Defaults to the folder next to this program.",
        ),
        NumberField(
            key="PROMPT_TIMEOUT",
            label="Prompt Timeout",
            description="Seconds to wait for a password or Steam Guard code before giving up. 0 waits indefinitely.",
            default=0,
            min_value=0,
        ),
    ]


@register_settings("workshop", "Workshop", order=20)
def workshop_settings():
    return [
        CheckboxField(
            key="FETCH_DETAILS",
            label="Fetch Item Details",
            description="Look up item metadata (title, owning app, direct file URL) from the Steam Web API.",
            default=True,
        ),
        CheckboxField(
            key="USE_STEAMPIPE_WHEN_NOT_CACHED",
            label="Download Through SteamPipe",
            description="Use the SteamPipe helper when the item is not in the local Workshop cache.",
            default=False,
        ),
        CheckboxField(
            key="STEAMPIPE_BEST_EFFORT",
            label="SteamPipe Best Effort",
            description="Treat SteamPipe failures as a miss and continue with SteamCMD.",
            default=False,
        ),
        CheckboxField(
            key="USE_STEAMCMD_WHEN_NOT_CACHED",
            label="Download Through SteamCMD",
            description="Use SteamCMD when the item is not in the local Workshop cache.",
            default=False,
        ),
        CheckboxField(
            key="CONVERT_DOWNLOADS",
            label="Convert Downloads",
            description="Extract .zip payloads and decompress LZMA-packed Garry's Mod addons to .gma.",
            default=True,
        ),
        CheckboxField(
            key="OVERWRITE_EXISTING",
            label="Overwrite Existing Output",
            default=False,
        ),
        SelectField(
            key="DEFAULT_VISIBILITY",
            label="Default Visibility",
            description="Visibility used for publishes that do not specify one.",
            options=_VISIBILITY_OPTIONS,
            default="private",
        ),
        TextField(
            key="GMAD_PATH",
            label="gmad Path",
            description="Garry's Mod addon packer used to build .gma payloads.",
            default="gmad",
        ),
        TextField(
            key="VPK_TOOL_PATH",
            label="vpk Path",
            description="Source engine vpk tool used to build .vpk payloads.",
            default="vpk",
        ),
    ]


@register_settings("network", "Network", order=30)
def network_settings():
    return [
        NumberField(
            key="DOWNLOAD_TIMEOUT",
            label="Download Read Timeout",
            description="Seconds to wait for data from the server before retrying.",
            default=30,
            min_value=1,
        ),
        NumberField(
            key="MAX_DOWNLOAD_RETRIES",
            label="Download Attempts",
            default=3,
            min_value=1,
            max_value=10,
        ),
    ]
