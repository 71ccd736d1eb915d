"""Data structures shared by the download and publish pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

GARRYS_MOD_APP_ID = 4000


class PromptKind(str, Enum):
    CREDENTIAL = "credential"
    ONE_TIME_CODE = "one_time_code"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Prompt:
    """A solicitation detected in an interactive tool's output."""
    kind: PromptKind
    message: str


@dataclass(frozen=True)
class HelperEvent:
    """One parsed stdout line of the SteamPipe helper."""
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


class PayloadKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class SourceKind(str, Enum):
    CACHE = "cache"
    WEB = "web"
    STEAMPIPE = "steampipe"
    STEAMCMD = "steamcmd"


@dataclass(frozen=True)
class CacheHit:
    """Previously fetched content found in a Steam library."""
    app_id: int
    content_dir: Path


@dataclass(frozen=True)
class Payload:
    """Classified download payload: one file, or a whole directory."""
    kind: PayloadKind
    path: Path

    @property
    def extension(self) -> str:
        return self.path.suffix if self.kind == PayloadKind.FILE else ""


@dataclass(frozen=True)
class WorkshopItemDetails:
    published_file_id: int
    title: Optional[str] = None
    updated_at: Optional[datetime] = None
    consumer_app_id: Optional[int] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None


@dataclass(frozen=True)
class NamingOptions:
    include_title: bool = False
    include_id: bool = True
    append_updated_timestamp: bool = False
    replace_spaces_with_underscores: bool = True


@dataclass
class DownloadRequest:
    """Everything needed to acquire one Workshop item into ``output_dir``."""
    published_file_id: int
    output_dir: Path
    app_id: int = 0
    steam_root: Optional[Path] = None
    naming: NamingOptions = field(default_factory=NamingOptions)
    fetch_details: bool = False
    convert: bool = True
    overwrite: bool = False
    use_steampipe: bool = False
    steampipe_best_effort: bool = False
    use_steamcmd: bool = False
    steamcmd_path: Optional[Path] = None
    steamcmd_install_dir: Optional[Path] = None
    steamcmd_username: Optional[str] = None


@dataclass(frozen=True)
class TransferResult:
    published_file_id: int
    app_id: int
    source: SourceKind
    source_locator: str
    output_path: Path
    output_kind: PayloadKind
    details: Optional[WorkshopItemDetails] = None


class Visibility(Enum):
    """Workshop visibility. Values are the numbers used in workshop_build_item VDF files."""
    PUBLIC = 0
    FRIENDS_ONLY = 1
    PRIVATE = 2
    UNLISTED = 3

    @property
    def cli_value(self) -> str:
        return {
            Visibility.PUBLIC: "public",
            Visibility.FRIENDS_ONLY: "friends",
            Visibility.PRIVATE: "private",
            Visibility.UNLISTED: "unlisted",
        }[self]

    @classmethod
    def parse(cls, value: str) -> "Visibility":
        normalized = (value or "").strip().lower().replace("_", "").replace("-", "")
        aliases = {
            "public": cls.PUBLIC,
            "friends": cls.FRIENDS_ONLY,
            "friendsonly": cls.FRIENDS_ONLY,
            "private": cls.PRIVATE,
            "unlisted": cls.UNLISTED,
        }
        if normalized not in aliases:
            raise ValueError(f"Unknown visibility: {value!r}")
        return aliases[normalized]


@dataclass
class PublishRequest:
    app_id: int
    content_path: Path
    preview_path: Path
    title: str
    description: str
    change_note: str
    published_file_id: int = 0
    visibility: Visibility = Visibility.PRIVATE
    tags: List[str] = field(default_factory=list)
    content_type: Optional[str] = None
    content_tags: List[str] = field(default_factory=list)
    stage_clean: bool = False
    pack_vpk: bool = False
    vpk_multi_file: bool = False
    use_steampipe: bool = False
    steamcmd_path: Optional[Path] = None
    steamcmd_username: Optional[str] = None
    vdf_path: Optional[Path] = None


@dataclass(frozen=True)
class PublishResult:
    app_id: int
    published_file_id: int
    vdf_path: Optional[Path] = None


@dataclass
class StagedPayload:
    """A prepared content folder and every scratch root created to build it."""
    payload_root: Path
    temp_roots: List[Path] = field(default_factory=list)


@dataclass(frozen=True)
class HelperDownloadResult:
    app_id: int
    published_file_id: int
    install_folder: str


@dataclass(frozen=True)
class HelperPublishResult:
    app_id: int
    published_file_id: int


@dataclass(frozen=True)
class HelperDeleteResult:
    app_id: int
    published_file_id: int


@dataclass(frozen=True)
class PublishedItem:
    published_file_id: int
    title: str = ""
    description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    visibility: Optional[Visibility] = None
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class HelperListResult:
    app_id: int
    page: int
    returned: int
    total_matching: int
    items: List[PublishedItem] = field(default_factory=list)


@dataclass(frozen=True)
class HelperQuotaResult:
    app_id: int
    total_bytes: int
    available_bytes: int
    used_bytes: int
