"""SteamPipe helper: locating it and running its subcommands."""

from __future__ import annotations

import os
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from workshopkit.core.errors import InvalidWorkshopInput, LaunchFailure, ProtocolViolation
from workshopkit.core.logger import setup_logger
from workshopkit.core.models import (
    HelperDeleteResult,
    HelperDownloadResult,
    HelperEvent,
    HelperListResult,
    HelperPublishResult,
    HelperQuotaResult,
    PublishedItem,
    Visibility,
)
from workshopkit.process.helper import invoke_helper, read_int, read_str

logger = setup_logger(__name__)

HELPER_NAME = "WorkshopKit.SteamPipe"

ProgressCallback = Callable[[float], None]
StatusCallback = Callable[[str, Optional[str]], None]


def _helper_candidates() -> List[str]:
    if os.name == "nt":
        return [f"{HELPER_NAME}.exe", f"{HELPER_NAME}.dll", HELPER_NAME]
    return [HELPER_NAME, f"{HELPER_NAME}.dll", f"{HELPER_NAME}.exe"]


def find_helper(path_or_dir: Optional[Path]) -> Optional[Path]:
    """Resolve an explicit helper file, or search a directory for the known file names."""
    if not path_or_dir or not str(path_or_dir).strip():
        return None
    full = Path(path_or_dir).expanduser().resolve()
    if full.is_file():
        return full
    if not full.is_dir():
        return None
    for name in _helper_candidates():
        candidate = full / name
        if candidate.is_file():
            return candidate
    return None


def _program_dir() -> Path:
    return Path(sys.argv[0] or ".").resolve().parent


class SteamPipeLocator:
    """Resolves the helper command once and reuses it for the owner's lifetime."""

    def __init__(self, override: Optional[Path] = None, search_dirs: Optional[Sequence[Path]] = None):
        self.override = override
        self.search_dirs = list(search_dirs) if search_dirs is not None else [_program_dir()]
        self._lock = threading.Lock()
        self._resolved: Optional[Path] = None

    @classmethod
    def from_config(cls, override: Optional[Path] = None) -> "SteamPipeLocator":
        from workshopkit.core.config import config

        configured = config.get("STEAMPIPE_PATH")
        return cls(override=override or (Path(configured) if configured else None))

    def resolve(self) -> Path:
        with self._lock:
            if self._resolved is not None:
                return self._resolved

            candidate = find_helper(self.override)
            if candidate is None:
                for directory in self.search_dirs:
                    candidate = find_helper(directory)
                    if candidate is not None:
                        break
            if candidate is None:
                raise LaunchFailure(
                    f"SteamPipe helper not found. Place {HELPER_NAME} next to this program "
                    "or pass an explicit path."
                )
            self._resolved = candidate
            return candidate

    def command(self) -> List[str]:
        helper = self.resolve()
        if helper.suffix.lower() == ".dll":
            return ["dotnet", str(helper)]
        return [str(helper)]

    def clear(self) -> None:
        with self._lock:
            self._resolved = None


def _from_unix(seconds: Optional[int]) -> Optional[datetime]:
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def parse_visibility(value: Optional[str]) -> Optional[Visibility]:
    """Map a helper visibility string to the enum by substring, as the helper reports display names."""
    if not value or not value.strip():
        return None
    lowered = value.strip().lower()
    if "public" in lowered:
        return Visibility.PUBLIC
    if "friends" in lowered:
        return Visibility.FRIENDS_ONLY
    if "unlisted" in lowered:
        return Visibility.UNLISTED
    if "private" in lowered:
        return Visibility.PRIVATE
    return None


def _percent(done: int, total: int) -> Optional[float]:
    if total <= 0:
        return None
    return min(100.0, done * 100.0 / total)


class SteamPipeClient:
    """Typed wrappers around the helper's download/publish/delete/list/quota subcommands."""

    def __init__(
        self,
        locator: SteamPipeLocator,
        log_sink: Optional[Callable[[str], None]] = None,
    ):
        self.locator = locator
        self.log_sink = log_sink

    def _invoke(
        self,
        args: List[str],
        expected_result_type: str,
        parse_result: Callable[[Dict[str, Any]], Any],
        on_event: Optional[Callable[[HelperEvent], None]] = None,
        cancel_flag: Optional[threading.Event] = None,
    ):
        command = self.locator.command()
        resolved = command[1] if command[0] == "dotnet" else command[0]
        if self.log_sink:
            self.log_sink(f"SteamPipe: using {resolved}")
        return invoke_helper(
            command,
            args,
            expected_result_type,
            parse_result,
            on_event=on_event,
            log_sink=self.log_sink,
            cancel_flag=cancel_flag,
        )

    def download(
        self,
        app_id: int,
        published_file_id: int,
        progress_callback: Optional[ProgressCallback] = None,
        status_callback: Optional[StatusCallback] = None,
        cancel_flag: Optional[threading.Event] = None,
    ) -> HelperDownloadResult:
        args = ["download", "--appid", str(app_id), "--published-id", str(published_file_id)]

        def parse(payload: Dict[str, Any]) -> HelperDownloadResult:
            install_folder = read_str(payload, "installFolder")
            if not install_folder or not install_folder.strip():
                raise ProtocolViolation("SteamPipe returned an empty install folder.")
            return HelperDownloadResult(
                app_id=read_int(payload, "appId") or app_id,
                published_file_id=read_int(payload, "publishedFileId") or published_file_id,
                install_folder=install_folder,
            )

        def on_event(event: HelperEvent) -> None:
            if event.type != "download_progress":
                return
            done = read_int(event.payload, "bytesDownloaded") or 0
            total = read_int(event.payload, "bytesTotal") or 0
            percent = _percent(done, total)
            if progress_callback and percent is not None:
                progress_callback(percent)
            if status_callback:
                status_callback("downloading", "Downloading via Steamworks...")

        return self._invoke(args, "download_result", parse, on_event, cancel_flag)

    def publish(
        self,
        app_id: int,
        content_folder: Path,
        preview_file: Path,
        title: str,
        description: str,
        change_note: str,
        visibility: Visibility,
        published_file_id: int = 0,
        tags: Optional[Sequence[str]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        status_callback: Optional[StatusCallback] = None,
        cancel_flag: Optional[threading.Event] = None,
    ) -> HelperPublishResult:
        args = [
            "publish",
            "--appid", str(app_id),
            "--content", str(Path(content_folder).resolve()),
            "--preview", str(Path(preview_file).resolve()),
            "--title", title,
            "--description", description,
            "--change-note", change_note,
            "--visibility", visibility.cli_value,
        ]
        if published_file_id:
            args += ["--published-id", str(published_file_id)]
        if tags:
            args += ["--tags", ",".join(tags)]

        def parse(payload: Dict[str, Any]) -> HelperPublishResult:
            result_id = read_int(payload, "publishedFileId")
            if result_id is None:
                result_id = published_file_id
            if result_id == 0:
                raise ProtocolViolation("SteamPipe returned PublishedFileId=0.")
            return HelperPublishResult(app_id=read_int(payload, "appId") or app_id, published_file_id=result_id)

        def on_event(event: HelperEvent) -> None:
            if event.type != "publish_progress":
                return
            done = read_int(event.payload, "bytesProcessed") or 0
            total = read_int(event.payload, "bytesTotal") or 0
            status = read_str(event.payload, "status")
            percent = _percent(done, total)
            if progress_callback and percent is not None:
                progress_callback(percent)
            if status_callback:
                message = "Uploading via Steamworks..."
                if status and status.strip():
                    message = f"Uploading via Steamworks... ({status})"
                status_callback("uploading", message)

        return self._invoke(args, "publish_result", parse, on_event, cancel_flag)

    def delete(
        self,
        app_id: int,
        published_file_id: int,
        cancel_flag: Optional[threading.Event] = None,
    ) -> HelperDeleteResult:
        args = ["delete", "--appid", str(app_id), "--published-id", str(published_file_id)]
        return self._invoke(
            args,
            "delete_result",
            lambda payload: HelperDeleteResult(app_id=app_id, published_file_id=published_file_id),
            cancel_flag=cancel_flag,
        )

    def list_published(
        self,
        app_id: int,
        page: int = 1,
        cancel_flag: Optional[threading.Event] = None,
    ) -> HelperListResult:
        if page < 1:
            raise InvalidWorkshopInput("Page must be >= 1.")
        args = ["list", "--appid", str(app_id), "--page", str(page)]
        return self._invoke(args, "list_result", lambda p: _parse_list(p, app_id, page), cancel_flag=cancel_flag)

    def quota(self, app_id: int, cancel_flag: Optional[threading.Event] = None) -> HelperQuotaResult:
        args = ["quota", "--appid", str(app_id)]

        def parse(payload: Dict[str, Any]) -> HelperQuotaResult:
            total = read_int(payload, "totalBytes") or 0
            available = read_int(payload, "availableBytes") or 0
            used = read_int(payload, "usedBytes")
            if used is None:
                used = max(0, total - available)
            return HelperQuotaResult(
                app_id=read_int(payload, "appId") or app_id,
                total_bytes=total,
                available_bytes=available,
                used_bytes=used,
            )

        return self._invoke(args, "quota_result", parse, cancel_flag=cancel_flag)


def _parse_list(payload: Dict[str, Any], app_id: int, page: int) -> HelperListResult:
    items: List[PublishedItem] = []
    raw_items = payload.get("items")
    if isinstance(raw_items, list):
        for element in raw_items:
            if not isinstance(element, dict):
                continue
            item_id = read_int(element, "publishedFileId") or 0
            if item_id == 0:
                continue
            raw_tags = element.get("tags")
            tags = []
            if isinstance(raw_tags, list):
                tags = [t.strip() for t in raw_tags if isinstance(t, str) and t.strip()]
            items.append(
                PublishedItem(
                    published_file_id=item_id,
                    title=read_str(element, "title") or "",
                    description=read_str(element, "description") or "",
                    created_at=_from_unix(read_int(element, "createdAt")),
                    updated_at=_from_unix(read_int(element, "updatedAt")),
                    visibility=parse_visibility(read_str(element, "visibility")),
                    tags=tags,
                )
            )

    return HelperListResult(
        app_id=read_int(payload, "appId") or app_id,
        page=read_int(payload, "page") or page,
        returned=read_int(payload, "returned") or 0,
        total_matching=read_int(payload, "totalMatching") or 0,
        items=items,
    )
