"""Publish, delete and inspect Workshop items.

Publishing stages the content into an upload folder and hands it either to
the SteamPipe helper or to SteamCMD's ``+workshop_build_item``. Scratch
folders created while staging are removed once the upload finishes, fails
or is cancelled.
"""

from __future__ import annotations

import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

from workshopkit.core.config import config
from workshopkit.core.errors import InvalidWorkshopInput, LaunchFailure, OperationCancelled, WorkshopError
from workshopkit.core.logger import setup_logger
from workshopkit.core.models import (
    HelperDeleteResult,
    HelperListResult,
    HelperQuotaResult,
    PublishRequest,
    PublishResult,
    StagedPayload,
)
from workshopkit.process.prompts import PromptResolver
from workshopkit.workshop.packers import Packer
from workshopkit.workshop.payload import cleanup_payload, prepare_payload
from workshopkit.workshop.steamcmd import find_steamcmd, publish_args, run_steamcmd
from workshopkit.workshop.steampipe import SteamPipeClient, SteamPipeLocator
from workshopkit.workshop.vdf import read_published_file_id, write_workshop_vdf

logger = setup_logger(__name__)

ProgressCallback = Callable[[float], None]
StatusCallback = Callable[[str, Optional[str]], None]


def default_vdf_path(app_id: int, published_file_id: int) -> Path:
    item = str(published_file_id) if published_file_id else "new"
    return Path(tempfile.gettempdir()) / f"workshopkit_workshop_{app_id}_{item}.vdf"


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


class WorkshopPublisher:
    def __init__(
        self,
        steampipe: Optional[SteamPipeClient] = None,
        prompt_resolver: Optional[PromptResolver] = None,
        log_sink: Optional[Callable[[str], None]] = None,
        gma_packer: Optional[Packer] = None,
        vpk_packer: Optional[Packer] = None,
    ):
        self._steampipe = steampipe
        self.prompt_resolver = prompt_resolver
        self.log_sink = log_sink
        self.gma_packer = gma_packer
        self.vpk_packer = vpk_packer

    @property
    def steampipe(self) -> SteamPipeClient:
        if self._steampipe is None:
            self._steampipe = SteamPipeClient(SteamPipeLocator.from_config(), log_sink=self.log_sink)
        return self._steampipe

    def _username(self, request: PublishRequest) -> Optional[str]:
        username = request.steamcmd_username or config.get("STEAMCMD_USERNAME")
        return username.strip() if username and username.strip() else None

    def validate(self, request: PublishRequest) -> None:
        """Reject a request before anything is staged or launched."""
        if not request.app_id:
            raise InvalidWorkshopInput("AppID is required.")
        content = Path(request.content_path)
        if not content.exists():
            raise InvalidWorkshopInput(f"Content path not found: {content}")
        if not request.preview_path or not Path(request.preview_path).is_file():
            raise InvalidWorkshopInput("Preview file not found.")
        if _blank(request.title):
            raise InvalidWorkshopInput("Title is required.")
        if _blank(request.description):
            raise InvalidWorkshopInput("Description is required.")
        if _blank(request.change_note):
            raise InvalidWorkshopInput("Change note is required.")
        if not request.use_steampipe and self._username(request) is None:
            raise InvalidWorkshopInput("SteamCMD username is required.")

    def publish(
        self,
        request: PublishRequest,
        progress_callback: Optional[ProgressCallback] = None,
        status_callback: Optional[StatusCallback] = None,
        cancel_flag: Optional[threading.Event] = None,
    ) -> PublishResult:
        self.validate(request)
        cancel_flag = cancel_flag or threading.Event()

        steamcmd = None
        if not request.use_steampipe:
            configured = config.get("STEAMCMD_PATH")
            steamcmd = find_steamcmd(request.steamcmd_path or (Path(configured) if configured else None))
            if steamcmd is None:
                raise LaunchFailure("SteamCMD not found. Install SteamCMD or pass --steamcmd.")

        staged = StagedPayload(payload_root=Path(request.content_path))
        try:
            prepare_payload(
                request,
                staged,
                gma_packer=self.gma_packer,
                vpk_packer=self.vpk_packer,
                status_callback=status_callback,
                cancel_flag=cancel_flag,
            )
            logger.info(f"Publishing {staged.payload_root} to app {request.app_id}")
            if request.use_steampipe:
                return self._publish_via_steampipe(request, staged, progress_callback, status_callback, cancel_flag)
            return self._publish_via_steamcmd(request, staged, steamcmd, status_callback, cancel_flag)
        except OperationCancelled:
            raise
        except WorkshopError as e:
            logger.error_trace(f"Publishing {request.content_path} to app {request.app_id} failed: {e}")
            raise
        finally:
            cleanup_payload(staged)

    def _publish_via_steampipe(
        self,
        request: PublishRequest,
        staged: StagedPayload,
        progress_callback: Optional[ProgressCallback],
        status_callback: Optional[StatusCallback],
        cancel_flag: threading.Event,
    ) -> PublishResult:
        if status_callback:
            status_callback("uploading", "Uploading via Steamworks...")
        result = self.steampipe.publish(
            request.app_id,
            staged.payload_root,
            Path(request.preview_path),
            request.title,
            request.description,
            request.change_note,
            request.visibility,
            published_file_id=request.published_file_id,
            tags=request.tags,
            progress_callback=progress_callback,
            status_callback=status_callback,
            cancel_flag=cancel_flag,
        )
        if status_callback:
            status_callback("complete", f"Published {result.published_file_id}")
        return PublishResult(app_id=result.app_id, published_file_id=result.published_file_id)

    def _publish_via_steamcmd(
        self,
        request: PublishRequest,
        staged: StagedPayload,
        steamcmd: Path,
        status_callback: Optional[StatusCallback],
        cancel_flag: threading.Event,
    ) -> PublishResult:
        vdf_path = Path(request.vdf_path) if request.vdf_path else default_vdf_path(
            request.app_id, request.published_file_id
        )
        write_workshop_vdf(vdf_path, request, staged.payload_root)

        if status_callback:
            status_callback("uploading", "Uploading via SteamCMD...")
        run_steamcmd(
            steamcmd,
            publish_args(self._username(request), vdf_path),
            log_sink=self.log_sink,
            prompt_resolver=self.prompt_resolver,
            cancel_flag=cancel_flag,
        )

        published_file_id = read_published_file_id(vdf_path) or request.published_file_id
        if status_callback:
            status_callback("complete", f"Published {published_file_id}")
        return PublishResult(app_id=request.app_id, published_file_id=published_file_id, vdf_path=vdf_path)

    def delete(
        self,
        app_id: int,
        published_file_id: int,
        cancel_flag: Optional[threading.Event] = None,
    ) -> HelperDeleteResult:
        if not app_id:
            raise InvalidWorkshopInput("AppID is required.")
        if not published_file_id:
            raise InvalidWorkshopInput("PublishedFileId is required.")
        logger.info(f"Deleting Workshop item {published_file_id} (app {app_id})")
        return self.steampipe.delete(app_id, published_file_id, cancel_flag=cancel_flag)

    def list_published(
        self,
        app_id: int,
        page: int = 1,
        cancel_flag: Optional[threading.Event] = None,
    ) -> HelperListResult:
        if not app_id:
            raise InvalidWorkshopInput("AppID is required.")
        return self.steampipe.list_published(app_id, page, cancel_flag=cancel_flag)

    def quota(self, app_id: int, cancel_flag: Optional[threading.Event] = None) -> HelperQuotaResult:
        if not app_id:
            raise InvalidWorkshopInput("AppID is required.")
        return self.steampipe.quota(app_id, cancel_flag=cancel_flag)
