"""Acquire a Workshop item into an output folder.

Strategies run in a fixed order and stop at the first that yields content:

1. the Steam library cache under the requested app (or the item's owning app)
2. the Steam library cache under any app
3. the direct file URL published in the item's metadata
4. the SteamPipe helper, if enabled
5. SteamCMD, if enabled

Only a miss falls through. A backend that is attempted and fails raises,
unless SteamPipe was enabled as best effort.
"""

from __future__ import annotations

import lzma
import threading
from pathlib import Path
from typing import Callable, Optional, Tuple
from urllib.parse import unquote, urlparse

import requests

from workshopkit.core.config import config
from workshopkit.core.errors import (
    ArchiveExtractionError,
    OperationCancelled,
    OutputExists,
    WorkshopError,
    WorkshopItemNotFound,
)
from workshopkit.core.logger import setup_logger
from workshopkit.core.models import (
    GARRYS_MOD_APP_ID,
    CacheHit,
    DownloadRequest,
    Payload,
    PayloadKind,
    SourceKind,
    TransferResult,
    WorkshopItemDetails,
)
from workshopkit.download.archive import extract_zip, is_zip
from workshopkit.download.decompress import (
    decompress_lzma_to_gma,
    gma_output_path,
    has_gma_magic,
    looks_like_lzma_alone,
)
from workshopkit.download.fs import copy_file, copy_tree, ensure_output_absent, safe_remove
from workshopkit.download.http import HttpDownloader
from workshopkit.process.prompts import PromptResolver
from workshopkit.workshop.cache import WorkshopCacheLocator, find_in_install_dir, find_steam_root
from workshopkit.workshop.details import WorkshopDetailsClient
from workshopkit.workshop.naming import build_output_base_name
from workshopkit.workshop.steamcmd import default_install_dir, download_args, find_steamcmd, run_steamcmd
from workshopkit.workshop.steampipe import SteamPipeClient, SteamPipeLocator

logger = setup_logger(__name__)

ProgressCallback = Callable[[float], None]
StatusCallback = Callable[[str, Optional[str]], None]


def classify_payload(content_path: Path, convert: bool) -> Payload:
    """Decide whether cached content is delivered as one file or as a whole folder.

    With ``convert`` on, a folder holding exactly one file and no subfolders is
    delivered as that file. A bare file path is always a file payload.
    """
    path = Path(content_path).resolve()
    if path.is_dir():
        if convert:
            entries = list(path.iterdir())
            files = [p for p in entries if p.is_file()]
            has_dirs = any(p.is_dir() for p in entries)
            if len(files) == 1 and not has_dirs:
                return Payload(PayloadKind.FILE, files[0])
        return Payload(PayloadKind.DIRECTORY, path)
    if path.is_file():
        return Payload(PayloadKind.FILE, path)
    raise WorkshopError(f'Workshop content not found at: "{path}"')


class WorkshopDownloader:
    """Owns the long-lived HTTP session and helper lookup used across downloads."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        details_client: Optional[WorkshopDetailsClient] = None,
        http: Optional[HttpDownloader] = None,
        steampipe: Optional[SteamPipeClient] = None,
        prompt_resolver: Optional[PromptResolver] = None,
        log_sink: Optional[Callable[[str], None]] = None,
    ):
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.details_client = details_client or WorkshopDetailsClient(self.session)
        self.http = http or HttpDownloader.from_config(self.session)
        self._steampipe = steampipe
        self.prompt_resolver = prompt_resolver
        self.log_sink = log_sink

    def __enter__(self) -> "WorkshopDownloader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    @property
    def steampipe(self) -> SteamPipeClient:
        if self._steampipe is None:
            self._steampipe = SteamPipeClient(SteamPipeLocator.from_config(), log_sink=self.log_sink)
        return self._steampipe

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def download(
        self,
        request: DownloadRequest,
        progress_callback: Optional[ProgressCallback] = None,
        status_callback: Optional[StatusCallback] = None,
        cancel_flag: Optional[threading.Event] = None,
    ) -> TransferResult:
        cancel_flag = cancel_flag or threading.Event()
        published_file_id = request.published_file_id
        steam_root = find_steam_root(request.steam_root)
        cache = WorkshopCacheLocator(steam_root)
        if steam_root is None:
            logger.debug("No Steam installation found; skipping cache lookups")

        if status_callback:
            status_callback("resolving", "Looking for cached content...")

        details: Optional[WorkshopItemDetails] = None
        fetched = False

        hit = cache.find(request.app_id, published_file_id)
        if hit is None and request.fetch_details:
            details, fetched = self._fetch_details(published_file_id, status_callback), True
            if details and details.consumer_app_id and details.consumer_app_id != request.app_id:
                hit = cache.find(details.consumer_app_id, published_file_id)

        if hit is None:
            hit = cache.find_any_app(published_file_id)

        source = SourceKind.CACHE
        if hit is None:
            if not fetched:
                details, fetched = self._fetch_details(published_file_id, status_callback), True

            if details and details.file_url:
                return self._download_from_web(request, details, progress_callback, status_callback, cancel_flag)

            if request.use_steampipe:
                hit = self._try_steampipe(request, details, progress_callback, status_callback, cancel_flag)
                source = SourceKind.STEAMPIPE

            if hit is None and request.use_steamcmd:
                hit = self._try_steamcmd(request, details, status_callback, cancel_flag)
                source = SourceKind.STEAMCMD

            if hit is None:
                app_id = request.app_id or (details.consumer_app_id if details else None) or 0
                raise WorkshopItemNotFound(app_id, published_file_id)

        if request.fetch_details and not fetched:
            details = self._fetch_details(published_file_id, status_callback)

        return self._deliver(request, hit, source, details, progress_callback, status_callback, cancel_flag)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _fetch_details(
        self,
        published_file_id: int,
        status_callback: Optional[StatusCallback],
    ) -> Optional[WorkshopItemDetails]:
        if status_callback:
            status_callback("resolving", "Fetching details...")
        return self.details_client.get_details(published_file_id)

    def _target_app_id(self, request: DownloadRequest, details: Optional[WorkshopItemDetails]) -> int:
        return (details.consumer_app_id if details else None) or request.app_id

    def _try_steampipe(
        self,
        request: DownloadRequest,
        details: Optional[WorkshopItemDetails],
        progress_callback: Optional[ProgressCallback],
        status_callback: Optional[StatusCallback],
        cancel_flag: threading.Event,
    ) -> Optional[CacheHit]:
        app_id = self._target_app_id(request, details)
        if not app_id:
            logger.info("SteamPipe download skipped: the item's app id is unknown")
            return None

        if status_callback:
            status_callback("downloading", "Downloading via Steamworks...")
        try:
            result = self.steampipe.download(
                app_id,
                request.published_file_id,
                progress_callback=progress_callback,
                status_callback=status_callback,
                cancel_flag=cancel_flag,
            )
        except OperationCancelled:
            raise
        except WorkshopError as e:
            if not request.steampipe_best_effort:
                logger.error_trace(f"SteamPipe download of {request.published_file_id} failed: {e}")
                raise
            logger.warning(f"SteamPipe download failed, continuing without it: {e}")
            return None

        return CacheHit(app_id=result.app_id, content_dir=Path(result.install_folder))

    def _try_steamcmd(
        self,
        request: DownloadRequest,
        details: Optional[WorkshopItemDetails],
        status_callback: Optional[StatusCallback],
        cancel_flag: threading.Event,
    ) -> Optional[CacheHit]:
        app_id = self._target_app_id(request, details)
        if not app_id:
            logger.info("SteamCMD download skipped: the item's app id is unknown")
            return None

        configured = config.get("STEAMCMD_PATH")
        steamcmd = find_steamcmd(request.steamcmd_path or (Path(configured) if configured else None))
        if steamcmd is None:
            logger.warning("SteamCMD download skipped: steamcmd was not found (set STEAMCMD_PATH or add it to PATH)")
            return None

        configured_dir = config.get("STEAMCMD_INSTALL_DIR")
        install_dir = default_install_dir(request.steamcmd_install_dir or (Path(configured_dir) if configured_dir else None))
        install_dir.mkdir(parents=True, exist_ok=True)
        username = request.steamcmd_username or config.get("STEAMCMD_USERNAME")

        if status_callback:
            status_callback("downloading", "Downloading via SteamCMD...")
        try:
            run_steamcmd(
                steamcmd,
                download_args(install_dir, username, app_id, request.published_file_id),
                log_sink=self.log_sink,
                prompt_resolver=self.prompt_resolver,
                cancel_flag=cancel_flag,
            )
        except OperationCancelled:
            raise
        except WorkshopError as e:
            logger.error_trace(f"SteamCMD download of {request.published_file_id} failed: {e}")
            raise

        content_dir = find_in_install_dir(install_dir, app_id, request.published_file_id)
        if content_dir is not None:
            return CacheHit(app_id=app_id, content_dir=content_dir)
        return WorkshopCacheLocator(install_dir).find_any_app(request.published_file_id)

    def _download_from_web(
        self,
        request: DownloadRequest,
        details: WorkshopItemDetails,
        progress_callback: Optional[ProgressCallback],
        status_callback: Optional[StatusCallback],
        cancel_flag: threading.Event,
    ) -> TransferResult:
        url = details.file_url or ""
        if details.file_name:
            file_name = Path(details.file_name.replace("\\", "/")).name
        else:
            file_name = Path(unquote(urlparse(url).path)).name
        extension = Path(file_name).suffix
        base_name = build_output_base_name(
            request.published_file_id, details, request.naming, Path(file_name).stem
        )

        output_dir = Path(request.output_dir).resolve()
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{base_name}{extension}"
        ensure_output_absent(output_path, request.overwrite)

        if status_callback:
            status_callback("downloading", "Downloading via web...")
        self.http.download_to_file(
            url,
            output_path,
            expected_size=details.file_size,
            progress_callback=progress_callback,
            status_callback=status_callback,
            cancel_flag=cancel_flag,
        )

        app_id = details.consumer_app_id or request.app_id
        final_path, kind = self._post_process(request, app_id, output_path, progress_callback, status_callback, cancel_flag)
        if status_callback:
            status_callback("complete", None)
        return TransferResult(
            published_file_id=request.published_file_id,
            app_id=app_id,
            source=SourceKind.WEB,
            source_locator=url,
            output_path=final_path,
            output_kind=kind,
            details=details,
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(
        self,
        request: DownloadRequest,
        hit: CacheHit,
        source: SourceKind,
        details: Optional[WorkshopItemDetails],
        progress_callback: Optional[ProgressCallback],
        status_callback: Optional[StatusCallback],
        cancel_flag: threading.Event,
    ) -> TransferResult:
        payload = classify_payload(hit.content_dir, request.convert)
        content_name_base = payload.path.stem if payload.kind == PayloadKind.FILE else None
        base_name = build_output_base_name(request.published_file_id, details, request.naming, content_name_base)

        output_dir = Path(request.output_dir).resolve()
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"{base_name}{payload.extension}"
        ensure_output_absent(output_path, request.overwrite)

        if status_callback:
            status_callback("downloading", f"Copying {payload.path.name}...")
        logger.info(f"Copying {payload.kind.value} payload {payload.path} -> {output_path}")

        if payload.kind == PayloadKind.DIRECTORY:
            copy_tree(payload.path, output_path, progress_callback, cancel_flag)
            final_path, kind = output_path, PayloadKind.DIRECTORY
        else:
            copy_file(payload.path, output_path, progress_callback, cancel_flag)
            final_path, kind = self._post_process(
                request, hit.app_id, output_path, progress_callback, status_callback, cancel_flag
            )

        if status_callback:
            status_callback("complete", None)
        return TransferResult(
            published_file_id=request.published_file_id,
            app_id=hit.app_id,
            source=source,
            source_locator=str(payload.path),
            output_path=final_path,
            output_kind=kind,
            details=details,
        )

    def _post_process(
        self,
        request: DownloadRequest,
        app_id: int,
        path: Path,
        progress_callback: Optional[ProgressCallback],
        status_callback: Optional[StatusCallback],
        cancel_flag: threading.Event,
    ) -> Tuple[Path, PayloadKind]:
        """Content-sniffing conversions for delivered files. Failures keep the file as delivered."""
        if not request.convert or not path.is_file():
            return path, PayloadKind.FILE

        if is_zip(path):
            target = path.parent / path.stem
            try:
                ensure_output_absent(target, request.overwrite)
                if status_callback:
                    status_callback("extracting", "Extracting .zip...")
                extract_zip(path, target)
            except (ArchiveExtractionError, OutputExists) as e:
                logger.warning(f"Keeping {path.name} as downloaded, extraction failed: {e}")
            else:
                safe_remove(path)
                return target, PayloadKind.DIRECTORY

        if app_id != GARRYS_MOD_APP_ID:
            return path, PayloadKind.FILE
        if has_gma_magic(path) or not looks_like_lzma_alone(path):
            return path, PayloadKind.FILE

        try:
            ensure_output_absent(gma_output_path(path), request.overwrite)
            if status_callback:
                status_callback("extracting", "Decompressing .lzma -> .gma...")
            return decompress_lzma_to_gma(path, progress_callback, cancel_flag), PayloadKind.FILE
        except OperationCancelled:
            raise
        except (OutputExists, lzma.LZMAError, EOFError, OSError) as e:
            logger.warning(f"Keeping {path.name} as downloaded, decompression failed: {e}")
            return path, PayloadKind.FILE
