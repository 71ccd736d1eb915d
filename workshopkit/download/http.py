"""Streaming HTTP downloads with retry, backoff and progress reporting."""

from __future__ import annotations

import random
import time
from pathlib import Path
from threading import Event
from typing import Callable, Optional

import requests
from tqdm import tqdm

from workshopkit.core.errors import OperationCancelled, OperationFailure
from workshopkit.core.logger import setup_logger

logger = setup_logger(__name__)

CONNECT_TIMEOUT = 5
DEFAULT_READ_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3
CHUNK_SIZE = 64 * 1024

RETRYABLE_CODES = (429, 500, 502, 503, 504)
CONNECTION_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout,
                     requests.exceptions.SSLError, requests.exceptions.ChunkedEncodingError)
DOWNLOAD_HEADERS = {
    "User-Agent": "workshopkit/0.4 (+https://steamcommunity.com/workshop/)",
    "Accept": "*/*",
}


def _backoff_delay(attempt: int, base: float = 0.25, cap: float = 3.0) -> float:
    """Exponential backoff with jitter."""
    return min(cap, base * (2 ** (attempt - 1))) + random.random() * base


def _get_status_code(e: Exception) -> Optional[int]:
    """Extract HTTP status code from an exception, or None if not applicable."""
    if isinstance(e, requests.exceptions.HTTPError) and e.response is not None:
        return e.response.status_code
    return None


def _is_retryable_error(e: Exception) -> bool:
    """Check if error is retryable (connection error or retryable HTTP status)."""
    if isinstance(e, CONNECTION_ERRORS):
        return True
    status = _get_status_code(e)
    return status is not None and status in RETRYABLE_CODES


class HttpDownloader:
    """Streams URLs to disk over a shared, caller-owned ``requests.Session``."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        show_progress: bool = True,
    ):
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = (CONNECT_TIMEOUT, read_timeout)
        self.max_retries = max(1, int(max_retries))
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, session: Optional[requests.Session] = None) -> "HttpDownloader":
        from workshopkit.core.config import config

        return cls(
            session=session,
            read_timeout=float(config.get("DOWNLOAD_TIMEOUT", DEFAULT_READ_TIMEOUT)),
            max_retries=int(config.get("MAX_DOWNLOAD_RETRIES", DEFAULT_MAX_RETRIES)),
        )

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def download_to_file(
        self,
        url: str,
        dest_path: Path,
        expected_size: Optional[int] = None,
        progress_callback: Optional[Callable[[float], None]] = None,
        status_callback: Optional[Callable[[str, Optional[str]], None]] = None,
        cancel_flag: Optional[Event] = None,
    ) -> Path:
        """Download ``url`` into ``dest_path``. Raises OperationFailure once retries run out."""
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = dest_path.parent / f".{dest_path.name}.part"
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            if cancel_flag and cancel_flag.is_set():
                raise OperationCancelled(f"Download of {url} cancelled")

            if attempt > 1 and status_callback:
                status_callback("resolving", f"Connecting (Attempt {attempt}/{self.max_retries})")

            try:
                logger.info(f"Downloading: {url} (attempt {attempt}/{self.max_retries})")
                self._stream(url, temp_path, expected_size, progress_callback, status_callback, cancel_flag)
                temp_path.replace(dest_path)
                logger.debug(f"Download completed: {dest_path} ({dest_path.stat().st_size} bytes)")
                return dest_path
            except requests.exceptions.RequestException as e:
                temp_path.unlink(missing_ok=True)
                last_error = e
                status = _get_status_code(e)
                if not _is_retryable_error(e):
                    raise OperationFailure(f"Download failed ({status or type(e).__name__}): {url}") from e
                logger.warning(f"Download error: {type(e).__name__}: {e}")
                if attempt < self.max_retries:
                    time.sleep(_backoff_delay(attempt))
            except BaseException:
                temp_path.unlink(missing_ok=True)
                raise

        raise OperationFailure(f"Download failed after {self.max_retries} attempts: {url} ({last_error})")

    def _stream(
        self,
        url: str,
        temp_path: Path,
        expected_size: Optional[int],
        progress_callback: Optional[Callable[[float], None]],
        status_callback: Optional[Callable[[str, Optional[str]], None]],
        cancel_flag: Optional[Event],
    ) -> None:
        with self.session.get(url, stream=True, timeout=self.timeout, headers=DOWNLOAD_HEADERS) as response:
            response.raise_for_status()

            if status_callback:
                status_callback("downloading", "")

            total_size = expected_size or int(response.headers.get("content-length", 0) or 0)
            bytes_downloaded = 0
            pbar = tqdm(total=total_size or None, unit="B", unit_scale=True,
                        desc="Downloading", disable=not self.show_progress)
            try:
                with open(temp_path, "wb") as out:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if cancel_flag and cancel_flag.is_set():
                            raise OperationCancelled(f"Download of {url} cancelled")
                        if not chunk:
                            continue
                        out.write(chunk)
                        bytes_downloaded += len(chunk)
                        pbar.update(len(chunk))
                        if progress_callback and total_size > 0:
                            progress_callback(min(100.0, bytes_downloaded * 100.0 / total_size))
            finally:
                pbar.close()
