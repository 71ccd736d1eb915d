"""Filesystem operations for placing payloads at their final output path.

Copies go through a temp file next to the destination and are renamed into
place, so a failed transfer never leaves a partial file under the final name.
"""

import errno
import os
import shutil
import time
from pathlib import Path
from threading import Event
from typing import Callable, Iterable, Optional

from workshopkit.core.errors import OperationCancelled, OutputExists
from workshopkit.core.logger import setup_logger

logger = setup_logger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024
_VERIFY_IO_WAIT_SECONDS = 3.0


def _verify_transfer_size(dest: Path, expected_size: int, action: str) -> None:
    """Verify file transfer completed successfully.

    Some filesystems (especially remote NAS/CIFS/NFS) can report stale sizes briefly
    after large writes. Do a second stat after a short delay before declaring failure.
    """
    actual_size = dest.stat().st_size
    if actual_size == expected_size:
        return

    logger.debug(
        f"File {action} size mismatch, waiting for filesystem sync: {dest} "
        f"({actual_size} != {expected_size})"
    )
    time.sleep(_VERIFY_IO_WAIT_SECONDS)

    actual_size = dest.stat().st_size
    if actual_size != expected_size:
        raise IOError(
            f"File {action} incomplete, data loss may have occurred. "
            f"'{dest}' was {actual_size} bytes instead of expected {expected_size}."
        )


def remove_path(path: Path) -> None:
    """Delete a file or directory tree. Missing paths are ignored."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


def safe_remove(path: Optional[Path]) -> bool:
    """Best-effort delete; failures are logged as warnings and never raised."""
    if not path:
        return True
    try:
        remove_path(path)
        return True
    except OSError as e:
        logger.warning(f"Cleanup failed for {path}: {e}")
        return False


def ensure_output_absent(path: Path, overwrite: bool) -> None:
    """Apply the output collision policy before anything is written."""
    if not path.exists() and not path.is_symlink():
        return
    if not overwrite:
        raise OutputExists(path)
    logger.info(f"Overwriting existing output: {path}")
    remove_path(path)


def copy_file(
    source_path: Path,
    dest_path: Path,
    progress_callback: Optional[Callable[[float], None]] = None,
    cancel_flag: Optional[Event] = None,
) -> Path:
    """Copy one file to ``dest_path`` via a sibling temp file."""
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    expected_size = source_path.stat().st_size
    temp_path = dest_path.parent / f".{dest_path.name}.tmp"
    copied = 0

    try:
        with open(source_path, "rb") as src, open(temp_path, "wb") as dst:
            while True:
                if cancel_flag and cancel_flag.is_set():
                    raise OperationCancelled(f"Copy of {source_path.name} cancelled")
                chunk = src.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                dst.write(chunk)
                copied += len(chunk)
                if progress_callback and expected_size > 0:
                    progress_callback(copied * 100.0 / expected_size)
        shutil.copystat(source_path, temp_path)
        temp_path.replace(dest_path)
        _verify_transfer_size(dest_path, expected_size, "copy")
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    return dest_path


def _walk_files(root: Path) -> Iterable[Path]:
    for path in sorted(root.rglob("*")):
        if path.is_file():
            yield path


def copy_tree(
    source_dir: Path,
    dest_dir: Path,
    progress_callback: Optional[Callable[[float], None]] = None,
    cancel_flag: Optional[Event] = None,
    skip: Optional[Callable[[Path], bool]] = None,
) -> Path:
    """Copy a directory tree, reporting progress by bytes across all files.

    ``skip`` receives each source path relative to ``source_dir``; returning True
    excludes that file or directory (and everything below it).
    """
    files = []
    for path in _walk_files(source_dir):
        relative = path.relative_to(source_dir)
        if skip and any(skip(Path(*relative.parts[: i + 1])) for i in range(len(relative.parts))):
            continue
        files.append((path, relative))

    total = sum(p.stat().st_size for p, _ in files) or 0
    done = 0
    dest_dir.mkdir(parents=True, exist_ok=True)

    for path, relative in files:
        size = path.stat().st_size

        def file_progress(percent: float, _base=done, _size=size) -> None:
            if progress_callback and total > 0:
                progress_callback((_base + _size * percent / 100.0) * 100.0 / total)

        copy_file(path, dest_dir / relative, file_progress, cancel_flag)
        done += size

    if progress_callback:
        progress_callback(100.0)
    return dest_dir


def move_path(source: Path, dest: Path) -> Path:
    """Move a file or directory to ``dest``, copying across filesystems when rename fails."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.rename(str(source), str(dest))
        return dest
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    logger.debug(f"Cross-filesystem move, copying instead: {source} -> {dest}")
    if source.is_dir():
        copy_tree(source, dest)
    else:
        copy_file(source, dest)
    remove_path(source)
    return dest
