"""Zip extraction for downloaded Workshop payloads."""

import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import List

from workshopkit.core.errors import (
    ArchiveExtractionError,
    CorruptedArchiveError,
    PasswordProtectedError,
)
from workshopkit.core.logger import setup_logger

logger = setup_logger(__name__)


def is_zip(file_path: Path) -> bool:
    return file_path.suffix.lower() == ".zip"


def _safe_relative_path(name: str) -> PurePosixPath:
    """Validate an archive member name and return it as a relative path."""
    if "\x00" in name:
        raise ArchiveExtractionError(f"Suspicious file name in archive: {name!r}")
    normalized = name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute() or (relative.parts and relative.parts[0].endswith(":")):
        raise ArchiveExtractionError(f"Absolute path in archive: {name!r}")
    if ".." in relative.parts:
        raise ArchiveExtractionError(f"Path traversal attempt blocked: {name!r}")
    return relative


def _extract_members(archive: zipfile.ZipFile, output_dir: Path) -> List[Path]:
    extracted = []
    output_root = output_dir.resolve()

    for info in archive.infolist():
        relative = _safe_relative_path(info.filename)
        if not relative.parts:
            continue

        target_path = output_dir.joinpath(*relative.parts)
        try:
            target_path.resolve().relative_to(output_root)
        except ValueError:
            raise ArchiveExtractionError(f"Path traversal attempt blocked: {info.filename!r}")

        if info.is_dir():
            target_path.mkdir(parents=True, exist_ok=True)
            continue

        target_path.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(info) as src, open(target_path, "wb") as dst:
            shutil.copyfileobj(src, dst)
        extracted.append(target_path)
        logger.debug(f"Extracted: {relative}")

    return extracted


def extract_zip(archive_path: Path, output_dir: Path) -> List[Path]:
    """Extract every member of ``archive_path`` below ``output_dir``, keeping folder structure.

    On any failure the partially populated ``output_dir`` is removed and the
    archive itself is left untouched.
    """
    created_output = not output_dir.exists()
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                if info.flag_bits & 0x1:  # Encrypted flag
                    raise PasswordProtectedError("ZIP archive is password protected")

            bad_file = zf.testzip()
            if bad_file:
                raise CorruptedArchiveError(f"Corrupted file in archive: {bad_file}")

            output_dir.mkdir(parents=True, exist_ok=True)
            return _extract_members(zf, output_dir)

    except (zipfile.BadZipFile, EOFError) as e:
        _discard(output_dir, created_output)
        raise CorruptedArchiveError(f"Invalid or corrupted ZIP: {e}")
    except PermissionError as e:
        _discard(output_dir, created_output)
        raise ArchiveExtractionError(f"Permission denied: {e}")
    except ArchiveExtractionError:
        _discard(output_dir, created_output)
        raise
    except OSError as e:
        _discard(output_dir, created_output)
        raise ArchiveExtractionError(f"Extraction of {archive_path.name} failed: {e}")


def _discard(output_dir: Path, created: bool) -> None:
    if not created or not output_dir.exists():
        return
    try:
        shutil.rmtree(output_dir)
    except OSError as e:
        logger.warning(f"Could not remove partial extraction {output_dir}: {e}")
