"""Sniffing and unpacking of LZMA-compressed Garry's Mod addons.

Workshop downloads for Garry's Mod are sometimes delivered as a raw
LZMA-alone stream (13-byte header) wrapping the .gma instead of the .gma itself.
"""

from __future__ import annotations

import lzma
import struct
from pathlib import Path
from threading import Event
from typing import BinaryIO, Callable, Optional

from workshopkit.core.errors import OperationCancelled
from workshopkit.core.logger import setup_logger
from workshopkit.download.fs import safe_remove

logger = setup_logger(__name__)

GMA_MAGIC = b"GMAD"
LZMA_ALONE_HEADER_SIZE = 13
# lc/lp/pb are packed as (pb * 5 + lp) * 9 + lc, each within its LZMA range.
MAX_LZMA_PROPERTIES = 9 * 5 * 5
READ_CHUNK_SIZE = 1024 * 1024


def has_gma_magic(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(4) == GMA_MAGIC


def looks_like_lzma_alone(path: Path) -> bool:
    """Header check: property byte in range and a non-zero dictionary size."""
    if path.stat().st_size < LZMA_ALONE_HEADER_SIZE:
        return False
    with open(path, "rb") as f:
        header = f.read(LZMA_ALONE_HEADER_SIZE)
    if len(header) < LZMA_ALONE_HEADER_SIZE:
        return False
    if header[0] >= MAX_LZMA_PROPERTIES:
        return False
    (dictionary_size,) = struct.unpack_from("<I", header, 1)
    return dictionary_size != 0


class _ProgressReader:
    """Passes reads through while reporting how much of the source has been consumed."""

    def __init__(
        self,
        raw: BinaryIO,
        total: int,
        progress_callback: Optional[Callable[[float], None]],
        cancel_flag: Optional[Event],
    ):
        self._raw = raw
        self._total = total
        self._done = 0
        self._progress_callback = progress_callback
        self._cancel_flag = cancel_flag

    def read(self, size: int = -1) -> bytes:
        if self._cancel_flag and self._cancel_flag.is_set():
            raise OperationCancelled("Decompression cancelled")
        data = self._raw.read(size)
        self._done += len(data)
        if self._progress_callback and self._total > 0:
            self._progress_callback(min(100.0, self._done * 100.0 / self._total))
        return data

    def readable(self) -> bool:
        return True


def gma_output_path(source: Path) -> Path:
    target = source.with_suffix(".gma")
    if target == source:
        target = source.with_name(f"{source.stem}_decompressed.gma")
    return target


def decompress_lzma_to_gma(
    source: Path,
    progress_callback: Optional[Callable[[float], None]] = None,
    cancel_flag: Optional[Event] = None,
) -> Path:
    """Decompress ``source`` next to itself as ``.gma`` and delete the source.

    On failure the partial output is removed, the source is kept, and the error propagates.
    """
    target = gma_output_path(source)
    total = source.stat().st_size

    try:
        with open(source, "rb") as raw:
            reader = _ProgressReader(raw, total, progress_callback, cancel_flag)
            with lzma.LZMAFile(reader, mode="rb", format=lzma.FORMAT_ALONE) as src, open(target, "wb") as dst:
                while True:
                    chunk = src.read(READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    dst.write(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise

    safe_remove(source)
    logger.info(f"Decompressed {source.name} -> {target.name}")
    return target
