"""External archive packers used to build publish payloads.

Both tools are plain command-line programs. Their output is logged at DEBUG
and a non-zero exit becomes a PackError carrying the tail of that output.
"""

import shutil
import subprocess
import uuid
from pathlib import Path
from threading import Event
from typing import List, Optional, Protocol

from workshopkit.core.errors import LaunchFailure, OperationCancelled, PackError
from workshopkit.core.logger import setup_logger
from workshopkit.download.fs import move_path, remove_path, safe_remove
from workshopkit.process.tree import kill_process_tree, tree_popen_kwargs

logger = setup_logger(__name__)

_POLL_SECONDS = 0.2
_OUTPUT_TAIL = 500


class Packer(Protocol):
    def pack(self, input_dir: Path, output_path: Path, cancel_flag: Optional[Event] = None) -> Path:
        ...


def resolve_tool(value: Optional[str], default: str, label: str) -> Path:
    """Resolve a configured tool path or bare command name to an executable."""
    candidate = (value or "").strip() or default
    path = Path(candidate).expanduser()
    if path.is_file():
        return path.resolve()
    found = shutil.which(candidate)
    if found:
        return Path(found)
    raise LaunchFailure(f"{label} not found: {candidate}")


def run_tool(
    command: List[str],
    label: str,
    cwd: Optional[Path] = None,
    cancel_flag: Optional[Event] = None,
) -> str:
    """Run a packer to completion and return its combined output."""
    logger.debug(f"Running {label}: {' '.join(command)}")
    try:
        process = subprocess.Popen(
            command,
            cwd=str(cwd) if cwd else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            **tree_popen_kwargs(),
        )
    except OSError as e:
        raise LaunchFailure(f"Failed to start {label}: {e}") from e

    while True:
        if cancel_flag and cancel_flag.is_set():
            kill_process_tree(process)
            raise OperationCancelled(f"{label} cancelled")
        try:
            output, _ = process.communicate(timeout=_POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            continue

    output = output or ""
    for line in output.splitlines():
        if line.strip():
            logger.debug(f"[{label}] {line.rstrip()}")

    if process.returncode != 0:
        tail = output.strip()[-_OUTPUT_TAIL:] or "No output"
        raise PackError(f"{label} failed with exit code {process.returncode}: {tail}")
    return output


class GmadPacker:
    """Packs a Garry's Mod addon folder into a .gma with ``gmad create``."""

    label = "gmad"

    def __init__(self, tool_path: Optional[str] = None):
        self.tool_path = tool_path

    @classmethod
    def from_config(cls) -> "GmadPacker":
        from workshopkit.core.config import config

        return cls(config.get("GMAD_PATH", "gmad"))

    def pack(self, input_dir: Path, output_path: Path, cancel_flag: Optional[Event] = None) -> Path:
        tool = resolve_tool(self.tool_path, "gmad", self.label)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        run_tool(
            [str(tool), "create", "-folder", str(input_dir.resolve()), "-out", str(output_path.resolve())],
            self.label,
            cancel_flag=cancel_flag,
        )
        if not output_path.is_file():
            raise PackError("Failed to create GMA payload for publish.")
        return output_path


class VpkToolPacker:
    """Packs a folder with Valve's ``vpk`` tool.

    The tool always writes next to its input, so single-file packs run from the
    input's parent and the produced ``<folder>.vpk`` is moved into place.
    Multi-file packs run inside the input folder with a response file and move
    every ``<prefix>_NNN.vpk`` chunk next to the ``_dir`` output.
    """

    label = "vpk"
    MULTI_FILE_SUFFIX = "_dir"

    def __init__(self, tool_path: Optional[str] = None, multi_file: bool = False):
        self.tool_path = tool_path
        self.multi_file = multi_file

    @classmethod
    def from_config(cls, multi_file: bool = False) -> "VpkToolPacker":
        from workshopkit.core.config import config

        return cls(config.get("VPK_TOOL_PATH", "vpk"), multi_file=multi_file)

    def pack(self, input_dir: Path, output_path: Path, cancel_flag: Optional[Event] = None) -> Path:
        if output_path.suffix.lower() != ".vpk":
            raise PackError(f"VPK packing supports .vpk only (got: {output_path.suffix})")
        tool = resolve_tool(self.tool_path, "vpk", self.label)
        input_dir = input_dir.resolve()
        output_path = output_path.resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if self.multi_file:
            return self._pack_multi_file(tool, input_dir, output_path, cancel_flag)

        run_tool([str(tool), input_dir.name], self.label, cwd=input_dir.parent, cancel_flag=cancel_flag)
        produced = input_dir.parent / f"{input_dir.name}.vpk"
        if not produced.is_file():
            raise PackError(f"vpk did not produce the expected output file: {produced}")
        if output_path.exists():
            remove_path(output_path)
        move_path(produced, output_path)
        return output_path

    def _pack_multi_file(self, tool: Path, input_dir: Path, output_path: Path, cancel_flag: Optional[Event]) -> Path:
        stem = output_path.stem
        if not stem.lower().endswith(self.MULTI_FILE_SUFFIX):
            raise PackError(f'Multi-file output path must end with "{self.MULTI_FILE_SUFFIX}.vpk"')
        prefix = stem[: -len(self.MULTI_FILE_SUFFIX)]

        file_list = input_dir.parent / f"workshopkit-vpk-filelist-{uuid.uuid4().hex}.txt"
        try:
            entries = sorted(str(p.relative_to(input_dir)) for p in input_dir.rglob("*") if p.is_file())
            file_list.write_text("\n".join(entries) + "\n", encoding="utf-8")
            run_tool(
                [str(tool), "-M", "a", prefix, f"@../{file_list.name}"],
                self.label,
                cwd=input_dir,
                cancel_flag=cancel_flag,
            )
        finally:
            safe_remove(file_list)

        moved = False
        for produced in sorted(input_dir.glob(f"{prefix}_???.vpk")):
            target = output_path if produced.name.lower() == output_path.name.lower() else output_path.parent / produced.name
            if target.exists():
                remove_path(target)
            move_path(produced, target)
            moved = True

        if not moved:
            raise PackError("vpk did not produce any multi-file outputs.")
        if not output_path.is_file():
            raise PackError(f"vpk did not produce the expected directory file: {output_path}")
        return output_path
