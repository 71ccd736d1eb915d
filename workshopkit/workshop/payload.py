"""Turn a publish request's content path into the folder Steam uploads.

Every step that needs scratch space creates its own root under TMP_DIR and
records it on the StagedPayload before writing anything, so
``cleanup_payload`` can remove all of them whatever happens afterwards.
"""

import re
from pathlib import Path
from threading import Event
from typing import Callable, List, Optional

from workshopkit.core.errors import InvalidWorkshopInput, OperationCancelled, PackError
from workshopkit.core.logger import setup_logger
from workshopkit.core.models import GARRYS_MOD_APP_ID, PublishRequest, StagedPayload
from workshopkit.download.fs import copy_file, copy_tree, safe_remove
from workshopkit.download.staging import build_staging_dir
from workshopkit.workshop import manifest
from workshopkit.workshop.naming import sanitize_file_name
from workshopkit.workshop.packers import GmadPacker, Packer, VpkToolPacker

logger = setup_logger(__name__)

StatusCallback = Callable[[str, Optional[str]], None]

PAYLOAD_NAME_MAX = 80
VPK_EXTENSIONS = (".vpk", ".fpx")

JUNK_DIR_NAMES = frozenset([
    ".git", ".github", ".vs", ".vscode", ".idea", ".svn", ".hg",
    "bin", "obj", "node_modules", "__pycache__", ".venv", ".pytest_cache",
])
JUNK_FILE_NAMES = frozenset([
    ".ds_store", "thumbs.db", "desktop.ini", ".gitignore", ".gitattributes", ".gitmodules",
])

_PART_INDEX = re.compile(r"^\d{3}$")


def _top_level(folder: Path):
    entries = list(folder.iterdir())
    return [p for p in entries if p.is_dir()], [p for p in entries if p.is_file()]


def is_gma_payload_folder(folder: Path) -> bool:
    """A folder holding exactly one .gma and nothing else."""
    if not folder.is_dir():
        return False
    dirs, files = _top_level(folder)
    return not dirs and len(files) == 1 and files[0].suffix.lower() == ".gma"


def is_vpk_payload_folder(folder: Path) -> bool:
    """A folder of already-packed .vpk/.fpx files with no subfolders."""
    if not folder.is_dir():
        return False
    dirs, files = _top_level(folder)
    return not dirs and bool(files) and all(f.suffix.lower() in VPK_EXTENSIONS for f in files)


def expand_multi_part_archive(path: Path) -> Optional[List[Path]]:
    """Expand one part of a split VPK/FPX archive into the whole set.

    Recognises ``<prefix>_dir.vpk`` (``_fdr`` for .fpx) and ``<prefix>_NNN.vpk``
    when the matching directory file exists. Returns None for anything else.
    """
    path = path.resolve()
    ext = path.suffix
    if ext.lower() not in VPK_EXTENSIONS or not path.parent.is_dir():
        return None

    dir_suffix = "_fdr" if ext.lower() == ".fpx" else "_dir"
    stem = path.stem
    if stem.lower().endswith(dir_suffix):
        prefix = stem[: -len(dir_suffix)]
        directory_file = path
    else:
        prefix, _, index = stem.rpartition("_")
        if not prefix or not _PART_INDEX.match(index):
            return None
        directory_file = path.parent / f"{prefix}{dir_suffix}{ext}"
        if not directory_file.is_file():
            return None

    if not prefix:
        return None

    files = {directory_file}
    for candidate in path.parent.iterdir():
        if not candidate.is_file() or candidate.suffix.lower() != ext.lower():
            continue
        candidate_stem = candidate.stem
        if not candidate_stem.lower().startswith(prefix.lower() + "_"):
            continue
        if _PART_INDEX.match(candidate_stem[len(prefix) + 1:]):
            files.add(candidate)
    return sorted(files)


def _junk_filter(source: Path) -> Callable[[Path], bool]:
    def skip(relative: Path) -> bool:
        name = relative.name.lower()
        if (source / relative).is_dir():
            return name in JUNK_DIR_NAMES
        return name in JUNK_FILE_NAMES

    return skip


def _payload_base_name(title: Optional[str], fallback: Path) -> str:
    name = sanitize_file_name(title, replace_spaces_with_underscores=False)
    if not name:
        name = sanitize_file_name(fallback.name, replace_spaces_with_underscores=False)
    name = name or "addon"
    return name[:PAYLOAD_NAME_MAX]


def _new_scratch(staged: StagedPayload, kind: str) -> Path:
    root = build_staging_dir(f"publish_{kind}")
    if root not in staged.temp_roots:
        staged.temp_roots.append(root)
    return root


def _check_cancel(cancel_flag: Optional[Event]) -> None:
    if cancel_flag and cancel_flag.is_set():
        raise OperationCancelled("Publish cancelled")


def stage_single_file(staged: StagedPayload, source: Path) -> Path:
    """Copy a single content file (or its split-archive set) into its own payload folder."""
    if not source.is_file():
        raise InvalidWorkshopInput(f"Content file not found: {source}")
    payload = _new_scratch(staged, "file") / "payload"
    payload.mkdir(parents=True)
    for part in expand_multi_part_archive(source) or [source]:
        copy_file(part, payload / part.name)
    return payload


def stage_clean_copy(staged: StagedPayload, source: Path, cancel_flag: Optional[Event] = None) -> Path:
    """Copy a content folder without VCS, IDE and build leftovers."""
    payload = _new_scratch(staged, "stage") / "payload"
    copy_tree(source, payload, cancel_flag=cancel_flag, skip=_junk_filter(source))
    return payload


def build_gma_payload(
    staged: StagedPayload,
    source: Path,
    request: PublishRequest,
    packer: Packer,
    cancel_flag: Optional[Event] = None,
) -> Path:
    """Pack a Garry's Mod addon folder into ``<name>.gma``, fixing up addon.json on the way."""
    root = _new_scratch(staged, "gmod")
    payload = root / "payload"
    payload.mkdir(parents=True)
    gma_path = payload / f"{_payload_base_name(request.title, Path(request.content_path))}.gma"

    manifest_path = manifest.find_manifest(source)
    pack_input = source
    if request.stage_clean or not manifest.is_canonical_manifest(manifest_path):
        stage = root / "stage"
        copy_tree(source, stage, cancel_flag=cancel_flag, skip=_junk_filter(source))
        staged_manifest = stage / manifest.MANIFEST_NAME
        if manifest_path is not None and not staged_manifest.is_file():
            staged_source = stage / manifest_path.name
            if staged_source.is_file():
                staged_source.replace(staged_manifest)

        content_tags = request.content_tags or request.tags
        if staged_manifest.is_file():
            manifest.patch_manifest(
                staged_manifest, request.title, request.description, request.content_type, content_tags
            )
        else:
            manifest.write_manifest(
                staged_manifest, request.title, request.description, request.content_type, content_tags
            )
        pack_input = stage

    _check_cancel(cancel_flag)
    packer.pack(pack_input, gma_path, cancel_flag)
    if not gma_path.is_file():
        raise PackError("Failed to create GMA payload for publish.")
    return payload


def build_vpk_payload(
    staged: StagedPayload,
    source: Path,
    request: PublishRequest,
    packer: Packer,
    cancel_flag: Optional[Event] = None,
) -> Path:
    """Pack a content folder into ``<name>.vpk`` (``<name>_dir.vpk`` when split)."""
    payload = _new_scratch(staged, "vpk") / "payload"
    payload.mkdir(parents=True)
    base = _payload_base_name(request.title, source)
    vpk_path = payload / (f"{base}_dir.vpk" if request.vpk_multi_file else f"{base}.vpk")

    _check_cancel(cancel_flag)
    packer.pack(source, vpk_path, cancel_flag)
    if not vpk_path.is_file():
        raise PackError("Failed to create VPK payload for publish.")
    return payload


def prepare_payload(
    request: PublishRequest,
    staged: StagedPayload,
    gma_packer: Optional[Packer] = None,
    vpk_packer: Optional[Packer] = None,
    status_callback: Optional[StatusCallback] = None,
    cancel_flag: Optional[Event] = None,
) -> StagedPayload:
    """Prepare the upload folder for ``request`` in place on ``staged``."""

    def status(message: str) -> None:
        logger.info(message)
        if status_callback:
            status_callback("packing", message)

    source = Path(request.content_path)
    is_file = source.is_file()
    if not is_file and not source.is_dir():
        raise InvalidWorkshopInput(f"Content path not found: {source}")

    payload = source
    if is_file:
        if request.app_id == GARRYS_MOD_APP_ID and source.suffix.lower() != ".gma":
            raise InvalidWorkshopInput("Garry's Mod Workshop content must be a folder or a .gma file.")
        status("Preparing single-file payload folder")
        payload = stage_single_file(staged, source)
    elif request.stage_clean and request.app_id != GARRYS_MOD_APP_ID and not is_vpk_payload_folder(payload):
        status("Staging clean payload folder")
        payload = stage_clean_copy(staged, payload, cancel_flag)

    _check_cancel(cancel_flag)

    if request.app_id == GARRYS_MOD_APP_ID and not is_file and not is_gma_payload_folder(payload):
        status("Packing .gma for Garry's Mod")
        payload = build_gma_payload(staged, payload, request, gma_packer or GmadPacker.from_config(), cancel_flag)

    if request.pack_vpk and request.app_id != GARRYS_MOD_APP_ID and not is_file and not is_vpk_payload_folder(payload):
        status("Packing .vpk payload")
        packer = vpk_packer or VpkToolPacker.from_config(multi_file=request.vpk_multi_file)
        payload = build_vpk_payload(staged, payload, request, packer, cancel_flag)

    staged.payload_root = payload.resolve()
    return staged


def cleanup_payload(staged: StagedPayload) -> None:
    """Remove every scratch root recorded on ``staged``. Never raises."""
    for root in staged.temp_roots:
        if safe_remove(root):
            logger.debug(f"Removed publish scratch folder: {root}")
    staged.temp_roots.clear()
