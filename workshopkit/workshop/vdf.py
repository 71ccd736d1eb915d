"""workshop_build_item VDF files: writing them for SteamCMD and reading back the id it assigns."""

import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from workshopkit.core.logger import setup_logger
from workshopkit.core.models import PublishRequest

logger = setup_logger(__name__)

VdfNode = Dict[str, Union[str, "VdfNode"]]

_TOKEN = re.compile(r'"((?:[^"\\]|\\.)*)"|([{}])|//[^\n]*|\s+')
_UNESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", '"': '"'}


def escape_vdf_value(value: Optional[str]) -> str:
    if value is None:
        return ""
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\r", "\\r")
        .replace("\n", "\\n")
        .replace("\t", "\\t")
    )


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", lambda m: _UNESCAPES.get(m.group(1), m.group(1)), value)


def build_tags_csv(tags: Optional[Iterable[str]]) -> Optional[str]:
    """Trimmed, de-duplicated (case-insensitively) and comma-joined; None when nothing is left."""
    cleaned: List[str] = []
    seen = set()
    for tag in tags or []:
        tag = (tag or "").strip()
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        cleaned.append(tag)
    return ",".join(cleaned) if cleaned else None


def write_workshop_vdf(path: Path, request: PublishRequest, content_folder: Path) -> Path:
    """Write the item description SteamCMD's +workshop_build_item consumes."""
    entries = [
        ("appid", str(request.app_id)),
        ("publishedfileid", str(request.published_file_id)),
        ("contentfolder", str(Path(content_folder).resolve())),
        ("previewfile", str(Path(request.preview_path).resolve())),
        ("visibility", str(request.visibility.value)),
        ("title", request.title),
        ("description", request.description),
        ("changenote", request.change_note),
    ]
    tags = build_tags_csv(request.tags)
    if tags:
        entries.append(("tags", tags))

    lines = ['"workshopitem"', "{"]
    for key, value in entries:
        lines.append(f'\t"{key}"\t\t"{escape_vdf_value(value)}"')
    lines.append("}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.debug(f"Wrote workshop VDF: {path}")
    return path


def parse_vdf(text: str) -> VdfNode:
    """Parse KeyValues text into nested dicts. Keys are lower-cased."""
    tokens: List[str] = []
    position = 0
    while position < len(text):
        match = _TOKEN.match(text, position)
        if not match:
            raise ValueError(f"Unexpected character at offset {position}")
        position = match.end()
        if match.group(1) is not None:
            tokens.append("s" + _unescape(match.group(1)))
        elif match.group(2):
            tokens.append(match.group(2))

    root: VdfNode = {}
    stack = [root]
    key: Optional[str] = None
    for token in tokens:
        if token == "{":
            if key is None:
                raise ValueError("Block without a key")
            child: VdfNode = {}
            stack[-1][key] = child
            stack.append(child)
            key = None
        elif token == "}":
            if len(stack) == 1 or key is not None:
                raise ValueError("Unbalanced closing brace")
            stack.pop()
        elif key is None:
            key = token[1:].lower()
        else:
            stack[-1][key] = token[1:]
            key = None

    if len(stack) != 1 or key is not None:
        raise ValueError("Unexpected end of VDF text")
    return root


def read_published_file_id(path: Path) -> Optional[int]:
    """The publishedfileid SteamCMD wrote back into the VDF, or None when unavailable."""
    try:
        root = parse_vdf(Path(path).read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as e:
        logger.debug(f"Could not read published id from {path}: {e}")
        return None

    item = root.get("workshopitem")
    if not isinstance(item, dict):
        return None
    value = item.get("publishedfileid")
    if not isinstance(value, str) or not value.strip().isdecimal():
        return None
    return int(value.strip())
