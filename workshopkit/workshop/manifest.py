"""Garry's Mod addon.json handling for publish staging.

gmad refuses to pack a folder without a valid addon.json, so publishes for
app 4000 either synthesize one from the request or fill in the fields an
existing one is missing.
"""

import json
from pathlib import Path
from typing import Iterable, List, Optional

from workshopkit.core.errors import InvalidWorkshopInput
from workshopkit.core.logger import setup_logger

logger = setup_logger(__name__)

MANIFEST_NAME = "addon.json"
DEFAULT_CONTENT_TYPE = "ServerContent"
MAX_CONTENT_TAGS = 2

ALLOWED_CONTENT_TYPES = [
    "ServerContent",
    "gamemode",
    "map",
    "weapon",
    "vehicle",
    "npc",
    "tool",
    "effects",
    "model",
]

ALLOWED_CONTENT_TAGS = frozenset([
    "fun",
    "roleplay",
    "scenic",
    "movie",
    "realism",
    "cartoon",
    "water",
    "comic",
    "build",
])

RECOMMENDED_IGNORE_PATTERNS = [
    ".git/",
    ".github/",
    ".vs/",
    ".vscode/",
    ".idea/",
    ".svn/",
    ".hg/",
    "bin/",
    "obj/",
    "node_modules/",
    "__pycache__/",
    ".venv/",
    ".pytest_cache/",
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    ".gitignore",
    ".gitattributes",
    ".gitmodules",
]


def canonical_content_type(value: Optional[str]) -> Optional[str]:
    """Return the allowed spelling of ``value``, matched case-insensitively."""
    if not value or not value.strip():
        return None
    wanted = value.strip().lower()
    for allowed in ALLOWED_CONTENT_TYPES:
        if allowed.lower() == wanted:
            return allowed
    return None


def _clean_tags(tags: Optional[Iterable[str]]) -> List[str]:
    cleaned: List[str] = []
    for tag in tags or []:
        tag = (tag or "").strip().lower()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def find_manifest(folder: Path) -> Optional[Path]:
    """Locate the addon manifest in ``folder``.

    Looks for addon.json, then a case-insensitive match, then d.json, then the
    only top-level .json file.
    """
    direct = folder / MANIFEST_NAME
    if direct.is_file():
        return direct

    try:
        candidates = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == ".json")
    except OSError:
        return None

    for name in (MANIFEST_NAME, "d.json"):
        for candidate in candidates:
            if candidate.name.lower() == name:
                return candidate

    return candidates[0] if len(candidates) == 1 else None


def is_canonical_manifest(path: Optional[Path]) -> bool:
    return path is not None and path.name.lower() == MANIFEST_NAME


def write_manifest(
    path: Path,
    title: str,
    description: str,
    content_type: Optional[str] = None,
    content_tags: Optional[Iterable[str]] = None,
) -> Path:
    """Write a new addon.json. Unknown types and tags are rejected."""
    type_input = content_type.strip() if content_type and content_type.strip() else DEFAULT_CONTENT_TYPE
    canonical_type = canonical_content_type(type_input)
    if canonical_type is None:
        raise InvalidWorkshopInput(f'Invalid Garry\'s Mod addon type: "{type_input}".')

    tags = _clean_tags(content_tags)
    if len(tags) > MAX_CONTENT_TAGS:
        raise InvalidWorkshopInput(f"Garry's Mod addon tags are limited to {MAX_CONTENT_TAGS}.")
    for tag in tags:
        if tag not in ALLOWED_CONTENT_TAGS:
            raise InvalidWorkshopInput(f'Invalid Garry\'s Mod addon tag: "{tag}".')

    manifest = {
        "title": title.strip() if title and title.strip() else "Addon",
        "type": canonical_type,
        "tags": tags,
        "ignore": list(RECOMMENDED_IGNORE_PATTERNS),
        "description": description or "",
    }
    path.write_text(json.dumps(manifest, indent="\t", ensure_ascii=False) + "\n", encoding="utf-8")
    logger.debug(f"Wrote {path} (type={canonical_type}, tags={tags})")
    return path


def patch_manifest(
    path: Path,
    title: str,
    description: str,
    content_type: Optional[str] = None,
    content_tags: Optional[Iterable[str]] = None,
) -> bool:
    """Fill in fields an existing addon.json lacks.

    Existing values are never replaced. Tags outside the allowed set are
    dropped rather than rejected. The recommended ignore patterns are appended
    to whatever the file already ignores. Returns True when the file changed.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as e:
        raise InvalidWorkshopInput(f"Failed to read addon.json ({path}): {e}") from e

    if not isinstance(data, dict):
        raise InvalidWorkshopInput("addon.json root must be a JSON object.")

    changed = False

    existing_title = data.get("title")
    if not isinstance(existing_title, str) or not existing_title.strip():
        data["title"] = title.strip() if title else "Addon"
        changed = True

    if not isinstance(data.get("description"), str):
        data["description"] = description or ""
        changed = True

    if not isinstance(data.get("type"), str):
        canonical_type = canonical_content_type(content_type)
        if canonical_type:
            data["type"] = canonical_type
            changed = True

    if data.get("tags") is None:
        tags = [t for t in _clean_tags(content_tags) if t in ALLOWED_CONTENT_TAGS][:MAX_CONTENT_TAGS]
        if tags:
            data["tags"] = tags
            changed = True

    ignore = data.get("ignore")
    if not isinstance(ignore, list):
        ignore = []
        data["ignore"] = ignore
        changed = True

    existing_ignore = {p.strip().lower() for p in ignore if isinstance(p, str) and p.strip()}
    for pattern in RECOMMENDED_IGNORE_PATTERNS:
        if pattern.lower() not in existing_ignore:
            ignore.append(pattern)
            changed = True

    if changed:
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        logger.debug(f"Patched {path}")
    return changed
