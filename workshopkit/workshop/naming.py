"""Deterministic output names for downloaded Workshop items."""

from typing import Optional

from workshopkit.core.models import NamingOptions, WorkshopItemDetails

MAX_NAME_LENGTH = 120
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Invalid on at least one supported filesystem.
_INVALID_CHARS = set('<>:"/\\|?*') | {chr(c) for c in range(32)}


def sanitize_file_name(value: Optional[str], replace_spaces_with_underscores: bool = True) -> str:
    if not value or not value.strip():
        return ""

    out = []
    for ch in value:
        if ch in _INVALID_CHARS:
            ch = "_"
        elif ch.isspace():
            ch = "_" if replace_spaces_with_underscores else " "
        if ch in ("_", " ") and (not out or out[-1] == ch):
            continue
        out.append(ch)

    return "".join(out).strip(" _").rstrip(". ")


def build_output_base_name(
    published_file_id: int,
    details: Optional[WorkshopItemDetails] = None,
    options: Optional[NamingOptions] = None,
    content_name_base: Optional[str] = None,
) -> str:
    """Combine title, id and timestamp into a safe file name of at most 120 characters."""
    options = options or NamingOptions()
    underscores = options.replace_spaces_with_underscores
    parts = []

    if options.include_title and details and details.title and details.title.strip():
        parts.append(sanitize_file_name(details.title, underscores))

    if options.include_id:
        parts.append(str(published_file_id))
    elif content_name_base and content_name_base.strip():
        parts.append(sanitize_file_name(content_name_base, underscores))
    elif not parts:
        parts.append(str(published_file_id))

    if options.append_updated_timestamp and details and details.updated_at:
        parts.append(details.updated_at.strftime(TIMESTAMP_FORMAT))

    separator = "_" if underscores else " "
    name = sanitize_file_name(separator.join(p for p in parts if p), underscores)
    if len(name) > MAX_NAME_LENGTH:
        name = name[:MAX_NAME_LENGTH].strip().rstrip("_. ")
    return name or str(published_file_id)
