"""Published file id parsing from ids, Workshop URLs and pasted text."""

import re
from typing import Optional
from urllib.parse import parse_qsl, unquote, urlparse

from workshopkit.core.errors import InvalidWorkshopInput

_DIGITS = re.compile(r"[0-9]+")
_LONG_NUMBER = re.compile(r"(?<![0-9])([0-9]{6,})(?![0-9])")


def _as_id(text: Optional[str]) -> Optional[int]:
    if text is None:
        return None
    text = text.strip()
    return int(text) if _DIGITS.fullmatch(text) else None


def try_parse_published_file_id(value: Optional[str]) -> Optional[int]:
    """Return the published file id found in ``value``, or None.

    Accepts a bare number, a URL with an ``id`` query parameter (any case), a
    URL whose last path segment is numeric, or any text containing a run of
    six or more digits (the last run wins).
    """
    if value is None or not value.strip():
        return None
    value = value.strip()

    direct = _as_id(value)
    if direct is not None:
        return direct

    parsed = urlparse(value)
    if parsed.scheme and parsed.netloc:
        for name, param in parse_qsl(parsed.query, keep_blank_values=True):
            if name.lower() == "id":
                found = _as_id(unquote(param))
                if found is not None:
                    return found
                break
        segments = [s for s in parsed.path.split("/") if s]
        if segments:
            found = _as_id(segments[-1])
            if found is not None:
                return found

    matches = _LONG_NUMBER.findall(value)
    if matches:
        return int(matches[-1])
    return None


def parse_published_file_id(value: Optional[str]) -> int:
    found = try_parse_published_file_id(value)
    if found is None:
        raise InvalidWorkshopInput(f"Could not find a Workshop item id in {value!r}")
    return found
