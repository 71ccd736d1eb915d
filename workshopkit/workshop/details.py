"""Published file metadata lookup through the Steam Web API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from workshopkit.core.logger import setup_logger
from workshopkit.core.models import WorkshopItemDetails

logger = setup_logger(__name__)

DETAILS_URL = "https://api.steampowered.com/ISteamRemoteStorage/GetPublishedFileDetails/v1/"
REQUEST_TIMEOUT = (5, 10)  # (connect, read)


def _positive_int(details: Dict[str, Any], key: str) -> Optional[int]:
    value = details.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdecimal():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


def _non_blank(details: Dict[str, Any], key: str) -> Optional[str]:
    value = details.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_details_response(published_file_id: int, data: Any) -> Optional[WorkshopItemDetails]:
    """Pull the first entry of ``response.publishedfiledetails`` into a WorkshopItemDetails."""
    if not isinstance(data, dict):
        return None
    response = data.get("response")
    if not isinstance(response, dict):
        return None
    entries = response.get("publishedfiledetails")
    if not isinstance(entries, list) or not entries or not isinstance(entries[0], dict):
        return None

    details = entries[0]
    title = details.get("title") if isinstance(details.get("title"), str) else None
    updated_seconds = _positive_int(details, "time_updated")
    updated_at = datetime.fromtimestamp(updated_seconds, tz=timezone.utc) if updated_seconds else None

    return WorkshopItemDetails(
        published_file_id=published_file_id,
        title=title,
        updated_at=updated_at,
        consumer_app_id=_positive_int(details, "consumer_app_id"),
        file_url=_non_blank(details, "file_url"),
        file_name=_non_blank(details, "filename"),
        file_size=_positive_int(details, "file_size"),
    )


class WorkshopDetailsClient:
    """Looks up item metadata. Every failure is a miss (None), never an exception."""

    def __init__(self, session: Optional[requests.Session] = None, timeout=REQUEST_TIMEOUT):
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = timeout

    def get_details(self, published_file_id: int) -> Optional[WorkshopItemDetails]:
        try:
            response = self.session.post(
                DETAILS_URL,
                data={"itemcount": "1", "publishedfileids[0]": str(published_file_id)},
                timeout=self.timeout,
            )
            if not response.ok:
                logger.debug(f"Details lookup for {published_file_id} returned HTTP {response.status_code}")
                return None
            details = parse_details_response(published_file_id, response.json())
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"Details lookup for {published_file_id} failed: {type(e).__name__}: {e}")
            return None

        if details is None:
            logger.debug(f"Details lookup for {published_file_id} returned no usable entry")
        return details

    def close(self) -> None:
        if self._owns_session:
            self.session.close()
