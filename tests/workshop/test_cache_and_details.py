"""Tests for Steam library cache lookups and the item details client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from workshopkit.workshop.cache import (
    WorkshopCacheLocator,
    find_in_install_dir,
    find_steam_root,
    get_library_roots,
)
from workshopkit.workshop.details import DETAILS_URL, WorkshopDetailsClient, parse_details_response


def _content_dir(library_root, app_id, published_file_id):
    path = library_root / "steamapps" / "workshop" / "content" / str(app_id) / str(published_file_id)
    path.mkdir(parents=True)
    return path


# =============================================================================
# Library roots
# =============================================================================


class TestLibraryRoots:
    def test_root_only_without_library_file(self, tmp_path):
        assert get_library_roots(tmp_path) == [tmp_path.resolve()]

    def test_library_entries_are_added(self, tmp_path):
        steam = tmp_path / "steam"
        extra = tmp_path / "extra lib"
        legacy = tmp_path / "legacy"
        for path in (steam / "steamapps", extra, legacy):
            path.mkdir(parents=True)
        escaped_extra = str(extra).replace("\\", "\\\\")
        escaped_legacy = str(legacy).replace("\\", "\\\\")
        (steam / "steamapps" / "libraryfolders.vdf").write_text(
            '"libraryfolders"\n{\n'
            f'\t"0"\n\t{{\n\t\t"path"\t\t"{escaped_extra}"\n\t}}\n'
            f'\t"1"\t\t"{escaped_legacy}"\n'
            f'\t"2"\n\t{{\n\t\t"path"\t\t"{tmp_path / "missing"}"\n\t}}\n'
            "}\n"
        )

        roots = get_library_roots(steam)

        assert roots == [steam.resolve(), extra.resolve(), legacy.resolve()]

    def test_explicit_root_wins(self, tmp_path):
        assert find_steam_root(tmp_path) == tmp_path


# =============================================================================
# Cache lookups
# =============================================================================


class TestWorkshopCacheLocator:
    def test_exact_app(self, tmp_path):
        content = _content_dir(tmp_path, 4000, 123)

        hit = WorkshopCacheLocator(tmp_path).find(4000, 123)

        assert hit.app_id == 4000
        assert hit.content_dir == content.resolve()

    def test_unknown_app_is_a_miss(self, tmp_path):
        _content_dir(tmp_path, 4000, 123)

        assert WorkshopCacheLocator(tmp_path).find(0, 123) is None
        assert WorkshopCacheLocator(tmp_path).find(550, 123) is None

    def test_any_app(self, tmp_path):
        _content_dir(tmp_path, 730, 999)
        content = _content_dir(tmp_path, 4000, 123)
        (tmp_path / "steamapps" / "workshop" / "content" / "not-an-app").mkdir()

        hit = WorkshopCacheLocator(tmp_path).find_any_app(123)

        assert hit.app_id == 4000
        assert hit.content_dir == content.resolve()

    def test_no_steam_root(self):
        locator = WorkshopCacheLocator(None)

        assert locator.find(4000, 1) is None
        assert locator.find_any_app(1) is None

    def test_steamcmd_install_dir_layout(self, tmp_path):
        content = _content_dir(tmp_path, 4000, 123)

        assert find_in_install_dir(tmp_path, 4000, 123) == content
        assert find_in_install_dir(tmp_path, 4000, 456) is None


# =============================================================================
# Details
# =============================================================================


def _details_payload(**overrides):
    entry = {
        "publishedfileid": "123",
        "result": 1,
        "title": "Cool Map",
        "time_updated": 1700000000,
        "consumer_app_id": 4000,
        "file_url": "https://cdn.example.com/ugc/cool_map.gma",
        "filename": "maps/cool_map.gma",
        "file_size": "2048",
    }
    entry.update(overrides)
    return {"response": {"result": 1, "resultcount": 1, "publishedfiledetails": [entry]}}


class TestParseDetailsResponse:
    def test_full_entry(self):
        details = parse_details_response(123, _details_payload())

        assert details.title == "Cool Map"
        assert details.consumer_app_id == 4000
        assert details.file_url == "https://cdn.example.com/ugc/cool_map.gma"
        assert details.file_name == "maps/cool_map.gma"
        assert details.file_size == 2048
        assert details.updated_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_zero_and_blank_values_are_absent(self):
        details = parse_details_response(
            123, _details_payload(consumer_app_id=0, file_url="  ", file_size=0, time_updated="0")
        )

        assert details.consumer_app_id is None
        assert details.file_url is None
        assert details.file_size is None
        assert details.updated_at is None

    @pytest.mark.parametrize("data", [None, [], {}, {"response": {}}, {"response": {"publishedfiledetails": []}}])
    def test_unusable_payloads(self, data):
        assert parse_details_response(123, data) is None


class TestWorkshopDetailsClient:
    def test_posts_form_and_parses(self):
        session = MagicMock()
        session.post.return_value.ok = True
        session.post.return_value.json.return_value = _details_payload()

        details = WorkshopDetailsClient(session).get_details(123)

        assert details.title == "Cool Map"
        args, kwargs = session.post.call_args
        assert args[0] == DETAILS_URL
        assert kwargs["data"] == {"itemcount": "1", "publishedfileids[0]": "123"}

    def test_http_error_is_a_miss(self):
        session = MagicMock()
        session.post.return_value.ok = False
        session.post.return_value.status_code = 500

        assert WorkshopDetailsClient(session).get_details(123) is None

    def test_connection_error_is_a_miss(self):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("offline")

        assert WorkshopDetailsClient(session).get_details(123) is None

    def test_bad_json_is_a_miss(self):
        session = MagicMock()
        session.post.return_value.ok = True
        session.post.return_value.json.side_effect = ValueError("not json")

        assert WorkshopDetailsClient(session).get_details(123) is None

    def test_injected_session_is_not_closed(self):
        session = MagicMock()

        WorkshopDetailsClient(session).close()

        session.close.assert_not_called()
