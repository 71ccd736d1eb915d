"""Tests for the SteamPipe helper client and locator."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from workshopkit.core.errors import InvalidWorkshopInput, LaunchFailure, ProtocolViolation
from workshopkit.core.models import HelperEvent, Visibility
from workshopkit.workshop.steampipe import (
    HELPER_NAME,
    SteamPipeClient,
    SteamPipeLocator,
    find_helper,
    parse_visibility,
)


def _client():
    locator = MagicMock()
    locator.command.return_value = ["/opt/helper"]
    return SteamPipeClient(locator)


def _fake_invoke(payload, events=()):
    """Stand-in for invoke_helper that feeds ``events`` then resolves with ``payload``."""
    calls = []

    def invoke(command, args, expected_result_type, parse_result, on_event=None, log_sink=None, cancel_flag=None):
        calls.append({"command": command, "args": args, "expected": expected_result_type})
        for event in events:
            if on_event:
                on_event(event)
        return parse_result(payload)

    return invoke, calls


# =============================================================================
# Locator
# =============================================================================


class TestSteamPipeLocator:
    def test_finds_helper_in_directory(self, tmp_path):
        helper = tmp_path / HELPER_NAME
        helper.write_text("")

        assert find_helper(tmp_path) == helper.resolve()

    def test_missing_helper_is_launch_failure(self, tmp_path):
        locator = SteamPipeLocator(override=tmp_path / "nope", search_dirs=[tmp_path])

        with pytest.raises(LaunchFailure, match="SteamPipe helper not found"):
            locator.resolve()

    def test_dll_runs_through_dotnet(self, tmp_path):
        dll = tmp_path / f"{HELPER_NAME}.dll"
        dll.write_text("")

        command = SteamPipeLocator(override=dll, search_dirs=[]).command()

        assert command == ["dotnet", str(dll.resolve())]

    def test_resolution_is_cached_until_cleared(self, tmp_path):
        helper = tmp_path / HELPER_NAME
        helper.write_text("")
        locator = SteamPipeLocator(search_dirs=[tmp_path])

        assert locator.resolve() == helper.resolve()
        helper.unlink()
        assert locator.resolve() == helper.resolve()

        locator.clear()
        with pytest.raises(LaunchFailure):
            locator.resolve()


# =============================================================================
# Operations
# =============================================================================


class TestSteamPipeClient:
    def test_download(self):
        invoke, calls = _fake_invoke(
            {"type": "download_result", "appId": 4000, "publishedFileId": "123", "installFolder": "/x/y"},
            events=[HelperEvent("download_progress", {"bytesDownloaded": 50, "bytesTotal": 200})],
        )
        progress = []
        statuses = []

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            result = _client().download(
                4000, 123, progress_callback=progress.append, status_callback=lambda s, m: statuses.append(s)
            )

        assert (result.app_id, result.published_file_id, result.install_folder) == (4000, 123, "/x/y")
        assert calls[0]["args"] == ["download", "--appid", "4000", "--published-id", "123"]
        assert calls[0]["expected"] == "download_result"
        assert progress == [25.0]
        assert statuses == ["downloading"]

    def test_download_without_install_folder(self):
        invoke, _ = _fake_invoke({"type": "download_result", "appId": 4000, "installFolder": " "})

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            with pytest.raises(ProtocolViolation):
                _client().download(4000, 123)

    def test_publish_arguments(self, tmp_path):
        invoke, calls = _fake_invoke({"type": "publish_result", "appId": 550, "publishedFileId": 777})

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            result = _client().publish(
                550,
                tmp_path / "content",
                tmp_path / "preview.png",
                "Title",
                "Desc",
                "Notes",
                Visibility.FRIENDS_ONLY,
                tags=["Maps", "Co-op"],
            )

        assert result.published_file_id == 777
        args = calls[0]["args"]
        assert args[0] == "publish"
        assert args[args.index("--visibility") + 1] == "friends"
        assert args[args.index("--tags") + 1] == "Maps,Co-op"
        assert "--published-id" not in args

    def test_publish_zero_id_is_protocol_violation(self, tmp_path):
        invoke, _ = _fake_invoke({"type": "publish_result", "appId": 550, "publishedFileId": 0})

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            with pytest.raises(ProtocolViolation, match="PublishedFileId=0"):
                _client().publish(550, tmp_path, tmp_path / "p.png", "T", "D", "N", Visibility.PRIVATE)

    def test_list(self):
        payload = {
            "type": "list_result",
            "appId": 4000,
            "page": 2,
            "returned": 2,
            "totalMatching": 52,
            "items": [
                {
                    "publishedFileId": "10",
                    "title": "First",
                    "createdAt": 1600000000,
                    "updatedAt": 0,
                    "visibility": "k_ERemoteStoragePublishedFileVisibilityFriendsOnly",
                    "tags": ["Map", " ", 3],
                },
                {"publishedFileId": 0, "title": "dropped"},
                "garbage",
            ],
        }
        invoke, calls = _fake_invoke(payload)

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            result = _client().list_published(4000, page=2)

        assert calls[0]["args"] == ["list", "--appid", "4000", "--page", "2"]
        assert (result.page, result.returned, result.total_matching) == (2, 2, 52)
        assert [item.published_file_id for item in result.items] == [10]
        item = result.items[0]
        assert item.visibility == Visibility.FRIENDS_ONLY
        assert item.created_at == datetime.fromtimestamp(1600000000, tz=timezone.utc)
        assert item.updated_at is None
        assert item.tags == ["Map"]

    def test_list_rejects_page_zero(self):
        with pytest.raises(InvalidWorkshopInput):
            _client().list_published(4000, page=0)

    def test_quota_used_defaults_to_difference(self):
        invoke, _ = _fake_invoke({"type": "quota_result", "totalBytes": 1000, "availableBytes": 400})

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            result = _client().quota(4000)

        assert result.used_bytes == 600

    def test_delete(self):
        invoke, calls = _fake_invoke({"type": "delete_result"})

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            result = _client().delete(4000, 55)

        assert result.published_file_id == 55
        assert calls[0]["args"] == ["delete", "--appid", "4000", "--published-id", "55"]

    def test_log_sink_names_helper(self):
        invoke, _ = _fake_invoke({"type": "quota_result", "totalBytes": 1, "availableBytes": 1})
        lines = []
        locator = MagicMock()
        locator.command.return_value = ["dotnet", "/opt/WorkshopKit.SteamPipe.dll"]

        with patch("workshopkit.workshop.steampipe.invoke_helper", invoke):
            SteamPipeClient(locator, log_sink=lines.append).quota(1)

        assert lines == ["SteamPipe: using /opt/WorkshopKit.SteamPipe.dll"]


class TestParseVisibility:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Public", Visibility.PUBLIC),
            ("friends only", Visibility.FRIENDS_ONLY),
            ("UNLISTED", Visibility.UNLISTED),
            ("k_ERemoteStoragePublishedFileVisibilityPrivate", Visibility.PRIVATE),
            ("", None),
            ("weird", None),
        ],
    )
    def test_mapping(self, value, expected):
        assert parse_visibility(value) == expected


class TestVisibilityEnum:
    def test_parse_aliases(self):
        assert Visibility.parse("friendsonly") == Visibility.FRIENDS_ONLY
        assert Visibility.parse("Friends-Only") == Visibility.FRIENDS_ONLY
        assert Visibility.parse("public") == Visibility.PUBLIC

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            Visibility.parse("secret")

    def test_vdf_values(self):
        assert [v.value for v in Visibility] == [0, 1, 2, 3]
