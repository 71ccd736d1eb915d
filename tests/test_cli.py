"""Tests for the command-line entry point."""

import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from workshopkit import cli
from workshopkit.core.errors import OperationCancelled, WorkshopItemNotFound
from workshopkit.core.models import (
    HelperDeleteResult,
    HelperListResult,
    HelperQuotaResult,
    PayloadKind,
    PromptKind,
    PublishedItem,
    PublishResult,
    SourceKind,
    TransferResult,
    Visibility,
)
from workshopkit.process.prompts import PromptChannel, build_prompt


@pytest.fixture
def settings(monkeypatch):
    """Configured values seen by the CLI; everything else falls back to defaults."""
    from workshopkit.core.config import config

    values = {}
    monkeypatch.setattr(config, "get", lambda key, default=None: values.get(key, default))
    return values


@pytest.fixture
def downloader_cls():
    with patch("workshopkit.cli.WorkshopDownloader") as cls:
        yield cls


@pytest.fixture
def publisher_cls():
    with patch("workshopkit.cli.WorkshopPublisher") as cls:
        yield cls


def _downloader(cls, result=None, error=None):
    downloader = cls.return_value.__enter__.return_value
    if error:
        downloader.download.side_effect = error
    else:
        downloader.download.return_value = result
    return downloader


def _transfer(tmp_path):
    return TransferResult(
        published_file_id=123,
        app_id=4000,
        source=SourceKind.CACHE,
        source_locator="/steam/content/4000/123/addon.gma",
        output_path=tmp_path / "123.gma",
        output_kind=PayloadKind.FILE,
    )


# =============================================================================
# Parser
# =============================================================================


class TestParser:
    @pytest.mark.parametrize(
        "argv",
        [
            [],
            ["download", "--out", "x"],
            ["publish", "--appid", "4000"],
            ["publish", "--appid", "4000", "--content", "c", "--preview", "p", "--title", "t",
             "--description", "d", "--change-note", "n", "--visibility", "secret"],
            ["workshop"],
            ["workshop", "list"],
        ],
    )
    def test_usage_errors(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)

        assert exc_info.value.code == cli.EXIT_USAGE

    def test_flags_default_to_unset(self):
        args = cli.build_parser().parse_args(["download", "--id", "1", "--out", "o"])

        assert args.fetch_details is None
        assert args.convert is None
        assert args.overwrite is None
        assert args.steampipe is None
        assert args.steamcmd_fallback is None

    def test_visibility_parsed(self):
        args = cli.build_parser().parse_args([
            "publish", "--appid", "550", "--content", "c", "--preview", "p", "--title", "t",
            "--description", "d", "--change-note", "n", "--visibility", "friends",
        ])

        assert args.visibility == Visibility.FRIENDS_ONLY


# =============================================================================
# download
# =============================================================================


class TestDownloadCommand:
    def test_success(self, tmp_path, settings, downloader_cls, capsys):
        downloader = _downloader(downloader_cls, _transfer(tmp_path))

        code = cli.main([
            "download",
            "--id", "https://steamcommunity.com/sharedfiles/filedetails/?id=123",
            "--out", str(tmp_path),
            "--appid", "4000",
            "--with-title",
        ])

        assert code == cli.EXIT_OK
        request = downloader.download.call_args.args[0]
        assert request.published_file_id == 123
        assert request.app_id == 4000
        assert request.output_dir == Path(str(tmp_path))
        assert request.naming.include_title is True
        assert request.fetch_details is True
        assert request.convert is True
        assert request.use_steampipe is False
        out = capsys.readouterr().out
        assert "Source: cache" in out
        assert f"Output: {tmp_path / '123.gma'}" in out

    def test_configured_defaults(self, tmp_path, settings, downloader_cls):
        settings.update({"USE_STEAMCMD_WHEN_NOT_CACHED": True, "OVERWRITE_EXISTING": True, "FETCH_DETAILS": False})
        downloader = _downloader(downloader_cls, _transfer(tmp_path))

        cli.main(["download", "--id", "123", "--out", str(tmp_path), "--no-convert"])

        request = downloader.download.call_args.args[0]
        assert request.use_steamcmd is True
        assert request.overwrite is True
        assert request.fetch_details is False
        assert request.convert is False

    def test_best_effort_enables_steampipe(self, tmp_path, settings, downloader_cls):
        downloader = _downloader(downloader_cls, _transfer(tmp_path))

        cli.main(["download", "--id", "123", "--out", str(tmp_path), "--steamworks-best-effort"])

        request = downloader.download.call_args.args[0]
        assert request.use_steampipe is True
        assert request.steampipe_best_effort is True

    def test_not_found(self, tmp_path, settings, downloader_cls, capsys):
        _downloader(downloader_cls, error=WorkshopItemNotFound(4000, 123))

        code = cli.main(["download", "--id", "123", "--out", str(tmp_path), "--appid", "4000"])

        assert code == cli.EXIT_FAILED
        assert "Error: Workshop item 123 (app 4000)" in capsys.readouterr().err

    def test_cancelled(self, tmp_path, settings, downloader_cls, capsys):
        _downloader(downloader_cls, error=OperationCancelled("Operation cancelled"))

        code = cli.main(["download", "--id", "123", "--out", str(tmp_path)])

        assert code == cli.EXIT_CANCELLED
        assert "Cancelled" in capsys.readouterr().err

    def test_bad_id(self, tmp_path, settings, downloader_cls):
        code = cli.main(["download", "--id", "not-an-id", "--out", str(tmp_path)])

        assert code == cli.EXIT_FAILED
        downloader_cls.assert_not_called()


# =============================================================================
# publish / delete / workshop
# =============================================================================


def _publish_argv(tmp_path, *extra):
    return [
        "publish",
        "--content", str(tmp_path / "addon"),
        "--preview", str(tmp_path / "preview.png"),
        "--title", "My Addon",
        "--description", "Does things",
        "--change-note", "First",
        *extra,
    ]


class TestPublishCommand:
    def test_gmod_tags_derived_from_addon_type(self, tmp_path, settings, publisher_cls, capsys):
        publisher = publisher_cls.return_value
        publisher.publish.return_value = PublishResult(app_id=4000, published_file_id=42, vdf_path=tmp_path / "x.vdf")

        code = cli.main(_publish_argv(
            tmp_path, "--appid", "4000", "--content-type", "map", "--content-tags", "fun, build", "--steamcmd-user", "me"
        ))

        assert code == cli.EXIT_OK
        request = publisher.publish.call_args.args[0]
        assert request.tags == ["map", "fun", "build"]
        assert request.content_tags == ["fun", "build"]
        assert request.visibility == Visibility.PRIVATE
        assert request.steamcmd_username == "me"
        out = capsys.readouterr().out
        assert "PublishedFileId: 42" in out
        assert "VDF:" in out

    def test_explicit_tags_kept(self, tmp_path, settings, publisher_cls):
        publisher = publisher_cls.return_value
        publisher.publish.return_value = PublishResult(app_id=550, published_file_id=1)

        cli.main(_publish_argv(tmp_path, "--appid", "550", "--tags", "Maps,,Co-op", "--published-id", "77", "--steampipe"))

        request = publisher.publish.call_args.args[0]
        assert request.tags == ["Maps", "Co-op"]
        assert request.published_file_id == 77
        assert request.use_steampipe is True

    def test_configured_visibility(self, tmp_path, settings, publisher_cls):
        settings["DEFAULT_VISIBILITY"] = "unlisted"
        publisher = publisher_cls.return_value
        publisher.publish.return_value = PublishResult(app_id=550, published_file_id=1)

        cli.main(_publish_argv(tmp_path, "--appid", "550"))

        assert publisher.publish.call_args.args[0].visibility == Visibility.UNLISTED

    def test_bad_configured_visibility(self, tmp_path, settings, publisher_cls, capsys):
        settings["DEFAULT_VISIBILITY"] = "everyone"

        code = cli.main(_publish_argv(tmp_path, "--appid", "550"))

        assert code == cli.EXIT_FAILED
        assert "DEFAULT_VISIBILITY" in capsys.readouterr().err
        publisher_cls.return_value.publish.assert_not_called()


class TestManagementCommands:
    def test_delete(self, settings, publisher_cls, capsys):
        publisher_cls.return_value.delete.return_value = HelperDeleteResult(app_id=4000, published_file_id=55)

        code = cli.main(["delete", "--appid", "4000", "--published-id", "55"])

        assert code == cli.EXIT_OK
        assert publisher_cls.return_value.delete.call_args.args[:2] == (4000, 55)
        assert "Deleted: 55" in capsys.readouterr().out

    def test_list(self, settings, publisher_cls, capsys):
        publisher_cls.return_value.list_published.return_value = HelperListResult(
            app_id=4000,
            page=1,
            returned=1,
            total_matching=1,
            items=[
                PublishedItem(
                    published_file_id=10,
                    title="First",
                    updated_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
                    visibility=Visibility.FRIENDS_ONLY,
                )
            ],
        )

        cli.main(["workshop", "list", "--appid", "4000", "--page", "1"])

        out = capsys.readouterr().out
        assert "Page 1: 1 of 1 item(s)" in out
        assert "10\tfriends\t2024-01-02T00:00:00+00:00\tFirst" in out

    def test_quota(self, settings, publisher_cls, capsys):
        publisher_cls.return_value.quota.return_value = HelperQuotaResult(
            app_id=4000, total_bytes=100, available_bytes=40, used_bytes=60
        )

        cli.main(["workshop", "quota", "--appid", "4000"])

        out = capsys.readouterr().out
        assert "Used: 60 bytes" in out
        assert "Available: 40 bytes" in out


# =============================================================================
# Prompt serving
# =============================================================================


class TestRunOperation:
    def test_prompt_answered_from_terminal(self):
        channel = PromptChannel()
        flag = threading.Event()

        def operation(cancel_flag):
            return channel(build_prompt(PromptKind.ONE_TIME_CODE), cancel_flag)

        with patch("workshopkit.cli.input", create=True, return_value="ABCDE") as fake_input:
            result = cli.run_operation(operation, channel, flag)

        assert result == "ABCDE"
        fake_input.assert_called_once_with("Steam Guard code: ")

    def test_password_read_without_echo(self):
        channel = PromptChannel()

        def operation(cancel_flag):
            return channel(build_prompt(PromptKind.CREDENTIAL), cancel_flag)

        with patch("workshopkit.cli.getpass.getpass", return_value="hunter2") as fake_getpass:
            result = cli.run_operation(operation, channel, threading.Event())

        assert result == "hunter2"
        fake_getpass.assert_called_once()

    def test_interrupt_cancels(self):
        channel = PromptChannel()
        flag = threading.Event()

        def operation(cancel_flag):
            answer = channel(build_prompt(PromptKind.ONE_TIME_CODE), cancel_flag)
            return answer, cancel_flag.is_set()

        with patch("workshopkit.cli.input", create=True, side_effect=KeyboardInterrupt):
            result = cli.run_operation(operation, channel, flag)

        assert result == (None, True)
        assert flag.is_set()

    def test_errors_reraised(self):
        def operation(cancel_flag):
            raise WorkshopItemNotFound(1, 2)

        with pytest.raises(WorkshopItemNotFound):
            cli.run_operation(operation, MagicMock(wait_for_prompt=MagicMock(return_value=None)), threading.Event())


# =============================================================================
# config
# =============================================================================


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    from workshopkit.core.config import config

    monkeypatch.setattr("workshopkit.config.env.CONFIG_DIR", tmp_path)
    for key in ("GMAD_PATH", "VPK_TOOL_PATH", "MAX_DOWNLOAD_RETRIES", "DEFAULT_VISIBILITY"):
        monkeypatch.delenv(key, raising=False)
    config.refresh()
    yield tmp_path
    config.refresh()


class TestConfigCommand:
    def test_show_reports_sources(self, config_dir, monkeypatch, capsys):
        (config_dir / "settings.json").write_text('{"GMAD_PATH": "/opt/gmad"}', encoding="utf-8")
        monkeypatch.setenv("VPK_TOOL_PATH", "/env/vpk")

        code = cli.main(["config", "show", "--tab", "workshop"])

        assert code == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "[workshop] Workshop" in out
        assert "GMAD_PATH = /opt/gmad (file)" in out
        assert "VPK_TOOL_PATH = /env/vpk (env)" in out
        assert "DEFAULT_VISIBILITY = private (default)" in out
        assert "[steam]" not in out

    def test_show_unknown_tab(self, config_dir, capsys):
        assert cli.main(["config", "show", "--tab", "nope"]) == cli.EXIT_FAILED
        assert "Unknown settings tab" in capsys.readouterr().err

    def test_set_saves_typed_value(self, config_dir, capsys):
        code = cli.main(["config", "set", "MAX_DOWNLOAD_RETRIES", "5"])

        assert code == cli.EXIT_OK
        assert "MAX_DOWNLOAD_RETRIES = 5" in capsys.readouterr().out
        saved = (config_dir / "settings.json").read_text(encoding="utf-8")
        assert '"MAX_DOWNLOAD_RETRIES": 5' in saved

    def test_set_rejects_invalid_value(self, config_dir, capsys):
        code = cli.main(["config", "set", "DEFAULT_VISIBILITY", "everyone"])

        assert code == cli.EXIT_FAILED
        assert "DEFAULT_VISIBILITY" in capsys.readouterr().err
        assert not (config_dir / "settings.json").exists()

    def test_set_unknown_key(self, config_dir, capsys):
        assert cli.main(["config", "set", "NOPE", "1"]) == cli.EXIT_FAILED
        assert "Unknown setting: NOPE" in capsys.readouterr().err

    def test_set_shadowed_by_env(self, config_dir, monkeypatch, capsys):
        monkeypatch.setenv("GMAD_PATH", "/env/gmad")

        code = cli.main(["config", "set", "GMAD_PATH", "/opt/gmad"])

        assert code == cli.EXIT_FAILED
        assert "set via env" in capsys.readouterr().err
