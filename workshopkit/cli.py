"""Command-line entry point: ``workshopkit download|publish|delete|workshop|config``.

The requested operation runs on a worker thread. The main thread answers
SteamCMD prompts from the terminal and turns Ctrl-C into cancellation.
"""

import argparse
import getpass
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional

from tqdm import tqdm

from workshopkit import __version__
import workshopkit.config.settings  # noqa: F401  registers the settings tabs
from workshopkit.core.config import config
from workshopkit.core.errors import InvalidWorkshopInput, OperationCancelled, WorkshopError
from workshopkit.core.logger import setup_logger
from workshopkit.core.models import (
    GARRYS_MOD_APP_ID,
    DownloadRequest,
    NamingOptions,
    PromptKind,
    PublishRequest,
    Visibility,
)
from workshopkit.core.settings_registry import (
    find_field,
    get_all_settings_tabs,
    get_setting_value,
    get_settings_tab,
    is_value_from_env,
    load_config_file,
    parse_field_value,
    update_settings,
)
from workshopkit.process.prompts import PromptChannel
from workshopkit.workshop.downloader import WorkshopDownloader
from workshopkit.workshop.ids import parse_published_file_id
from workshopkit.workshop.publisher import WorkshopPublisher

logger = setup_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130

_POLL_SECONDS = 0.2


def _visibility(value: str) -> Visibility:
    try:
        return Visibility.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _setting(value: Optional[bool], key: str, default: bool = False) -> bool:
    """Explicit command-line flags win over configured defaults."""
    if value is not None:
        return value
    return bool(config.get(key, default))


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None


class ConsoleReporter:
    """Progress bar, status lines and child output on the terminal."""

    def __init__(self):
        self._bar: Optional[tqdm] = None
        self._lock = threading.Lock()

    def log(self, line: str) -> None:
        tqdm.write(line, file=sys.stdout)

    def status(self, status: str, message: Optional[str] = None) -> None:
        if message:
            tqdm.write(message, file=sys.stderr)
        if status == "complete":
            self.close()

    def progress(self, percent: float) -> None:
        with self._lock:
            if self._bar is None:
                self._bar = tqdm(total=100, unit="%", bar_format="{l_bar}{bar}| {n:.0f}%", leave=False)
            self._bar.n = max(0.0, min(100.0, percent))
            self._bar.refresh()

    def close(self) -> None:
        with self._lock:
            if self._bar is not None:
                self._bar.close()
                self._bar = None


def _read_prompt_answer(kind: PromptKind, message: str) -> str:
    if kind == PromptKind.CREDENTIAL:
        return getpass.getpass(f"{message} ")
    return input(f"{message} ")


def run_operation(operation: Callable[[threading.Event], object], channel: PromptChannel, cancel_flag: threading.Event):
    """Run ``operation`` on a worker thread, serving prompts until it finishes."""
    outcome = {}

    def target() -> None:
        try:
            outcome["result"] = operation(cancel_flag)
        except BaseException as e:
            outcome["error"] = e

    worker = threading.Thread(target=target, name="workshopkit-operation", daemon=True)
    worker.start()

    while worker.is_alive():
        try:
            prompt = channel.wait_for_prompt(timeout=_POLL_SECONDS)
            if prompt is not None and not cancel_flag.is_set():
                channel.respond(_read_prompt_answer(prompt.kind, prompt.message))
            worker.join(_POLL_SECONDS)
        except (KeyboardInterrupt, EOFError):
            if not cancel_flag.is_set():
                tqdm.write("Cancelling...", file=sys.stderr)
            cancel_flag.set()
            channel.abandon()

    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")


# ----------------------------------------------------------------------
# Subcommands
# ----------------------------------------------------------------------


def cmd_download(args, reporter: ConsoleReporter, channel: PromptChannel, cancel_flag: threading.Event) -> int:
    request = DownloadRequest(
        published_file_id=parse_published_file_id(args.id),
        output_dir=Path(args.out).expanduser(),
        app_id=args.appid or 0,
        steam_root=_optional_path(args.steam_root),
        naming=NamingOptions(
            include_title=args.with_title,
            include_id=not args.no_id,
            append_updated_timestamp=args.append_updated,
            replace_spaces_with_underscores=not args.keep_spaces,
        ),
        fetch_details=_setting(args.fetch_details, "FETCH_DETAILS") or args.with_title or args.append_updated,
        convert=_setting(args.convert, "CONVERT_DOWNLOADS", True),
        overwrite=_setting(args.overwrite, "OVERWRITE_EXISTING"),
        use_steampipe=_setting(args.steampipe, "USE_STEAMPIPE_WHEN_NOT_CACHED") or args.steampipe_best_effort,
        steampipe_best_effort=_setting(args.steampipe_best_effort or None, "STEAMPIPE_BEST_EFFORT"),
        use_steamcmd=_setting(args.steamcmd_fallback, "USE_STEAMCMD_WHEN_NOT_CACHED"),
        steamcmd_path=_optional_path(args.steamcmd),
        steamcmd_install_dir=_optional_path(args.steamcmd_install),
        steamcmd_username=args.steamcmd_user,
    )

    def operation(flag: threading.Event):
        with WorkshopDownloader(prompt_resolver=channel, log_sink=reporter.log) as downloader:
            return downloader.download(request, reporter.progress, reporter.status, flag)

    result = run_operation(operation, channel, cancel_flag)
    reporter.close()
    print(f"Source: {result.source.value} ({result.source_locator})")
    print(f"Output: {result.output_path}")
    return EXIT_OK


def cmd_publish(args, reporter: ConsoleReporter, channel: PromptChannel, cancel_flag: threading.Event) -> int:
    visibility = args.visibility
    if visibility is None:
        configured = config.get("DEFAULT_VISIBILITY", "private")
        try:
            visibility = Visibility.parse(configured)
        except ValueError as e:
            raise InvalidWorkshopInput(f"DEFAULT_VISIBILITY: {e}") from e
    content_tags = _csv(args.content_tags)
    tags = _csv(args.tags)
    if not tags and args.appid == GARRYS_MOD_APP_ID:
        tags = ([args.content_type] if args.content_type else []) + content_tags

    request = PublishRequest(
        app_id=args.appid,
        content_path=Path(args.content).expanduser(),
        preview_path=Path(args.preview).expanduser(),
        title=args.title,
        description=args.description,
        change_note=args.change_note,
        published_file_id=parse_published_file_id(args.published_id) if args.published_id else 0,
        visibility=visibility,
        tags=tags,
        content_type=args.content_type,
        content_tags=content_tags,
        stage_clean=args.stage_clean,
        pack_vpk=args.pack_vpk,
        vpk_multi_file=args.vpk_multi_file,
        use_steampipe=args.steampipe,
        steamcmd_path=_optional_path(args.steamcmd),
        steamcmd_username=args.steamcmd_user,
        vdf_path=_optional_path(args.vdf),
    )

    def operation(flag: threading.Event):
        publisher = WorkshopPublisher(prompt_resolver=channel, log_sink=reporter.log)
        return publisher.publish(request, reporter.progress, reporter.status, flag)

    result = run_operation(operation, channel, cancel_flag)
    reporter.close()
    print(f"PublishedFileId: {result.published_file_id}")
    if result.vdf_path:
        print(f"VDF: {result.vdf_path}")
    return EXIT_OK


def cmd_delete(args, reporter: ConsoleReporter, channel: PromptChannel, cancel_flag: threading.Event) -> int:
    published_file_id = parse_published_file_id(args.published_id)

    def operation(flag: threading.Event):
        return WorkshopPublisher(log_sink=reporter.log).delete(args.appid, published_file_id, flag)

    result = run_operation(operation, channel, cancel_flag)
    print(f"Deleted: {result.published_file_id}")
    return EXIT_OK


def cmd_list(args, reporter: ConsoleReporter, channel: PromptChannel, cancel_flag: threading.Event) -> int:
    def operation(flag: threading.Event):
        return WorkshopPublisher(log_sink=reporter.log).list_published(args.appid, args.page, flag)

    result = run_operation(operation, channel, cancel_flag)
    print(f"Page {result.page}: {result.returned} of {result.total_matching} item(s)")
    for item in result.items:
        visibility = item.visibility.cli_value if item.visibility else "unknown"
        updated = item.updated_at.isoformat() if item.updated_at else "-"
        print(f"{item.published_file_id}\t{visibility}\t{updated}\t{item.title}")
    return EXIT_OK


def cmd_quota(args, reporter: ConsoleReporter, channel: PromptChannel, cancel_flag: threading.Event) -> int:
    def operation(flag: threading.Event):
        return WorkshopPublisher(log_sink=reporter.log).quota(args.appid, flag)

    result = run_operation(operation, channel, cancel_flag)
    print(f"Total: {result.total_bytes} bytes")
    print(f"Used: {result.used_bytes} bytes")
    print(f"Available: {result.available_bytes} bytes")
    return EXIT_OK


def _value_source(field, file_values) -> str:
    if is_value_from_env(field):
        return "env"
    if field.key in file_values:
        return "file"
    return "default"


def cmd_config_show(args, reporter: ConsoleReporter, channel: PromptChannel, cancel_flag: threading.Event) -> int:
    if args.tab:
        tab = get_settings_tab(args.tab)
        if tab is None:
            raise InvalidWorkshopInput(f"Unknown settings tab: {args.tab}")
        tabs = [tab]
    else:
        tabs = get_all_settings_tabs()

    file_values = load_config_file()
    for tab in tabs:
        print(f"[{tab.name}] {tab.display_name}")
        for field in tab.fields:
            value = get_setting_value(field, file_values)
            print(f"  {field.key} = {'' if value is None else value} ({_value_source(field, file_values)})")
    return EXIT_OK


def cmd_config_set(args, reporter: ConsoleReporter, channel: PromptChannel, cancel_flag: threading.Event) -> int:
    found = find_field(args.key)
    if found is None:
        raise InvalidWorkshopInput(f"Unknown setting: {args.key}")
    tab, field = found
    try:
        value = parse_field_value(field, args.value)
    except ValueError as e:
        raise InvalidWorkshopInput(f"{args.key}: {e}") from e

    result = update_settings(tab.name, {args.key: value})
    if not result["updated"]:
        print(f"Error: {result['message']}", file=sys.stderr)
        return EXIT_FAILED
    print(f"{args.key} = {value}")
    return EXIT_OK


# ----------------------------------------------------------------------
# Parser
# ----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workshopkit",
        description="Download and publish Steam Workshop items",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    download = subparsers.add_parser("download", help="Copy a Workshop item into a folder")
    download.add_argument("--id", required=True, help="Published file id or Workshop URL")
    download.add_argument("--out", required=True, help="Output folder")
    download.add_argument("--appid", type=int, help="App the item belongs to")
    download.add_argument("--steam-root", help="Steam installation to search for cached content")
    download.add_argument("--with-title", action="store_true", help="Include the item title in the output name")
    download.add_argument("--no-id", action="store_true", help="Leave the published file id out of the output name")
    download.add_argument("--fetch-details", action="store_true", default=None, help="Look up item metadata")
    download.add_argument("--append-updated", action="store_true", help="Append the last-updated timestamp")
    download.add_argument("--keep-spaces", action="store_true", help="Keep spaces in output names")
    download.add_argument("--no-convert", dest="convert", action="store_false", default=None,
                          help="Do not extract .zip or decompress LZMA payloads")
    download.add_argument("--overwrite", action="store_true", default=None, help="Replace existing output")
    download.add_argument("--steamworks", "--steampipe", dest="steampipe", action="store_true", default=None,
                          help="Download through the SteamPipe helper when not cached")
    download.add_argument("--steamworks-best-effort", dest="steampipe_best_effort", action="store_true",
                          help="Like --steampipe, but continue when the helper fails")
    download.add_argument("--steamcmd-fallback", action="store_true", default=None,
                          help="Download through SteamCMD when not cached")
    download.add_argument("--steamcmd", help="steamcmd executable or folder")
    download.add_argument("--steamcmd-user", help="SteamCMD login (anonymous when omitted)")
    download.add_argument("--steamcmd-install", help="Folder SteamCMD downloads into")
    download.set_defaults(handler=cmd_download)

    publish = subparsers.add_parser("publish", help="Create or update a Workshop item")
    publish.add_argument("--appid", type=int, required=True)
    publish.add_argument("--content", required=True, help="Content folder or single file")
    publish.add_argument("--preview", required=True, help="Preview image")
    publish.add_argument("--title", required=True)
    publish.add_argument("--description", required=True)
    publish.add_argument("--change-note", required=True)
    publish.add_argument("--published-id", help="Existing item to update")
    publish.add_argument("--visibility", type=_visibility, help="public, friends, private or unlisted")
    publish.add_argument("--tags", help="Comma-separated Workshop tags")
    publish.add_argument("--content-type", help="Garry's Mod addon type")
    publish.add_argument("--content-tags", help="Comma-separated Garry's Mod addon tags (at most 2)")
    publish.add_argument("--pack-vpk", action="store_true", help="Pack folder content into a .vpk first")
    publish.add_argument("--vpk-multi-file", action="store_true", help="Pack a split _dir.vpk archive")
    publish.add_argument("--stage-clean", action="store_true", help="Skip VCS and build folders when staging")
    publish.add_argument("--steamworks", "--steampipe", dest="steampipe", action="store_true",
                         help="Upload through the SteamPipe helper instead of SteamCMD")
    publish.add_argument("--steamcmd", help="steamcmd executable or folder")
    publish.add_argument("--steamcmd-user", help="SteamCMD login")
    publish.add_argument("--vdf", help="Where to write the workshop_build_item VDF")
    publish.set_defaults(handler=cmd_publish)

    delete = subparsers.add_parser("delete", help="Delete a Workshop item (SteamPipe)")
    delete.add_argument("--appid", type=int, required=True)
    delete.add_argument("--published-id", required=True)
    delete.add_argument("--steampipe", "--steamworks", action="store_true", help="Accepted for symmetry; delete always uses SteamPipe")
    delete.set_defaults(handler=cmd_delete)

    workshop = subparsers.add_parser("workshop", help="Inspect your Workshop items (SteamPipe)")
    workshop_commands = workshop.add_subparsers(dest="workshop_command", required=True)

    list_parser = workshop_commands.add_parser("list", help="List items you published")
    list_parser.add_argument("--appid", type=int, required=True)
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.set_defaults(handler=cmd_list)

    quota_parser = workshop_commands.add_parser("quota", help="Show Remote Storage quota")
    quota_parser.add_argument("--appid", type=int, required=True)
    quota_parser.set_defaults(handler=cmd_quota)

    config_parser = subparsers.add_parser("config", help="Show or change saved settings")
    config_commands = config_parser.add_subparsers(dest="config_command", required=True)

    show_parser = config_commands.add_parser("show", help="Show every setting and where its value comes from")
    show_parser.add_argument("--tab", help="Only show one tab (steam, workshop, network)")
    show_parser.set_defaults(handler=cmd_config_show)

    set_parser = config_commands.add_parser("set", help="Save a setting to settings.json")
    set_parser.add_argument("key", help="Setting name, e.g. GMAD_PATH")
    set_parser.add_argument("value")
    set_parser.set_defaults(handler=cmd_config_set)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    reporter = ConsoleReporter()
    channel = PromptChannel.from_config()
    cancel_flag = threading.Event()

    try:
        return args.handler(args, reporter, channel, cancel_flag)
    except OperationCancelled as e:
        print(f"Cancelled: {e}", file=sys.stderr)
        return EXIT_CANCELLED
    except WorkshopError as e:
        logger.debug(f"{args.command} failed: {e!r}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        reporter.close()


if __name__ == "__main__":
    sys.exit(main())
