"""Tests for the gmad and vpk packer wrappers, driven by stand-in tools."""

import os
import sys
import threading
import time
from pathlib import Path

import pytest

from workshopkit.core.errors import LaunchFailure, OperationCancelled, PackError
from workshopkit.workshop.packers import GmadPacker, VpkToolPacker, resolve_tool, run_tool

pytestmark = pytest.mark.skipif(os.name == "nt", reason="stand-in tools are shebang scripts")

FAKE_GMAD = """
import pathlib, sys
args = sys.argv[1:]
folder = pathlib.Path(args[args.index("-folder") + 1])
out = pathlib.Path(args[args.index("-out") + 1])
names = sorted(p.relative_to(folder).as_posix() for p in folder.rglob("*") if p.is_file())
print("Packing", len(names), "files")
out.write_text("GMAD\\n" + "\\n".join(names))
"""

FAKE_VPK = """
import pathlib, sys
args = sys.argv[1:]
if args[0] == "-M":
    prefix = args[2]
    listing = pathlib.Path(args[3][1:]).read_text().split()
    pathlib.Path(prefix + "_dir.vpk").write_text("\\n".join(listing))
    pathlib.Path(prefix + "_000.vpk").write_text("chunk")
else:
    pathlib.Path(args[0] + ".vpk").write_text("vpk")
"""

FAILING_TOOL = """
import sys
print("something went wrong")
sys.exit(3)
"""

SLOW_TOOL = """
import time
time.sleep(30)
"""


def _tool(tmp_path, name, body):
    path = tmp_path / "tools" / name
    path.parent.mkdir(exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(0o755)
    return path


def _content(tmp_path):
    folder = tmp_path / "my_addon"
    (folder / "lua").mkdir(parents=True)
    (folder / "lua" / "init.lua").write_text("print('hi')")
    (folder / "addon.json").write_text("{}")
    return folder


# =============================================================================
# Tool resolution and execution
# =============================================================================


class TestResolveTool:
    def test_explicit_file(self, tmp_path):
        tool = _tool(tmp_path, "gmad", FAKE_GMAD)

        assert resolve_tool(str(tool), "gmad", "gmad") == tool.resolve()

    def test_default_on_path(self, tmp_path, monkeypatch):
        tool = _tool(tmp_path, "gmad", FAKE_GMAD)
        monkeypatch.setenv("PATH", str(tool.parent))

        assert resolve_tool(None, "gmad", "gmad") == tool

    def test_missing(self, tmp_path):
        with pytest.raises(LaunchFailure, match="gmad not found"):
            resolve_tool(str(tmp_path / "missing-gmad"), "gmad", "gmad")


class TestRunTool:
    def test_returns_output(self, tmp_path):
        tool = _tool(tmp_path, "gmad", FAKE_GMAD)
        folder = _content(tmp_path)

        output = run_tool(
            [str(tool), "create", "-folder", str(folder), "-out", str(tmp_path / "o.gma")], "gmad"
        )

        assert "Packing 2 files" in output

    def test_non_zero_exit(self, tmp_path):
        tool = _tool(tmp_path, "broken", FAILING_TOOL)

        with pytest.raises(PackError) as exc_info:
            run_tool([str(tool)], "gmad")

        assert "exit code 3" in str(exc_info.value)
        assert "something went wrong" in str(exc_info.value)

    def test_cancel_kills_tool(self, tmp_path):
        tool = _tool(tmp_path, "slow", SLOW_TOOL)
        flag = threading.Event()
        timer = threading.Timer(0.5, flag.set)
        timer.start()
        started = time.monotonic()

        try:
            with pytest.raises(OperationCancelled):
                run_tool([str(tool)], "vpk", cancel_flag=flag)
        finally:
            timer.cancel()

        assert time.monotonic() - started < 15


# =============================================================================
# Packers
# =============================================================================


class TestGmadPacker:
    def test_pack(self, tmp_path):
        tool = _tool(tmp_path, "gmad", FAKE_GMAD)
        folder = _content(tmp_path)
        output = tmp_path / "out" / "My Addon.gma"

        result = GmadPacker(str(tool)).pack(folder, output)

        assert result == output
        assert output.read_text().splitlines() == ["GMAD", "addon.json", "lua/init.lua"]

    def test_missing_output_is_pack_error(self, tmp_path):
        tool = _tool(tmp_path, "gmad", "print('nothing written')")

        with pytest.raises(PackError, match="Failed to create GMA"):
            GmadPacker(str(tool)).pack(_content(tmp_path), tmp_path / "out.gma")

    def test_from_config(self, monkeypatch):
        from workshopkit.core.config import config

        monkeypatch.setattr(config, "get", lambda key, default=None: "/opt/gmad" if key == "GMAD_PATH" else default)

        assert GmadPacker.from_config().tool_path == "/opt/gmad"


class TestVpkToolPacker:
    def test_single_file(self, tmp_path):
        tool = _tool(tmp_path, "vpk", FAKE_VPK)
        folder = _content(tmp_path)
        output = tmp_path / "out" / "pack.vpk"

        VpkToolPacker(str(tool)).pack(folder, output)

        assert output.read_text() == "vpk"
        assert not (tmp_path / "my_addon.vpk").exists()

    def test_multi_file(self, tmp_path):
        tool = _tool(tmp_path, "vpk", FAKE_VPK)
        folder = _content(tmp_path)
        output = tmp_path / "out" / "pack_dir.vpk"

        VpkToolPacker(str(tool), multi_file=True).pack(folder, output)

        assert output.read_text().split("\n") == ["addon.json", str(Path("lua") / "init.lua")]
        assert (tmp_path / "out" / "pack_000.vpk").read_text() == "chunk"
        assert not list(folder.glob("pack_*.vpk"))
        assert not list(tmp_path.glob("workshopkit-vpk-filelist-*.txt"))

    def test_multi_file_requires_dir_suffix(self, tmp_path):
        tool = _tool(tmp_path, "vpk", FAKE_VPK)

        with pytest.raises(PackError, match="_dir.vpk"):
            VpkToolPacker(str(tool), multi_file=True).pack(_content(tmp_path), tmp_path / "pack.vpk")

    def test_rejects_other_extensions(self, tmp_path):
        with pytest.raises(PackError, match=".vpk only"):
            VpkToolPacker("vpk").pack(tmp_path, tmp_path / "pack.zip")
