"""Process launch flags and process-tree termination."""

import os
import signal
import subprocess
from typing import Any, Dict

from workshopkit.core.logger import setup_logger

logger = setup_logger(__name__)

KILL_WAIT_SECONDS = 5.0


def tree_popen_kwargs() -> Dict[str, Any]:
    """Popen arguments that put the child in its own process group so the whole tree can be killed."""
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def kill_process_tree(process: subprocess.Popen) -> None:
    """Forcibly terminate ``process`` and every descendant it started."""
    pid = process.pid
    if os.name == "nt":
        try:
            subprocess.run(
                ["taskkill", "/PID", str(pid), "/T", "/F"],
                capture_output=True,
                timeout=KILL_WAIT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"taskkill failed for pid {pid}: {e}")
        if process.poll() is None:
            process.kill()
    else:
        # start_new_session made the child a group leader; the group id is its pid.
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError as e:
            logger.warning(f"Could not kill process group {pid}: {e}")
            if process.poll() is None:
                process.kill()

    try:
        process.wait(timeout=KILL_WAIT_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {pid} did not exit within {KILL_WAIT_SECONDS}s of being killed")
