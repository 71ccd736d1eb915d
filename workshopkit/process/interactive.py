"""Drive an interactive command-line tool (SteamCMD) that may ask for credentials.

Both output streams are pumped on their own threads. Every chunk read is
appended to a bounded rolling window that is scanned for password and
Steam Guard prompts; answers are written back to the child's stdin.
"""

from __future__ import annotations

import codecs
import subprocess
import threading
from pathlib import Path
from typing import IO, Callable, List, Optional, Sequence

from workshopkit.core.errors import (
    LaunchFailure,
    OperationCancelled,
    PromptExhausted,
    PromptRejected,
    WorkshopError,
)
from workshopkit.core.logger import setup_logger
from workshopkit.core.models import Prompt, PromptKind
from workshopkit.process.prompts import PromptResolver, build_prompt, detect_prompt
from workshopkit.process.tree import kill_process_tree, tree_popen_kwargs

logger = setup_logger(__name__)

CHUNK_SIZE = 4096
RECENT_TEXT_LIMIT = 16 * 1024
MAX_PROMPTS_PER_KIND = 3
_POLL_INTERVAL = 0.1

_ACKNOWLEDGEMENTS = {
    PromptKind.CREDENTIAL: "SteamCMD: password entered.",
    PromptKind.ONE_TIME_CODE: "SteamCMD: Steam Guard code entered.",
}

_EXHAUSTED_MESSAGES = {
    PromptKind.CREDENTIAL: "SteamCMD requested a password too many times.",
    PromptKind.ONE_TIME_CODE: "SteamCMD requested a Steam Guard code too many times.",
}


class InteractiveSession:
    """One run of an interactive tool. Create a new session per invocation."""

    def __init__(
        self,
        executable: Path,
        args: Sequence[str],
        working_dir: Optional[Path] = None,
        log_sink: Optional[Callable[[str], None]] = None,
        prompt_resolver: Optional[PromptResolver] = None,
        cancel_flag: Optional[threading.Event] = None,
        max_prompts_per_kind: int = MAX_PROMPTS_PER_KIND,
    ):
        self.executable = Path(executable)
        self.args = list(args)
        self.working_dir = working_dir
        self.log_sink = log_sink
        self.prompt_resolver = prompt_resolver
        self.cancel_flag = cancel_flag or threading.Event()
        self.max_prompts_per_kind = max_prompts_per_kind

        self._recent: List[str] = []
        self._recent_len = 0
        self._recent_lock = threading.Lock()
        self._prompt_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._prompt_counts = {PromptKind.CREDENTIAL: 0, PromptKind.ONE_TIME_CODE: 0}

        # Shared by the readers, the resolver and the supervisor. Set on cancel or failure.
        self._scope = threading.Event()
        self._failure: Optional[BaseException] = None
        self._failure_lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> int:
        """Run the tool to completion and return its exit code."""
        if self.cancel_flag.is_set():
            raise OperationCancelled(f"Cancelled before starting {self.executable.name}")

        command = [str(self.executable), *self.args]
        logger.debug(f"Starting interactive process: {self.executable} (cwd={self.working_dir})")
        try:
            self._process = subprocess.Popen(
                command,
                cwd=str(self.working_dir) if self.working_dir else None,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **tree_popen_kwargs(),
            )
        except OSError as e:
            raise LaunchFailure(f"Failed to start {self.executable}: {e}") from e

        process = self._process
        readers = [
            threading.Thread(target=self._pump, args=(process.stdout, "stdout"), daemon=True),
            threading.Thread(target=self._pump, args=(process.stderr, "stderr"), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            self._supervise(process, readers)
        finally:
            self._close_stdin()

        if self.cancel_flag.is_set():
            raise OperationCancelled(f"{self.executable.name} was cancelled")
        if self._failure is not None:
            raise self._failure

        exit_code = process.returncode
        logger.debug(f"{self.executable.name} exited with code {exit_code}")
        return exit_code

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    def _supervise(self, process: subprocess.Popen, readers: List[threading.Thread]) -> None:
        # Exit wait and both readers must all finish before the run is complete.
        while process.poll() is None or any(r.is_alive() for r in readers):
            if self.cancel_flag.is_set() or self._scope.is_set():
                self._scope.set()
                logger.info(f"Stopping {self.executable.name} and its child processes")
                kill_process_tree(process)
                # Pending reads are abandoned once the tree is gone.
                for reader in readers:
                    reader.join(timeout=1.0)
                return
            self.cancel_flag.wait(_POLL_INTERVAL)

    def _fail(self, error: BaseException) -> None:
        with self._failure_lock:
            if self._failure is None:
                self._failure = error
        self._scope.set()

    def _close_stdin(self) -> None:
        if self._process is None or self._process.stdin is None:
            return
        with self._write_lock:
            try:
                self._process.stdin.close()
            except OSError as e:
                logger.debug(f"Closing stdin of {self.executable.name} failed: {e}")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _pump(self, stream: IO[bytes], name: str) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            while not self._scope.is_set():
                data = stream.read1(CHUNK_SIZE)  # type: ignore[attr-defined]
                if not data:
                    break
                chunk = decoder.decode(data)
                if not chunk:
                    continue

                self._append_recent(chunk)

                pending += chunk
                lines = pending.split("\n")
                pending = lines.pop()
                for line in lines:
                    self._emit(line.rstrip("\r"))

                self._check_prompts()

            pending += decoder.decode(b"", final=True)
            self._emit(pending.rstrip("\r\n"))
        except WorkshopError as e:
            self._fail(e)
        except Exception as e:
            if self._scope.is_set():
                # Stream closed underneath us after a kill.
                logger.debug(f"{name} reader for {self.executable.name} stopped: {e}")
                return
            # A failing log sink or prompt resolver ends the session; the supervisor kills the tree.
            logger.error_trace(f"{name} reader for {self.executable.name} failed: {e}")
            self._fail(e)

    def _emit(self, line: str) -> None:
        if not line.strip():
            return
        logger.debug(f"[{self.executable.name}] {line}")
        if self.log_sink:
            self.log_sink(line)

    def _append_recent(self, text: str) -> None:
        with self._recent_lock:
            self._recent.append(text)
            self._recent_len += len(text)
            if self._recent_len > RECENT_TEXT_LIMIT:
                joined = "".join(self._recent)[-RECENT_TEXT_LIMIT:]
                self._recent = [joined]
                self._recent_len = len(joined)

    def _snapshot_recent(self) -> str:
        with self._recent_lock:
            return "".join(self._recent)

    def _clear_recent(self) -> None:
        with self._recent_lock:
            self._recent.clear()
            self._recent_len = 0

    # ------------------------------------------------------------------
    # Prompt negotiation
    # ------------------------------------------------------------------

    def _check_prompts(self) -> None:
        if self.prompt_resolver is None:
            return

        with self._prompt_lock:
            if self._scope.is_set():
                return
            kind = detect_prompt(self._snapshot_recent())
            if kind is None:
                return

            if self._prompt_counts[kind] >= self.max_prompts_per_kind:
                raise PromptExhausted(_EXHAUSTED_MESSAGES[kind])

            self._prompt_counts[kind] += 1
            self._clear_recent()
            self._prompt_and_send(build_prompt(kind))

    def _prompt_and_send(self, prompt: Prompt) -> None:
        logger.debug(f"Prompt detected ({prompt.kind.value}): {prompt.message}")
        response = self.prompt_resolver(prompt, self._scope)  # type: ignore[misc]
        if response is None:
            raise OperationCancelled("SteamCMD input canceled.")

        trimmed = response.strip()
        if not trimmed:
            raise PromptRejected("SteamCMD input was empty.")

        self._write_line(trimmed)

        acknowledgement = _ACKNOWLEDGEMENTS.get(prompt.kind)
        if acknowledgement:
            self._emit(acknowledgement)

    def _write_line(self, text: str) -> None:
        process = self._process
        if process is None or process.stdin is None:
            return
        with self._write_lock:
            try:
                process.stdin.write(text.encode("utf-8") + b"\n")
                process.stdin.flush()
            except (BrokenPipeError, ValueError) as e:
                logger.warning(f"Could not send input to {self.executable.name}: {e}")

