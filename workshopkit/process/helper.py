"""Client for helper processes that speak a JSON-lines event protocol on stdout.

Each stdout line is one JSON object with a ``type`` field:

* ``log``: advisory text forwarded to the log sink
* ``error``: fails the pending operation
* ``<op>_result``: terminal success for the operation
* anything else: operation-specific progress

Lines that are not JSON objects with a ``type`` are forwarded verbatim as log
text. The first terminal event wins; later ones are ignored.
"""

from __future__ import annotations

import json
import subprocess
import threading
from concurrent.futures import Future
from typing import IO, Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from workshopkit.core.errors import (
    LaunchFailure,
    OperationCancelled,
    OperationFailure,
    ProtocolViolation,
    WorkshopError,
)
from workshopkit.core.logger import setup_logger
from workshopkit.core.models import HelperEvent
from workshopkit.process.tree import kill_process_tree, tree_popen_kwargs

logger = setup_logger(__name__)

T = TypeVar("T")

EXIT_GRACE_SECONDS = 5.0
_POLL_INTERVAL = 0.1


class ResultCell(Generic[T]):
    """Single-assignment result. Only the first ``set_*`` call has any effect."""

    def __init__(self) -> None:
        self._future: Future = Future()
        self._lock = threading.Lock()

    def set_result(self, value: T) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(value)
            return True

    def set_exception(self, error: BaseException) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_exception(error)
            return True

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> T:
        return self._future.result(timeout=timeout)


def parse_event_line(line: str) -> Optional[HelperEvent]:
    """Parse one stdout line. Returns None for anything that is not a typed JSON object."""
    text = line.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    event_type = read_str(payload, "type")
    if not event_type or not event_type.strip():
        return None
    return HelperEvent(type=event_type, payload=payload)


def read_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    if not isinstance(payload, dict) or key not in payload:
        return None
    value = payload[key]
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value) if isinstance(value, (dict, list)) else str(value)


def read_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    """Read a non-negative integer that may be encoded as a number or a numeric string."""
    if not isinstance(payload, dict) or key not in payload:
        return None
    value = payload[key]
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if value >= 0 and value.is_integer() else None
    if isinstance(value, str):
        stripped = value.strip()
        return int(stripped) if stripped.isdecimal() else None
    return None


class HelperInvocation(Generic[T]):
    """One helper process run resolving exactly one pending result."""

    def __init__(
        self,
        command: Sequence[str],
        expected_result_type: str,
        parse_result: Callable[[Dict[str, Any]], T],
        on_event: Optional[Callable[[HelperEvent], None]] = None,
        log_sink: Optional[Callable[[str], None]] = None,
        cancel_flag: Optional[threading.Event] = None,
        name: str = "SteamPipe",
    ):
        self.command = list(command)
        self.expected_result_type = expected_result_type
        self.parse_result = parse_result
        self.on_event = on_event
        self.log_sink = log_sink
        self.cancel_flag = cancel_flag or threading.Event()
        self.name = name
        self.result_cell: ResultCell[T] = ResultCell()

    def run(self) -> T:
        if self.cancel_flag.is_set():
            raise OperationCancelled(f"Cancelled before starting {self.name}")

        logger.debug(f"Starting {self.name}: {self.command[0]} {' '.join(self.command[1:2])}")
        try:
            process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **tree_popen_kwargs(),
            )
        except OSError as e:
            raise LaunchFailure(f"Failed to start {self.name} helper process ({self.command[0]}): {e}") from e

        readers = [
            threading.Thread(target=self._read_stdout, args=(process.stdout,), daemon=True),
            threading.Thread(target=self._read_stderr, args=(process.stderr,), daemon=True),
        ]
        for reader in readers:
            reader.start()

        while process.poll() is None or any(r.is_alive() for r in readers):
            if self.cancel_flag.is_set():
                logger.info(f"Cancelling {self.name} helper process")
                kill_process_tree(process)
                self.result_cell.set_exception(OperationCancelled(f"{self.name} operation was cancelled"))
                break
            if self.result_cell.done():
                self._finish_after_result(process)
                break
            self.cancel_flag.wait(_POLL_INTERVAL)

        if self.result_cell.done():
            return self.result_cell.result()

        exit_code = process.returncode
        if exit_code != 0:
            raise OperationFailure(f"{self.name} failed with exit code {exit_code}.", exit_code=exit_code)
        raise ProtocolViolation(f"{self.name} did not return a result.")

    def _finish_after_result(self, process: subprocess.Popen) -> None:
        try:
            process.wait(timeout=EXIT_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning(f"{self.name} still running {EXIT_GRACE_SECONDS:g}s after reporting its result; stopping it")
            kill_process_tree(process)

    def _log(self, line: str) -> None:
        logger.debug(f"[{self.name}] {line}")
        if self.log_sink:
            self.log_sink(line)

    def _read_stdout(self, stream: IO[bytes]) -> None:
        for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.strip():
                continue
            if self.result_cell.done():
                # Drained so the helper never blocks on a full pipe.
                logger.debug(f"[{self.name}] (after result) {line}")
                continue

            try:
                event = parse_event_line(line)
                if event is None:
                    self._log(line)
                else:
                    self._dispatch(event)
            except WorkshopError as e:
                self.result_cell.set_exception(e)
            except Exception as e:
                # A failing log sink or progress handler fails the operation; reading continues.
                if self.result_cell.set_exception(e):
                    logger.error_trace(f"{self.name} event handling failed: {e}")

    def _dispatch(self, event: HelperEvent) -> None:
        if event.type == "log":
            message = read_str(event.payload, "message")
            if message and message.strip():
                self._log(message)
            return

        if event.type == "error":
            message = read_str(event.payload, "message")
            if not message or not message.strip():
                message = f"{self.name} error."
            self.result_cell.set_exception(OperationFailure(message))
            return

        if event.type == self.expected_result_type:
            try:
                result = self.parse_result(event.payload)
            except (KeyError, TypeError, ValueError) as e:
                raise ProtocolViolation(f"{self.name} sent an unusable '{event.type}' event: {e}") from e
            self.result_cell.set_result(result)
            return

        if self.on_event:
            self.on_event(event)

    def _read_stderr(self, stream: IO[bytes]) -> None:
        for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.strip():
                continue
            try:
                self._log(line)
            except Exception as e:
                if self.result_cell.set_exception(e):
                    logger.error_trace(f"{self.name} log sink failed: {e}")


def invoke_helper(
    command: Sequence[str],
    args: Sequence[str],
    expected_result_type: str,
    parse_result: Callable[[Dict[str, Any]], T],
    on_event: Optional[Callable[[HelperEvent], None]] = None,
    log_sink: Optional[Callable[[str], None]] = None,
    cancel_flag: Optional[threading.Event] = None,
) -> T:
    """Run ``command + args`` and return the parsed terminal result."""
    full_command: List[str] = [*command, *args]
    return HelperInvocation(
        full_command,
        expected_result_type,
        parse_result,
        on_event=on_event,
        log_sink=log_sink,
        cancel_flag=cancel_flag,
    ).run()
