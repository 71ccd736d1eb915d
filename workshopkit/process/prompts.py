"""Prompt detection and the operator-facing prompt channel."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from workshopkit.core.logger import setup_logger
from workshopkit.core.models import Prompt, PromptKind

logger = setup_logger(__name__)

PASSWORD_SIGNATURES = ("password",)
ONE_TIME_CODE_SIGNATURES = ("steam guard", "steamguard", "two-factor", "two factor", "authenticator")

PROMPT_MESSAGES = {
    PromptKind.CREDENTIAL: "Steam password:",
    PromptKind.ONE_TIME_CODE: "Steam Guard code:",
}

# Receives the prompt and the session's cancel flag; returns the response or None to abandon.
PromptResolver = Callable[[Prompt, threading.Event], Optional[str]]

_POLL_INTERVAL = 0.1


def detect_prompt(text: str) -> Optional[PromptKind]:
    """Classify the rolling output window. Password prompts take precedence."""
    lowered = text.lower()
    if any(sig in lowered for sig in PASSWORD_SIGNATURES):
        return PromptKind.CREDENTIAL
    if any(sig in lowered for sig in ONE_TIME_CODE_SIGNATURES):
        return PromptKind.ONE_TIME_CODE
    return None


def build_prompt(kind: PromptKind) -> Prompt:
    return Prompt(kind=kind, message=PROMPT_MESSAGES.get(kind, "Input required:"))


class PromptChannel:
    """Request/response channel between a running session and an operator.

    The session calls the channel like a resolver. The call blocks until the
    operator answers with ``respond()``, gives up with ``abandon()``, the
    session's cancel flag fires, or ``timeout`` seconds pass. Only one prompt
    is outstanding at a time.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout and timeout > 0 else None
        self._cond = threading.Condition()
        self._pending: Optional[Prompt] = None
        self._response: Optional[str] = None
        self._answered = False

    @classmethod
    def from_config(cls) -> "PromptChannel":
        from workshopkit.core.config import config

        return cls(timeout=float(config.get("PROMPT_TIMEOUT", 0) or 0))

    def pending(self) -> Optional[Prompt]:
        with self._cond:
            return self._pending

    def wait_for_prompt(self, timeout: Optional[float] = None) -> Optional[Prompt]:
        """Block until a prompt is outstanding (or ``timeout`` passes) and return it."""
        with self._cond:
            self._cond.wait_for(lambda: self._pending is not None, timeout=timeout)
            return self._pending

    def respond(self, text: str) -> None:
        self._answer(text)

    def abandon(self) -> None:
        self._answer(None)

    def _answer(self, text: Optional[str]) -> None:
        with self._cond:
            if self._pending is None:
                logger.debug("Prompt answer ignored, nothing is pending")
                return
            self._response = text
            self._answered = True
            self._cond.notify_all()

    def __call__(self, prompt: Prompt, cancel_flag: threading.Event) -> Optional[str]:
        with self._cond:
            self._pending = prompt
            self._response = None
            self._answered = False
            self._cond.notify_all()

            waited = 0.0
            try:
                while not self._answered:
                    if cancel_flag.is_set():
                        logger.debug(f"Prompt abandoned by cancellation: {prompt.message}")
                        return None
                    if self.timeout is not None and waited >= self.timeout:
                        logger.warning(f"No response to '{prompt.message}' within {self.timeout:g}s")
                        return None
                    self._cond.wait(_POLL_INTERVAL)
                    waited += _POLL_INTERVAL
                return self._response
            finally:
                self._pending = None
                self._answered = False
