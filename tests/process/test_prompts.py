"""Tests for prompt detection and the operator prompt channel."""

import threading
import time

import pytest

from workshopkit.core.models import PromptKind
from workshopkit.process.prompts import PromptChannel, build_prompt, detect_prompt


class TestDetectPrompt:
    @pytest.mark.parametrize(
        "text",
        ["Please enter your Steam password:", "PASSWORD: ", "Logging in user 'bob'... password"],
    )
    def test_password(self, text):
        assert detect_prompt(text) == PromptKind.CREDENTIAL

    @pytest.mark.parametrize(
        "text",
        ["Steam Guard code:", "Please enter your SteamGuard code", "Two-factor code:", "two factor code"],
    )
    def test_one_time_code(self, text):
        assert detect_prompt(text) == PromptKind.ONE_TIME_CODE

    def test_password_wins_over_code(self):
        assert detect_prompt("Steam Guard code or password:") == PromptKind.CREDENTIAL

    def test_no_prompt(self):
        assert detect_prompt("Loading Steam API...OK") is None

    def test_prompt_messages(self):
        assert build_prompt(PromptKind.CREDENTIAL).message == "Steam password:"
        assert build_prompt(PromptKind.ONE_TIME_CODE).message == "Steam Guard code:"


class TestPromptChannel:
    def _ask(self, channel, flag, results):
        results.append(channel(build_prompt(PromptKind.CREDENTIAL), flag))

    def test_respond(self):
        channel = PromptChannel()
        flag = threading.Event()
        results = []
        worker = threading.Thread(target=self._ask, args=(channel, flag, results))
        worker.start()

        prompt = channel.wait_for_prompt(timeout=5)
        assert prompt is not None
        assert prompt.kind == PromptKind.CREDENTIAL
        channel.respond("hunter2")
        worker.join(5)

        assert results == ["hunter2"]
        assert channel.pending() is None

    def test_abandon(self):
        channel = PromptChannel()
        flag = threading.Event()
        results = []
        worker = threading.Thread(target=self._ask, args=(channel, flag, results))
        worker.start()

        channel.wait_for_prompt(timeout=5)
        channel.abandon()
        worker.join(5)

        assert results == [None]

    def test_cancel_flag_ends_wait(self):
        channel = PromptChannel()
        flag = threading.Event()
        results = []
        worker = threading.Thread(target=self._ask, args=(channel, flag, results))
        worker.start()

        channel.wait_for_prompt(timeout=5)
        flag.set()
        worker.join(5)

        assert not worker.is_alive()
        assert results == [None]

    def test_timeout_ends_wait(self):
        channel = PromptChannel(timeout=0.3)
        started = time.monotonic()

        result = channel(build_prompt(PromptKind.ONE_TIME_CODE), threading.Event())

        assert result is None
        assert time.monotonic() - started < 5

    def test_zero_timeout_means_wait_indefinitely(self):
        assert PromptChannel(timeout=0).timeout is None

    def test_answer_without_pending_prompt_is_ignored(self):
        channel = PromptChannel()
        channel.respond("stray")

        assert channel.pending() is None

    def test_from_config(self, monkeypatch):
        from workshopkit.core.config import config

        monkeypatch.setattr(config, "get", lambda key, default=None: 12 if key == "PROMPT_TIMEOUT" else default)

        assert PromptChannel.from_config().timeout == 12.0
