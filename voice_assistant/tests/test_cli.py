"""Tests for the voice assistant CLI."""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from voice_assistant.cli.main import cli, load_attachments
from voice_assistant.utils.logging import setup_logging
from mocks.providers import MOCK_RESPONSES


@pytest.fixture(autouse=True)
def console_only_logging():
    with patch(
        "voice_assistant.cli.main.setup_logging_from_settings",
        side_effect=lambda *args, **kwargs: setup_logging(log_file=False, quiet=True),
    ) as mock_setup:
        yield mock_setup

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)


class TestAskCommand:
    """Test the single-turn ask command."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_ask_streams_reply(self):
        result = self.runner.invoke(cli, ["ask", "--mock", "--input", "Hello"])

        assert result.exit_code == 0
        assert MOCK_RESPONSES[0] in result.output

    def test_ask_reads_stdin(self):
        result = self.runner.invoke(cli, ["ask", "--mock"], input="Tell me a joke\n")

        assert result.exit_code == 0
        assert MOCK_RESPONSES[0] in result.output

    def test_ask_json(self):
        result = self.runner.invoke(cli, ["ask", "--mock", "--json", "--input", "  Hello  "])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["input"] == "Hello"
        assert data["response"] == MOCK_RESPONSES[0]
        assert data["metrics"]["last_prompt_tokens"] == 2
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
        assert data["messages"][1]["status"] == "complete"

    def test_ask_metrics(self):
        result = self.runner.invoke(cli, ["ask", "--mock", "--metrics", "--input", "Hello"])

        assert result.exit_code == 0
        assert "Cost: $" in result.output

    def test_ask_blank_input(self):
        result = self.runner.invoke(cli, ["ask", "--mock", "--input", "   "])

        assert result.exit_code == 1
        assert "No input provided" in result.output


class TestChatCommand:
    """Test the interactive chat loop."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_chat_turn_and_metrics(self):
        result = self.runner.invoke(
            cli, ["chat", "--mock"], input="Hello\n/metrics\n/quit\n"
        )

        assert result.exit_code == 0
        assert "MOCK mode" in result.output
        assert MOCK_RESPONSES[0] in result.output
        assert "Last turn: 2 in" in result.output
        assert "Goodbye" in result.output

    def test_chat_commands(self):
        result = self.runner.invoke(
            cli, ["chat", "--mock"], input="/help\n/device 3\n/bogus\n/new\n"
        )

        assert result.exit_code == 0
        assert "/listen" in result.output
        assert "Speech input device: 3" in result.output
        assert "Unknown command: /bogus" in result.output
        assert "New session started" in result.output

    def test_chat_status(self):
        result = self.runner.invoke(cli, ["chat", "--mock"], input="/status\n/quit\n")

        assert result.exit_code == 0
        assert '"listening": false' in result.output


class TestInfoCommands:
    def setup_method(self):
        self.runner = CliRunner()

    def test_providers(self):
        result = self.runner.invoke(cli, ["providers"])

        assert result.exit_code == 0
        assert "gemini" in result.output
        assert "vad_dictation" in result.output
        assert "loopback" in result.output

    def test_devices(self):
        fake_sounddevice = MagicMock()
        fake_sounddevice.query_devices.return_value = [
            {"name": "Built-in Microphone", "max_input_channels": 1},
            {"name": "Built-in Output", "max_input_channels": 0},
            {"name": "BlackHole 2ch", "max_input_channels": 2},
        ]
        fake_sounddevice.default.device = [0, 1]

        with patch.dict(sys.modules, {"sounddevice": fake_sounddevice}):
            result = self.runner.invoke(cli, ["devices"])

        assert result.exit_code == 0
        assert "Built-in Microphone" in result.output
        assert "BlackHole 2ch (2 ch)" in result.output
        assert "Built-in Output" not in result.output

    def test_help(self):
        result = self.runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("chat", "ask", "devices", "providers"):
            assert command in result.output


class TestLoadAttachments:
    def test_skips_unreadable(self, tmp_path):
        good = tmp_path / "notes.txt"
        good.write_text("meeting notes")
        binary = tmp_path / "blob.bin"
        binary.write_bytes(b"\x00\x01")

        attachments = load_attachments((str(good), str(binary)))

        assert [a.name for a in attachments] == ["notes.txt"]
