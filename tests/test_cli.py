"""
Tests for the terminal front end.
"""

import json
import os
from datetime import datetime
from unittest.mock import patch

import pytest

from src.tutor.cli import build_parser, format_message, main, run
from src.tutor.transcript import Message


class TestFormatting:
    def test_user_line(self):
        message = Message(text="How are you?", is_user=True, timestamp=datetime(2024, 1, 1, 14, 5))
        assert format_message(message) == "[14:05] You: How are you?"

    def test_pending_line(self):
        message = Message(text="Thinking...", is_user=False, timestamp=datetime(2024, 1, 1, 14, 5), is_pending=True)
        assert format_message(message) == "[14:05] Tutor: Thinking... ..."


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])

        assert args.lesson_id == "1"
        assert args.no_waveform is False
        assert args.input_device is None

    def test_device_index_is_int(self):
        args = build_parser().parse_args(["--input-device", "3", "--output-device", "USB Headset"])

        assert args.input_device == 3
        assert args.output_device == "USB Headset"


class TestRun:
    @pytest.mark.asyncio
    async def test_unknown_lesson_exits_2(self, capsys):
        args = build_parser().parse_args(["--lesson-id", "42"])

        assert await run(args) == 2
        assert "Lesson not found: 42" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_quit_immediately(self, capsys):
        args = build_parser().parse_args(["--title", "Ordering at a cafe", "--no-waveform"])

        with patch("builtins.input", side_effect=["q"]):
            assert await run(args) == 0

        assert "Ordering at a cafe - Speaking Practice" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_eof_ends_session(self):
        args = build_parser().parse_args(["--title", "Travel", "--no-waveform"])

        with patch("builtins.input", side_effect=EOFError):
            assert await run(args) == 0

    @pytest.mark.asyncio
    async def test_lesson_from_file(self, tmp_path, capsys):
        path = tmp_path / "lessons.json"
        path.write_text(json.dumps([{"id": 4, "title": "Asking for directions"}]))
        args = build_parser().parse_args(["--lesson-id", "4", "--lessons-file", str(path), "--no-waveform"])

        with patch("builtins.input", side_effect=["q"]):
            assert await run(args) == 0

        assert "Asking for directions - Speaking Practice" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_title_adds_lesson_next_to_file(self, tmp_path, capsys):
        path = tmp_path / "lessons.json"
        path.write_text(json.dumps([{"id": 4, "title": "Asking for directions"}]))
        args = build_parser().parse_args(
            ["--lesson-id", "9", "--title", "Checking in", "--lessons-file", str(path), "--no-waveform"]
        )

        with patch("builtins.input", side_effect=["q"]):
            assert await run(args) == 0

        assert "Checking in - Speaking Practice" in capsys.readouterr().out


class TestMain:
    def test_config_error_exits_1(self, capsys):
        with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            from src.tutor.config import get_config
            get_config.cache_clear()

            assert main(["--title", "Travel"]) == 1

        assert "Configuration error" in capsys.readouterr().err
