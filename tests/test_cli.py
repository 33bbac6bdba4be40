"""Tests for the staqln command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from staqln import run_cli

PROGRAMS = Path(__file__).resolve().parent.parent / "programs"

# Pushes "hello!\n" in reverse and prints it.
HELLO = "push:10 push:33 push:111 push:108 push:108 push:101 push:104 print\n"


def write_program(directory: Path, source: str, name: str = "main.stq") -> Path:
    path = directory / name
    path.write_text(source, encoding="utf-8")
    return path


class TestRunFile:
    def test_runs_program_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = write_program(tmp_path, HELLO)
        assert run_cli([str(path)]) == 0
        assert capsys.readouterr().out == "hello!\n"

    def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli([str(tmp_path / "absent.stq")]) == 1
        assert "Failed to read" in capsys.readouterr().err

    def test_bundled_hello_world(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli([str(PROGRAMS / "hello_world.stq"), "--vfs"]) == 0
        assert capsys.readouterr().out == "Hello, world!\n"

    def test_bundled_countdown(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli([str(PROGRAMS / "countdown.stq"), "--vfs"]) == 0
        assert capsys.readouterr().out == "5\n4\n3\n2\n1\n"

    def test_disk_root_is_program_directory(self, tmp_path: Path) -> None:
        path = write_program(tmp_path, "createfile:made.txt\n")
        assert run_cli([str(path)]) == 0
        assert (tmp_path / "made.txt").is_file()
        assert not (tmp_path / "staqdump").exists()


class TestSourceMode:
    def test_literal_source(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli(["-source", "push:7 printnum", "--vfs"]) == 0
        assert capsys.readouterr().out == "7"

    def test_dump_lists_instructions(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli(["-source", "push:7 printnum", "--vfs", "--dump"]) == 0
        err = capsys.readouterr().err
        assert "0. Push" in err
        assert "Number of commands: 3" in err

    def test_verbose_prints_summary(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli(["-source", "push:1", "--vfs", "-verbose"]) == 0
        assert "Program execution finished" in capsys.readouterr().err


class TestErrors:
    def test_parse_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli(["-source", "push:abc", "--vfs"]) == 1
        assert capsys.readouterr().err.startswith("ParseError: Failed parsing push argument")

    def test_runtime_error_traceback(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli(["-source", "push:1 push:0 /", "--vfs"]) == 1
        err = capsys.readouterr().err
        assert "Traceback (most recent call last):" in err
        assert "Division by zero" in err

    def test_traceback_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert run_cli(["-source", "push:1 push:0 %", "--vfs", "--traceback-json"]) == 1
        err = capsys.readouterr().err
        payload = json.loads(err[err.index("{") :])
        assert payload["error"]["instruction_index"] == 2
        assert payload["error"]["rewrite_rule"] == "MOD"
