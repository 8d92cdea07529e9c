"""Tests for the native command boundary."""

from __future__ import annotations

from bootrescue.core.runner import EXIT_NOT_FOUND, CommandResult, CommandRunner, format_command


class TestCommandResult:
    def test_output_joins_stdout_and_stderr(self):
        result = CommandResult(("x",), 1, stdout="first\n", stderr="  second  ")
        assert result.output == "first\nsecond"
        assert not result.success

    def test_output_skips_blank_streams(self):
        assert CommandResult(("x",), 0, stdout="", stderr="\n").output == ""


class TestCommandRunner:
    def test_missing_tool_returns_not_found(self):
        result = CommandRunner(timeout=5).run(["bootrescue-no-such-tool-7f3a", "/enum"])

        assert result.returncode == EXIT_NOT_FOUND
        assert "command not found" in result.stderr


class TestFormatCommand:
    def test_quotes_arguments_with_spaces(self):
        text = format_command(["reg", "delete", "HKLM\\BR_SYSTEM\\ControlSet001\\Control\\Session Manager", "/f"])
        assert text == 'reg delete "HKLM\\BR_SYSTEM\\ControlSet001\\Control\\Session Manager" /f'
