"""Tests for local command execution."""

import asyncio

import pytest

from runtime_init.errors import CommandFailed
from runtime_init.shell import run_shell_command


class TestRunShellCommand:
    """Tests for run_shell_command()."""

    def test_captures_stdout(self):
        result = asyncio.run(run_shell_command("echo hello"))

        assert result.exit_code == 0
        assert result.stdout == "hello\n"

    def test_captures_stderr_with_stdout(self):
        result = asyncio.run(run_shell_command("echo out; echo err 1>&2"))
        assert "out" in result.stdout
        assert "err" in result.stdout

    def test_nonzero_exit_raises(self):
        with pytest.raises(CommandFailed) as exc_info:
            asyncio.run(run_shell_command("echo broken; exit 3"))

        assert exc_info.value.exit_code == 3
        assert "broken" in exc_info.value.output

    def test_nonzero_exit_without_check(self):
        result = asyncio.run(run_shell_command("exit 4", check=False))
        assert result.exit_code == 4

    def test_runs_script_path(self, tmp_path):
        script = tmp_path / "hello.sh"
        script.write_text("#!/bin/sh\necho from script\n")
        script.chmod(0o755)

        result = asyncio.run(run_shell_command(str(script)))

        assert result.stdout == "from script\n"

    def test_timeout_kills_process(self):
        with pytest.raises(CommandFailed) as exc_info:
            asyncio.run(run_shell_command("sleep 5", timeout=0.2))

        assert exc_info.value.exit_code == -1
