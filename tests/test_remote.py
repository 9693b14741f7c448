"""
Tests for stagefix.remote — process execution and SSH argv construction.
"""

import pytest

from stagefix.config import EnvironmentConfig
from stagefix.remote import (
    CommandRunner,
    SSHSession,
    control_path,
    remote_stagefix_command,
)

from conftest import FakeRunner


def _env(**kwargs) -> EnvironmentConfig:
    defaults = dict(name="staging", stage="staging", host="s.example.com", ssh_user="deploy")
    defaults.update(kwargs)
    return EnvironmentConfig(**defaults)


# ── CommandRunner ─────────────────────────────────────────────────────────────

class TestCommandRunner:
    def test_successful_command(self):
        result = CommandRunner().run(["echo", "hello"])
        assert result.ok is True
        assert result.stdout.strip() == "hello"

    def test_failing_command(self):
        assert CommandRunner().run("exit 3").returncode == 3

    def test_missing_binary_does_not_raise(self):
        result = CommandRunner().run(["definitely-not-a-real-binary-xyz"])
        assert result.returncode == -1
        assert "not found" in result.stderr

    def test_input_is_passed_to_stdin(self):
        assert CommandRunner().run(["cat"], input="piped").stdout == "piped"

    def test_streaming_calls_back_per_line(self):
        lines = []
        result = CommandRunner().run("printf 'a\\nb\\n'", on_line=lines.append)
        assert lines == ["a", "b"]
        assert result.stdout == "a\nb\n"

    def test_timeout_returns_minus_one(self):
        result = CommandRunner().run(["sleep", "5"], timeout=1)
        assert result.returncode == -1
        assert "timed out" in result.stderr


# ── Helpers ───────────────────────────────────────────────────────────────────

class TestControlPath:
    def test_stable_per_target(self):
        assert control_path("deploy", "a") == control_path("deploy", "a")
        assert control_path("deploy", "a") != control_path("deploy", "b")

    def test_short_enough_for_a_unix_socket(self):
        assert len(control_path("u" * 64, "h" * 200)) < 100


class TestRemoteCommand:
    def test_pins_stage_and_on_target_mode(self):
        cmd = remote_stagefix_command("shop", "fix", "staging")
        assert "cd ~/.stagefix/shop" in cmd
        assert "STAGEFIX_ON_SERVER=true" in cmd
        assert "stagefix fix --stage staging --on-target --json" in cmd

    def test_project_name_is_quoted(self):
        cmd = remote_stagefix_command("my app; rm -rf /", "fix", "prod")
        assert "'my app; rm -rf /'" in cmd

    def test_without_json(self):
        assert "--json" not in remote_stagefix_command("shop", "deploy", "prod", as_json=False)


# ── SSHSession ────────────────────────────────────────────────────────────────

class TestSSHSession:
    def test_requires_host(self, tmp_path):
        with pytest.raises(ValueError):
            SSHSession(_env(host=None), tmp_path / "key", FakeRunner())

    def test_argv_uses_stage_key_and_multiplexing(self, tmp_path):
        key = tmp_path / "staging_deploy_key"
        argv = SSHSession(_env(), key, FakeRunner()).argv("uptime")
        assert argv[0] == "ssh"
        assert argv[argv.index("-i") + 1] == str(key)
        assert "ControlMaster=auto" in argv
        assert "ServerAliveInterval=30" in argv
        assert "ServerAliveCountMax=10" in argv
        assert "BatchMode=yes" in argv
        assert argv[-2:] == ["deploy@s.example.com", "uptime"]

    def test_commands_share_one_control_path(self, tmp_path):
        runner = FakeRunner()
        with SSHSession(_env(), tmp_path / "k", runner) as session:
            session.run("true")
            session.run("false")
        paths = {arg for call in runner.calls for arg in call.split() if arg.startswith("ControlPath=")}
        assert len(paths) == 1

    def test_close_stops_master(self, tmp_path):
        runner = FakeRunner()
        with SSHSession(_env(), tmp_path / "k", runner) as session:
            session.run("true")
        assert runner.calls[-1].endswith("-O exit deploy@s.example.com")
        assert session.opened is False
