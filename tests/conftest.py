"""
Shared pytest fixtures and fakes.
"""
from __future__ import annotations

from io import StringIO
from pathlib import Path
from typing import Optional, Union

import pytest
from rich.console import Console

from stagefix.config import StackConfig, parse_config
from stagefix.fixes.base import FixContext
from stagefix.remote import CommandResult, CommandRunner
from stagefix.signals import Signals


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeRunner(CommandRunner):
    """
    CommandRunner that never spawns a process.

    Responses are matched by substring against the joined command line,
    first rule wins. A rule given several results returns them in order and
    then keeps returning the last one.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.inputs: list[Optional[str]] = []
        self._rules: list[tuple[str, list[CommandResult]]] = []

    def on(self, needle: str, *results: CommandResult) -> "FakeRunner":
        self._rules.append((needle, list(results)))
        return self

    def run(self, cmd: Union[list[str], str], timeout=120, input=None, cwd=None, on_line=None) -> CommandResult:
        line = cmd if isinstance(cmd, str) else " ".join(cmd)
        self.calls.append(line)
        self.inputs.append(input)
        for needle, results in self._rules:
            if needle in line:
                return results.pop(0) if len(results) > 1 else results[0]
        return CommandResult(0)

    def ran(self, needle: str) -> list[str]:
        return [c for c in self.calls if needle in c]


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


def fail(stderr: str = "boom", code: int = 1) -> CommandResult:
    return CommandResult(code, "", stderr)


def capture_console() -> tuple[Console, StringIO]:
    """Return a Console that captures output in a StringIO buffer."""
    buf = StringIO()
    return Console(file=buf, highlight=False, no_color=True, width=120), buf


def staging_config(**staging) -> StackConfig:
    table = {"host": "staging.example.com", "ssh_user": "deploy"}
    table.update(staging)
    return parse_config({"name": "shop", "staging": table}, path=None)


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    (path / ".ssh").mkdir(parents=True)
    return path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def operator(home: Path) -> Signals:
    """Operator machine: no secrets, no token, not on a target host."""
    return Signals(mode="operator", home=home)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def context(operator: Signals, runner: FakeRunner) -> FixContext:
    """What fixes see on the operator machine, with subprocesses faked."""
    return FixContext(operator, runner)


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path: Path):
    """Keep Path.home() and os.path.expanduser() inside the test directory."""
    fake = tmp_path / "home"
    fake.mkdir(exist_ok=True)
    monkeypatch.setenv("HOME", str(fake))
    for name in ("STAGEFIX_ON_SERVER", "GITHUB_ACTIONS", "STAGEFIX_CI_TOKEN", "GITHUB_TOKEN",
                 "VAULT_PASSWORD", "ANSIBLE_VAULT_PASSWORD", "ANSIBLE_VAULT_PASSWORD_FILE",
                 "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "STAGEFIX_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield fake
